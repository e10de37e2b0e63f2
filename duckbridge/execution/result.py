from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Sequence

from duckbridge.errors import ProtocolInvariantViolation
from duckbridge.transport.messages import ColumnDescriptor, Success

# ==================================================
# Query Results
# ==================================================

ValueDecoder = Callable[[Any], Any]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class Result:
    """
    Result of a successful command.

    - `columns`: `(name, type)` pairs in row order
    - `rows`: list of rows, each a list of values matching `columns`
    - `num_rows`: row count reported by the worker
    """

    columns: list[ColumnDescriptor] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)
    num_rows: int = 0

    @classmethod
    def from_reply(cls, reply: Success) -> "Result":
        return cls(columns=list(reply.columns), rows=[list(row) for row in reply.rows], num_rows=reply.num_rows)

    def scalar(self) -> Any:
        if not self.rows or not self.rows[0]:
            return None
        return self.rows[0][0]


def timestamp_from_micros(value: int) -> datetime:
    return EPOCH + timedelta(microseconds=int(value))


def time_from_micros(value: int) -> time:
    seconds, micros = divmod(int(value), 1_000_000)
    minutes, second = divmod(seconds, 60)
    hour, minute = divmod(minutes, 60)
    return time(hour, minute, second, micros)


class ResultDecoder:
    """
    Applies type-directed conversions to raw row values.

    Decoders are keyed by a prefix of the engine type string. The worker sends
    every timestamp and time value as an integer count of microseconds, whatever
    unit the column was declared with. Unknown types pass through unchanged.
    """

    def __init__(self) -> None:
        self._decoders: list[tuple[str, ValueDecoder]] = []
        self.register("Timestamp(", timestamp_from_micros)
        self.register("Time64(", time_from_micros)

    def register(self, type_prefix: str, decoder: ValueDecoder) -> None:
        self._decoders = [(prefix, fn) for prefix, fn in self._decoders if prefix != type_prefix]
        self._decoders.append((type_prefix, decoder))
        # longest prefix wins
        self._decoders.sort(key=lambda entry: len(entry[0]), reverse=True)

    def decoder_for(self, type_name: str) -> ValueDecoder | None:
        for prefix, decoder in self._decoders:
            if type_name.startswith(prefix):
                return decoder
        return None

    def decode_row(self, row: Sequence[Any], columns: Sequence[ColumnDescriptor]) -> list[Any]:
        if len(row) != len(columns):
            raise ProtocolInvariantViolation(
                f"Row has {len(row)} values but the reply declares {len(columns)} columns",
                operation="decode",
            )

        decoded: list[Any] = []
        for value, column in zip(row, columns):
            decoder = self.decoder_for(column.type)
            if decoder is None or value is None:
                decoded.append(value)
                continue
            try:
                decoded.append(decoder(value))
            except (TypeError, ValueError, OverflowError) as exc:
                raise ProtocolInvariantViolation(
                    f"Cannot decode {value!r} as {column.type} for column {column.name!r}: {exc}",
                    operation="decode",
                ) from exc
        return decoded

    def decode_result(self, result: Result) -> Result:
        return Result(
            columns=list(result.columns),
            rows=[self.decode_row(row, result.columns) for row in result.rows],
            num_rows=result.num_rows,
        )


default_decoder = ResultDecoder()


def decode_row(row: Sequence[Any], columns: Sequence[ColumnDescriptor]) -> list[Any]:
    return default_decoder.decode_row(row, columns)
