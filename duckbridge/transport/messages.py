from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple, Sequence

# ==================================================
# Wire Commands
# ==================================================

COMMAND_NAMES = frozenset(
    {
        "begin",
        "commit",
        "rollback",
        "prepare",
        "declare",
        "execute",
        "deallocate",
        "close",
        "status",
    }
)


@dataclass(frozen=True)
class Command:
    """
    One outgoing request to the worker.

    Only the fields that are set are serialized, so `Command("begin")` goes over
    the wire as `{"command": "begin"}`.
    """

    command: str
    query: str | None = None
    stmt: Any | None = None
    params: tuple[Any, ...] | None = None
    cursor: Any | None = None

    def __post_init__(self) -> None:
        if self.command not in COMMAND_NAMES:
            raise ValueError(f"Unknown worker command: {self.command!r}")
        if self.params is not None and not isinstance(self.params, tuple):
            object.__setattr__(self, "params", tuple(self.params))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"command": self.command}
        if self.query is not None:
            payload["query"] = self.query
        if self.stmt is not None:
            payload["stmt"] = self.stmt
        if self.params is not None:
            payload["params"] = list(self.params)
        if self.cursor is not None:
            payload["cursor"] = self.cursor
        return payload


# ==================================================
# Replies
# ==================================================


class ColumnDescriptor(NamedTuple):
    """
    Column name plus the engine's declared type string, e.g. `Utf8` or
    `Timestamp(Microsecond, None)`.
    """

    name: str
    type: str


@dataclass(frozen=True)
class Success:
    columns: list[ColumnDescriptor] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)
    num_rows: int = 0


@dataclass(frozen=True)
class Failure:
    message: str


Reply = Success | Failure


def columns_from_payload(raw: Sequence[Any] | None) -> list[ColumnDescriptor]:
    columns: list[ColumnDescriptor] = []
    for entry in raw or []:
        name, type_name = entry
        columns.append(ColumnDescriptor(name=str(name), type=str(type_name)))
    return columns
