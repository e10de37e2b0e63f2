from __future__ import annotations

import base64
from datetime import date, datetime, time
from decimal import Decimal
import json
from typing import Any
from uuid import UUID

from duckbridge.errors import DecodeError
from duckbridge.transport.messages import Command, Failure, Reply, Success, columns_from_payload

# ==================================================
# JSON Line Codec
# ==================================================


def _encode_value(value: Any) -> Any:
    # bool/int/float/str/None are handled by json itself
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    raise TypeError(f"Cannot encode parameter of type {type(value).__name__} for the worker")


def encode(command: Command) -> bytes:
    """
    Serializes a command as one UTF-8 JSON line, terminator included.
    """
    text = json.dumps(
        command.to_payload(),
        default=_encode_value,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
    return text.encode("utf-8") + b"\n"


def decode(line: bytes) -> Reply:
    """
    Parses one worker line into a `Success` or `Failure`.
    """
    try:
        payload = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Invalid worker response: {exc}", operation="decode") from exc

    if not isinstance(payload, dict):
        raise DecodeError(
            f"Unexpected response format: {payload!r}",
            operation="decode",
        )

    status = payload.get("status")
    if status == "ok":
        try:
            columns = columns_from_payload(payload.get("columns"))
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"Malformed column list: {exc}", operation="decode") from exc
        rows = payload.get("rows") or []
        if not isinstance(rows, list) or not all(isinstance(row, list) for row in rows):
            raise DecodeError(f"Malformed row list: {rows!r}", operation="decode")
        num_rows = payload.get("num_rows")
        if num_rows is None:
            num_rows = len(rows)
        return Success(columns=columns, rows=rows, num_rows=int(num_rows))

    if status == "error":
        return Failure(message=str(payload.get("message") or "Unknown worker error"))

    raise DecodeError(f"Unexpected response format: {payload!r}", operation="decode")
