from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from duckbridge.errors import ProtocolInvariantViolation
from duckbridge.execution.result import Result

# ==================================================
# Statement Handles
# ==================================================


@dataclass(frozen=True)
class Query:
    """
    A statement and, once prepared, the worker-side statement id.
    """

    statement: str
    stmt: Any | None = None

    @property
    def is_prepared(self) -> bool:
        return self.stmt is not None

    def with_stmt(self, stmt: Any) -> "Query":
        return replace(self, stmt=stmt)

    def __str__(self) -> str:
        return self.statement


@dataclass(frozen=True)
class Cursor:
    """
    Worker-side continuation state of a declared statement.
    """

    id: Any

    @classmethod
    def from_result(cls, result: Result) -> "Cursor":
        if len(result.rows) != 1 or len(result.rows[0]) != 1 or result.rows[0][0] is None:
            raise ProtocolInvariantViolation(
                f"declare must return a single cursor id, got {result.rows!r}",
                operation="declare",
            )
        return cls(id=result.rows[0][0])
