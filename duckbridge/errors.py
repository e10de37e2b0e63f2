from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from duckbridge.transport.messages import Command, Failure


# ==================================================
# Normalized Bridge Errors
# ==================================================


@dataclass(slots=True)
class ErrorDetails:
    """
    Structured metadata for bridge errors.
    """

    operation: str
    message: str
    command: Command | None = None
    exec_time_ms: float | None = None


class DuckbridgeError(Exception):
    """
    Base error type. `fatal` tells whether the connection that produced the
    error must be discarded.
    """

    fatal = False

    def __init__(
        self,
        message: str,
        *,
        operation: str = "unknown",
        command: Command | None = None,
        exec_time_ms: float | None = None,
    ) -> None:
        self.details = ErrorDetails(
            operation=operation,
            message=message,
            command=command,
            exec_time_ms=exec_time_ms,
        )
        self.fatal = type(self).fatal
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.details.message

    @property
    def command(self) -> Command | None:
        return self.details.command

    @property
    def operation(self) -> str:
        return self.details.operation

    @property
    def exec_time_ms(self) -> float | None:
        return self.details.exec_time_ms


class SpawnError(DuckbridgeError):
    fatal = True


class TransportError(DuckbridgeError):
    """
    The pipe to the worker is unusable. Never retried.
    """

    fatal = True


class WriteError(TransportError):
    pass


class FramingError(TransportError):
    """
    `lines` holds complete messages framed before the oversized one.
    """

    def __init__(self, message: str, *, lines: Any = (), **kwargs: Any) -> None:
        self.lines = list(lines)
        super().__init__(message, **kwargs)


class WorkerExitedError(TransportError):
    def __init__(self, exit_code: int | None, **kwargs: Any) -> None:
        self.exit_code = exit_code
        super().__init__(f"Worker process exited unexpectedly with status: {exit_code}", **kwargs)


class CommandTimeoutError(DuckbridgeError):
    """
    The worker did not answer in time. A late reply may still arrive, so the
    connection is tainted and should be disconnected.
    """

    fatal = True


class BusyError(DuckbridgeError):
    pass


class SQLError(DuckbridgeError):
    pass


class DecodeError(DuckbridgeError):
    pass


class ProtocolInvariantViolation(DuckbridgeError):
    pass


class RollbackError(DuckbridgeError):
    """
    Raised out of `Client.transaction` when the body asked for a rollback.
    """

    def __init__(self, reason: Any, **kwargs: Any) -> None:
        self.reason = reason
        super().__init__(f"Transaction rolled back: {reason!r}", **kwargs)


def escalate(error: DuckbridgeError) -> DuckbridgeError:
    """
    Marks an error as fatal to its connection.
    """
    error.fatal = True
    return error


def normalize_reply_error(
    failure: Failure,
    *,
    operation: str,
    command: Command | None,
    exec_time_ms: float | None = None,
) -> SQLError:
    """
    Maps a structured worker failure to an SQLError.
    """
    return SQLError(
        failure.message,
        operation=operation,
        command=command,
        exec_time_ms=exec_time_ms,
    )
