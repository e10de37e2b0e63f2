from __future__ import annotations

from enum import Enum
import logging
import threading
import time
from typing import Any, Callable, Sequence, TypeVar
from uuid import uuid4

from duckbridge.errors import (
    DuckbridgeError,
    SpawnError,
    SQLError,
    TransportError,
    WorkerExitedError,
    escalate,
    normalize_reply_error,
)
from duckbridge.execution.connection import ConnectionSettings
from duckbridge.execution.observability import (
    ExecutionEvent,
    ObservabilitySettings,
    QueryObservation,
    now_iso_utc,
)
from duckbridge.execution.query import Cursor, Query
from duckbridge.execution.result import Result, ResultDecoder, default_decoder
from duckbridge.transport.channel import RequestChannel
from duckbridge.transport.framer import Framer
from duckbridge.transport.messages import Command, Failure
from duckbridge.transport.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT = object()

CACHE_EXHAUSTED_MESSAGE = "Exhausted prepared statements cache"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    IDLE = "idle"
    BUSY = "busy"
    ERRORED = "errored"
    DISCONNECTED = "disconnected"


class TransactionStatus(str, Enum):
    IDLE = "idle"
    TRANSACTION = "transaction"
    ERROR = "error"


_LIVE_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.IDLE, ConnectionState.BUSY})


# ==================================================
# Connection Protocol
# ==================================================


class ConnectionProtocol:
    """
    One pooled connection bound to one worker process.

    Each callback is exactly one command/reply round trip. A structured SQL
    error from the worker is recoverable and leaves the connection usable.
    Transport failures, timeouts and any failure of begin/commit/rollback move
    the connection to ERRORED; after that every callback fails fast with
    `TransportError` and the pool must discard the connection.

    Callers (normally a pool) must not issue two callbacks concurrently on the
    same connection.
    """

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        *,
        observability_settings: ObservabilitySettings | None = None,
        decoder: ResultDecoder | None = None,
    ) -> None:
        self.settings = settings or ConnectionSettings()
        self.observability_settings = observability_settings or ObservabilitySettings()
        self.decoder = decoder or default_decoder
        self.connection_id = uuid4().hex
        self.state = ConnectionState.CONNECTING
        self.in_transaction = False
        self._channel: RequestChannel | None = None
        self._transaction_started_at: float | None = None
        self._state_lock = threading.Lock()

    # ==================================================
    # Pool Lifecycle
    # ==================================================

    @classmethod
    def connect(
        cls,
        settings: ConnectionSettings | None = None,
        *,
        observability_settings: ObservabilitySettings | None = None,
        decoder: ResultDecoder | None = None,
    ) -> "ConnectionProtocol":
        """
        Spawns a worker, performs the status handshake, then applies the
        configured extensions, secrets and attachments. Raises `SpawnError` and
        leaves no worker behind on any failure.
        """
        conn = cls(settings, observability_settings=observability_settings, decoder=decoder)
        conn._open()
        return conn

    def _open(self) -> None:
        started = time.perf_counter()
        try:
            executable = self.settings.resolve_executable()
            supervisor = ProcessSupervisor.spawn(
                executable,
                self.settings.args,
                env=self.settings.env,
                cwd=self.settings.cwd,
            )
        except SpawnError as exc:
            self.state = ConnectionState.DISCONNECTED
            self._emit_event("worker.spawn", success=False, error=exc, started=started)
            raise

        self._channel = RequestChannel(
            supervisor,
            Framer(self.settings.max_line_bytes),
            on_failure=self._on_worker_failure,
        ).start()
        try:
            self._round_trip(
                "connect",
                Command("status"),
                timeout=self.settings.handshake_timeout_seconds,
            )
            for sql in self.settings.setup_statements():
                self._run_setup_statement(sql)
        except DuckbridgeError as exc:
            self._channel.close(self.settings.terminate_grace_seconds)
            self.state = ConnectionState.DISCONNECTED
            error = SpawnError(
                f"Worker handshake failed: {exc.message}",
                operation="connect",
                command=exc.command,
            )
            self._emit_event("worker.spawn", success=False, error=error, started=started)
            raise error from exc

        with self._state_lock:
            if self.state is ConnectionState.CONNECTING:
                self.state = ConnectionState.IDLE
        logger.debug("connection %s ready on worker pid=%s", self.connection_id, supervisor.pid)
        self._emit_event("worker.spawn", success=True, started=started, worker_pid=supervisor.pid)

    def _run_setup_statement(self, sql: str) -> None:
        query = self.prepare(sql)
        try:
            self.execute(query)
        finally:
            self.close(query)

    def checkout(self) -> "ConnectionProtocol":
        self._ensure_usable("checkout")
        with self._state_lock:
            if self.state is ConnectionState.IDLE:
                self.state = ConnectionState.BUSY
        self._emit_event("connection.checkout", success=True)
        return self

    def checkin(self) -> "ConnectionProtocol":
        with self._state_lock:
            if self.state is ConnectionState.BUSY:
                self.state = ConnectionState.IDLE
        self._emit_event("connection.checkin", success=self.is_usable)
        return self

    def ping(self) -> bool:
        """
        Liveness only, no round trip.
        """
        channel = self._channel
        return self.is_usable and channel is not None and not channel.is_dead and channel.supervisor.is_alive()

    @property
    def is_usable(self) -> bool:
        if self.state not in (ConnectionState.IDLE, ConnectionState.BUSY):
            return False
        # the reader may have seen the worker die before the callback ran
        return self._channel is None or not self._channel.is_dead

    @property
    def worker_pid(self) -> int | None:
        return self._channel.supervisor.pid if self._channel is not None else None

    def disconnect(self) -> None:
        """
        Terminates the worker. Best effort and idempotent.
        """
        if self.state is ConnectionState.DISCONNECTED:
            return
        exit_code = None
        if self._channel is not None:
            exit_code = self._channel.close(self.settings.terminate_grace_seconds)
        self.state = ConnectionState.DISCONNECTED
        self.in_transaction = False
        self._transaction_started_at = None
        self._emit_event("connection.disconnect", success=True, exit_code=exit_code)

    def __enter__(self) -> "ConnectionProtocol":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        _ = exc_type
        _ = exc
        _ = tb
        self.disconnect()

    # ==================================================
    # Transactions
    # ==================================================

    def begin(self) -> Result:
        result = self._transaction_call("begin")
        self.in_transaction = True
        self._transaction_started_at = time.perf_counter()
        self._emit_event("txn.begin", success=True)
        return result

    def commit(self) -> Result:
        return self._finish_transaction("commit")

    def rollback(self) -> Result:
        return self._finish_transaction("rollback")

    def _finish_transaction(self, name: str) -> Result:
        started = self._transaction_started_at
        result = self._transaction_call(name)
        self.in_transaction = False
        self._transaction_started_at = None
        self._emit_event(f"txn.{name}", success=True, started=started)
        return result

    def _transaction_call(self, name: str) -> Result:
        try:
            return self._round_trip(name, Command(name))
        except DuckbridgeError as exc:
            # transactional state is unknown now
            escalate(exc)
            self._mark_errored(exc)
            raise

    # ==================================================
    # Statements
    # ==================================================

    def prepare(self, query: Query | str) -> Query:
        if isinstance(query, str):
            query = Query(statement=query)
        command = Command("prepare", query=query.statement)
        result = self._round_trip("prepare", command, sql=query.statement)

        stmt = result.rows[0][0] if result.rows and result.rows[0] else None
        if stmt is None or stmt == "":
            raise SQLError(CACHE_EXHAUSTED_MESSAGE, operation="prepare", command=command)
        return query.with_stmt(stmt)

    def declare(self, query: Query, params: Sequence[Any] = ()) -> tuple[Query, Result]:
        self._require_prepared(query, "declare")
        command = Command("declare", stmt=query.stmt, params=tuple(params))
        result = self._round_trip("declare", command, sql=query.statement, params=params)
        return query, result

    def execute(self, query: Query, params: Sequence[Any] = (), *, timeout: Any = _DEFAULT) -> Result:
        self._require_prepared(query, "execute")
        command = Command("execute", stmt=query.stmt, params=tuple(params))
        return self._round_trip(
            "execute",
            command,
            sql=query.statement,
            params=params,
            timeout=timeout,
            decode=True,
        )

    def fetch(self, query: Query, cursor: Cursor | Any) -> Result:
        self._require_prepared(query, "fetch")
        cursor_id = cursor.id if isinstance(cursor, Cursor) else cursor
        command = Command("execute", stmt=query.stmt, cursor=cursor_id)
        return self._round_trip("fetch", command, sql=query.statement, decode=True)

    def deallocate(self, query: Query, cursor: Cursor | Any) -> Result:
        _ = query
        cursor_id = cursor.id if isinstance(cursor, Cursor) else cursor
        return self._round_trip("deallocate", Command("deallocate", cursor=cursor_id))

    def close(self, query: Query) -> Result:
        """
        Releases a prepared statement. Closing an unprepared handle, an already
        closed one, or one whose connection is gone succeeds without effect.
        """
        if not query.is_prepared or self.state not in _LIVE_STATES:
            return Result()
        return self._round_trip("close", Command("close", stmt=query.stmt), sql=query.statement)

    def status(self) -> TransactionStatus:
        try:
            self._round_trip("status", Command("status"))
        except DuckbridgeError as exc:
            self._mark_errored(exc)
            return TransactionStatus.ERROR
        return TransactionStatus.TRANSACTION if self.in_transaction else TransactionStatus.IDLE

    # ==================================================
    # Round Trip + Observability Helpers
    # ==================================================

    def _require_prepared(self, query: Query, operation: str) -> None:
        if not query.is_prepared:
            raise ValueError(f"{operation} needs a prepared query; call prepare() first")

    def _ensure_usable(self, operation: str, command: Command | None = None) -> RequestChannel:
        channel = self._channel
        if channel is not None and self.state in _LIVE_STATES:
            reason = channel.dead_reason
            if reason is not None:
                self._mark_errored(reason)
                raise TransportError(
                    f"Worker connection is unusable: {reason.message}",
                    operation=operation,
                    command=command,
                )
        if self.state not in _LIVE_STATES or channel is None:
            raise TransportError(
                f"Connection is {self.state.value} and cannot be used",
                operation=operation,
                command=command,
            )
        return self._channel

    def _round_trip(
        self,
        operation: str,
        command: Command,
        *,
        sql: str | None = None,
        params: Sequence[Any] | None = None,
        timeout: Any = _DEFAULT,
        decode: bool = False,
    ) -> Result:
        if timeout is _DEFAULT:
            timeout = self.settings.timeout_seconds
        channel = self._ensure_usable(operation, command)

        def _run() -> Result:
            started = time.perf_counter()
            try:
                reply = channel.send(command, timeout)
            except DuckbridgeError as exc:
                if exc.details.exec_time_ms is None:
                    exc.details.exec_time_ms = (time.perf_counter() - started) * 1000
                exc.details.operation = operation
                if exc.fatal:
                    self._mark_errored(exc)
                raise

            exec_time_ms = (time.perf_counter() - started) * 1000
            if isinstance(reply, Failure):
                raise normalize_reply_error(
                    reply,
                    operation=operation,
                    command=command,
                    exec_time_ms=exec_time_ms,
                )
            result = Result.from_reply(reply)
            if decode:
                # decode failures count as failed commands
                return self.decoder.decode_result(result)
            return result

        return self._observe(operation=operation, command=command, sql=sql, params=params, run=_run)

    def _observe(
        self,
        *,
        operation: str,
        command: Command,
        sql: str | None,
        params: Sequence[Any] | None,
        run: Callable[[], T],
    ) -> T:
        settings = self.observability_settings
        if settings.query_observer is None and settings.event_observer is None:
            return run()

        started = time.perf_counter()
        error: Exception | None = None
        try:
            return run()
        except Exception as exc:
            error = exc
            raise
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            fatal = getattr(error, "fatal", None)
            if settings.query_observer is not None:
                settings.query_observer(
                    QueryObservation(
                        connection_id=self.connection_id,
                        operation=operation,
                        command=command.command,
                        sql=sql,
                        param_count=len(params) if params is not None else 0,
                        duration_ms=duration_ms,
                        succeeded=error is None,
                        in_transaction=self.in_transaction,
                        metadata=dict(settings.metadata),
                        error_type=type(error).__name__ if error is not None else None,
                        error_message=str(error) if error is not None else None,
                        fatal=fatal,
                    )
                )
            self._emit_event(
                "command.end",
                success=error is None,
                operation=operation,
                duration_ms=duration_ms,
                error=error,
            )

    def _on_worker_failure(self, error: TransportError) -> None:
        """
        Runs on the reader thread when the worker exits or its output cannot
        be framed, whether or not a command is pending.
        """
        exit_code = error.exit_code if isinstance(error, WorkerExitedError) else None
        self._emit_event(
            "worker.exit",
            success=False,
            operation=error.operation,
            error=error,
            exit_code=exit_code,
        )
        self._mark_errored(error)

    def _mark_errored(self, error: DuckbridgeError) -> None:
        with self._state_lock:
            if self.state in (ConnectionState.ERRORED, ConnectionState.DISCONNECTED):
                return
            self.state = ConnectionState.ERRORED
        logger.warning(
            "connection %s is no longer usable after %s failure: %s",
            self.connection_id,
            error.operation,
            error.message,
        )
        self._emit_event("connection.errored", success=False, operation=error.operation, error=error)

    def _emit_event(
        self,
        event: str,
        *,
        success: bool,
        operation: str | None = None,
        error: Exception | None = None,
        started: float | None = None,
        duration_ms: float | None = None,
        **kwargs: Any,
    ) -> None:
        observer = self.observability_settings.event_observer
        if observer is None:
            return
        if duration_ms is None and started is not None:
            duration_ms = (time.perf_counter() - started) * 1000
        observer(
            ExecutionEvent(
                timestamp=now_iso_utc(),
                event=event,
                connection_id=self.connection_id,
                success=success,
                metadata=dict(self.observability_settings.metadata),
                operation=operation,
                state=self.state.value,
                worker_pid=kwargs.pop("worker_pid", self.worker_pid),
                duration_ms=duration_ms,
                error_type=type(error).__name__ if error is not None else None,
                error_message=str(error) if error is not None else None,
                fatal=getattr(error, "fatal", None),
                **kwargs,
            )
        )
