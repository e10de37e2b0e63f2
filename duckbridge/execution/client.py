from __future__ import annotations

import logging
from typing import Any, Callable, Sequence, TypeVar

from duckbridge.errors import DuckbridgeError, RollbackError
from duckbridge.execution.connection import ConnectionAcquireHook, ConnectionReleaseHook, ConnectionSettings
from duckbridge.execution.observability import ObservabilitySettings
from duckbridge.execution.protocol import ConnectionProtocol, TransactionStatus
from duckbridge.execution.query import Query
from duckbridge.execution.result import Result, ResultDecoder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _RollbackRequested(Exception):
    def __init__(self, reason: Any) -> None:
        self.reason = reason
        super().__init__(reason)


# ==================================================
# Client
# ==================================================


class Client:
    """
    Caller-facing query surface over `ConnectionProtocol`.

    Connections come from, in order of preference: the active transaction, an
    explicitly passed `connection`, the `acquire_connection` hook (an external
    pool), or a worker the client starts and owns itself. An owned worker that
    becomes unusable is disconnected and replaced on the next call.

    Every operation has a raising form (`query`) and a form that returns the
    error instead (`try_query`); both carry the same error object.
    """

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        *,
        connection: ConnectionProtocol | None = None,
        acquire_connection: ConnectionAcquireHook | None = None,
        release_connection: ConnectionReleaseHook | None = None,
        observability_settings: ObservabilitySettings | None = None,
        decoder: ResultDecoder | None = None,
    ) -> None:
        self.settings = settings or ConnectionSettings()
        self.connection = connection
        self.acquire_connection = acquire_connection or self.settings.acquire_connection
        self.release_connection = release_connection or self.settings.release_connection
        self.observability_settings = observability_settings or ObservabilitySettings()
        self.decoder = decoder
        self._owned_connection: ConnectionProtocol | None = None
        self._closed = False
        self._transaction_connection: ConnectionProtocol | None = None
        self._transaction_release_mode: str | None = None

    # ==================================================
    # Connection Routing
    # ==================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Client is closed.")

    def _get_connection(self) -> tuple[ConnectionProtocol, str | None]:
        self._ensure_open()
        if self._transaction_connection is not None:
            return self._transaction_connection, None
        if self.connection is not None:
            return self.connection, None
        if self.acquire_connection is not None:
            conn = self.acquire_connection()
            conn.checkout()
            return conn, "release"

        conn = self._owned_connection
        if conn is None or not conn.is_usable:
            if conn is not None:
                conn.disconnect()
            conn = ConnectionProtocol.connect(
                self.settings,
                observability_settings=self.observability_settings,
                decoder=self.decoder,
            )
            self._owned_connection = conn
        conn.checkout()
        return conn, "owned"

    def _release_connection(self, conn: ConnectionProtocol, mode: str | None) -> None:
        if mode is None:
            return
        conn.checkin()
        if mode == "release":
            if self.release_connection is not None:
                self.release_connection(conn)
            elif not conn.is_usable:
                conn.disconnect()
            return
        if mode == "owned" and not conn.is_usable:
            conn.disconnect()
            self._owned_connection = None

    def _run(self, work: Callable[[ConnectionProtocol], T]) -> T:
        conn, mode = self._get_connection()
        try:
            return work(conn)
        finally:
            self._release_connection(conn, mode)

    @staticmethod
    def _attempt(work: Callable[[], T]) -> T | DuckbridgeError:
        try:
            return work()
        except DuckbridgeError as exc:
            return exc

    # ==================================================
    # Statements
    # ==================================================

    def prepare(self, statement: str | Query) -> Query:
        return self._run(lambda conn: conn.prepare(statement))

    def try_prepare(self, statement: str | Query) -> Query | DuckbridgeError:
        return self._attempt(lambda: self.prepare(statement))

    def execute(self, query: Query, params: Sequence[Any] = ()) -> Result:
        return self._run(lambda conn: conn.execute(query, params))

    def try_execute(self, query: Query, params: Sequence[Any] = ()) -> Result | DuckbridgeError:
        return self._attempt(lambda: self.execute(query, params))

    def prepare_execute(self, statement: str | Query, params: Sequence[Any] = ()) -> tuple[Query, Result]:
        def _work(conn: ConnectionProtocol) -> tuple[Query, Result]:
            query = conn.prepare(statement)
            return query, conn.execute(query, params)

        return self._run(_work)

    def try_prepare_execute(
        self,
        statement: str | Query,
        params: Sequence[Any] = (),
    ) -> tuple[Query, Result] | DuckbridgeError:
        return self._attempt(lambda: self.prepare_execute(statement, params))

    def query(self, statement: str | Query, params: Sequence[Any] = ()) -> Result:
        """
        Prepares, executes and closes a statement on one connection.
        """

        def _work(conn: ConnectionProtocol) -> Result:
            query = conn.prepare(statement)
            try:
                return conn.execute(query, params)
            finally:
                conn.close(query)

        return self._run(_work)

    def try_query(self, statement: str | Query, params: Sequence[Any] = ()) -> Result | DuckbridgeError:
        return self._attempt(lambda: self.query(statement, params))

    def close(self, query: Query) -> Result:
        return self._run(lambda conn: conn.close(query))

    def try_close(self, query: Query) -> Result | DuckbridgeError:
        return self._attempt(lambda: self.close(query))

    def status(self) -> TransactionStatus:
        return self._run(lambda conn: conn.status())

    # ==================================================
    # Transactions
    # ==================================================

    def _has_active_transaction(self) -> bool:
        return self._transaction_connection is not None

    def begin(self) -> None:
        self._ensure_open()
        if self._has_active_transaction():
            raise RuntimeError("Transaction already active.")
        conn, mode = self._get_connection()
        try:
            conn.begin()
        except BaseException:
            self._release_connection(conn, mode)
            raise
        self._transaction_connection = conn
        self._transaction_release_mode = mode

    def _require_active_transaction_connection(self) -> ConnectionProtocol:
        self._ensure_open()
        if self._transaction_connection is None:
            raise RuntimeError("No active transaction. Call begin() first.")
        return self._transaction_connection

    def _finalize_transaction(self) -> None:
        conn = self._transaction_connection
        mode = self._transaction_release_mode
        if conn is None:
            return
        self._transaction_connection = None
        self._transaction_release_mode = None
        self._release_connection(conn, mode)

    def commit(self) -> None:
        conn = self._require_active_transaction_connection()
        try:
            conn.commit()
        finally:
            self._finalize_transaction()

    def rollback(self) -> None:
        conn = self._require_active_transaction_connection()
        try:
            conn.rollback()
        finally:
            self._finalize_transaction()

    def transaction(self, work: Callable[["Transaction"], T]) -> T:
        """
        Runs `work` between begin and commit. Any exception rolls back and
        propagates; `Transaction.rollback(reason)` rolls back and raises
        `RollbackError` carrying the reason.
        """
        self.begin()
        try:
            value = work(Transaction(self))
        except _RollbackRequested as requested:
            self.rollback()
            raise RollbackError(requested.reason, operation="transaction") from None
        except BaseException:
            self._rollback_quietly()
            raise
        self.commit()
        return value

    def try_transaction(self, work: Callable[["Transaction"], T]) -> T | DuckbridgeError:
        return self._attempt(lambda: self.transaction(work))

    def _rollback_quietly(self) -> None:
        if not self._has_active_transaction():
            return
        try:
            self.rollback()
        except DuckbridgeError as exc:
            logger.warning("rollback after failed transaction body also failed: %s", exc.message)

    # ==================================================
    # Lifecycle Controls
    # ==================================================

    def disconnect(self) -> None:
        """
        Rolls back an open transaction and stops the owned worker, if any.
        Connections passed in or acquired from a pool are left to their owner.
        """
        if self._closed:
            return
        self._rollback_quietly()
        if self._owned_connection is not None:
            self._owned_connection.disconnect()
            self._owned_connection = None
        self._closed = True

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        _ = exc_type
        _ = exc
        _ = tb
        self.disconnect()


class Transaction:
    """
    Handle passed to `Client.transaction` bodies.
    """

    def __init__(self, client: Client) -> None:
        self.client = client

    def prepare(self, statement: str | Query) -> Query:
        return self.client.prepare(statement)

    def execute(self, query: Query, params: Sequence[Any] = ()) -> Result:
        return self.client.execute(query, params)

    def prepare_execute(self, statement: str | Query, params: Sequence[Any] = ()) -> tuple[Query, Result]:
        return self.client.prepare_execute(statement, params)

    def query(self, statement: str | Query, params: Sequence[Any] = ()) -> Result:
        return self.client.query(statement, params)

    def try_query(self, statement: str | Query, params: Sequence[Any] = ()) -> Result | DuckbridgeError:
        return self.client.try_query(statement, params)

    def close(self, query: Query) -> Result:
        return self.client.close(query)

    def rollback(self, reason: Any = None) -> None:
        raise _RollbackRequested(reason)
