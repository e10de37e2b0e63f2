from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from duckbridge.errors import (
    BusyError,
    CommandTimeoutError,
    DecodeError,
    DuckbridgeError,
    FramingError,
    TransportError,
    WorkerExitedError,
    WriteError,
)
from duckbridge.transport import codec
from duckbridge.transport.framer import Framer
from duckbridge.transport.messages import Command, Reply
from duckbridge.transport.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

# ==================================================
# Request Channel
# ==================================================


class _PendingCall:
    __slots__ = ("command", "reply", "error", "done", "abandoned", "started_at")

    def __init__(self, command: Command) -> None:
        self.command = command
        self.reply: Reply | None = None
        self.error: DuckbridgeError | None = None
        self.done = False
        self.abandoned = False
        self.started_at = time.perf_counter()


class RequestChannel:
    """
    Strict one-at-a-time request/reply channel over a worker's stdio.

    Precondition: callers serialize `send` per channel. A second `send` while a
    call is outstanding raises `BusyError`; nothing is queued.

    Known race: after a `CommandTimeoutError` the slot stays occupied by the
    abandoned call. The next line the worker writes belongs to that call and is
    dropped, after which the slot is free again. Until then every `send` raises
    `BusyError`. Disconnecting after a timeout is the recommended recovery.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        framer: Framer | None = None,
        *,
        on_failure: Callable[[TransportError], None] | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.framer = framer or Framer()
        self.on_failure = on_failure
        self._cond = threading.Condition()
        self._pending: _PendingCall | None = None
        self._dead: TransportError | None = None
        self._closing = False
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"duckbridge-reader-{supervisor.pid}",
            daemon=True,
        )

    def start(self) -> "RequestChannel":
        self._reader.start()
        return self

    @property
    def is_dead(self) -> bool:
        with self._cond:
            return self._dead is not None

    @property
    def dead_reason(self) -> TransportError | None:
        with self._cond:
            return self._dead

    @property
    def is_awaiting(self) -> bool:
        with self._cond:
            return self._pending is not None

    def send(self, command: Command, timeout: float | None = None) -> Reply:
        data = codec.encode(command)

        with self._cond:
            if self._dead is not None:
                raise TransportError(
                    f"Worker connection is unusable: {self._dead.message}",
                    operation=command.command,
                    command=command,
                )
            if self._pending is not None:
                raise BusyError(
                    f"A {self._pending.command.command} command is already awaiting a reply",
                    operation=command.command,
                    command=command,
                )
            call = _PendingCall(command)
            self._pending = call

        logger.debug("duckbridge -> %s", data.rstrip(b"\n").decode("utf-8", "replace"))
        try:
            self.supervisor.write(data)
        except WriteError as exc:
            exc.details.command = command
            with self._cond:
                if self._pending is call:
                    self._pending = None
                if self._dead is None:
                    self._dead = exc
            raise

        with self._cond:
            finished = self._cond.wait_for(lambda: call.done, timeout)
            if not finished:
                call.abandoned = True
                raise CommandTimeoutError(
                    f"Worker did not reply to {command.command} within {timeout}s",
                    operation=command.command,
                    command=command,
                    exec_time_ms=(time.perf_counter() - call.started_at) * 1000,
                )

        if call.error is not None:
            raise call.error
        assert call.reply is not None
        return call.reply

    def close(self, grace_seconds: float = 5.0) -> int | None:
        """
        Stops the worker and the reader thread. Idempotent.
        """
        with self._cond:
            self._closing = True
        code = self.supervisor.terminate(grace_seconds)
        if self._reader.is_alive() and self._reader is not threading.current_thread():
            self._reader.join(timeout=grace_seconds + 1.0)
        self.supervisor.close_pipes()
        self._fail(TransportError("Worker connection was closed", operation="disconnect"))
        return code

    # ==================================================
    # Reader Side
    # ==================================================

    def _read_loop(self) -> None:
        while True:
            try:
                chunk = self.supervisor.read_chunk()
            except WorkerExitedError as exc:
                with self._cond:
                    closing = self._closing
                if closing:
                    logger.debug("worker pid=%s exited with status %s", self.supervisor.pid, exc.exit_code)
                else:
                    logger.error("Unexpected exit of worker process with status: %s", exc.exit_code)
                self._fail(exc)
                if not closing:
                    self._notify_failure(exc)
                return

            try:
                lines = self.framer.feed(chunk)
            except FramingError as exc:
                logger.error("Dropping worker connection: %s", exc.message)
                for line in exc.lines:
                    self._deliver(line)
                self._fail(exc)
                self.supervisor.terminate(0)
                self._notify_failure(exc)
                return

            for line in lines:
                self._deliver(line)

    def _deliver(self, line: bytes) -> None:
        with self._cond:
            call = self._pending
            if call is None:
                logger.warning("Discarding unsolicited worker message: %r", line[:200])
                return
            self._pending = None

            if call.abandoned:
                logger.warning("Discarding late reply to timed-out %s command", call.command.command)
                self._cond.notify_all()
                return

            try:
                call.reply = codec.decode(line)
                logger.debug("duckbridge <- %s", call.reply)
            except DecodeError as exc:
                logger.error("Error processing response: %s", exc.message)
                exc.details.command = call.command
                call.error = exc
            call.done = True
            self._cond.notify_all()

    def _fail(self, error: TransportError) -> None:
        with self._cond:
            if self._dead is None:
                self._dead = error
            call = self._pending
            self._pending = None
            if call is not None and not call.abandoned and not call.done:
                error.details.command = call.command
                error.details.operation = call.command.command
                call.error = error
                call.done = True
            self._cond.notify_all()

    def _notify_failure(self, error: TransportError) -> None:
        if self.on_failure is not None:
            self.on_failure(error)
