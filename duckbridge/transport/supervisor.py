from __future__ import annotations

import logging
import os
import subprocess
import threading
from typing import Mapping, Sequence

from duckbridge.errors import SpawnError, WorkerExitedError, WriteError

logger = logging.getLogger(__name__)
worker_logger = logging.getLogger("duckbridge.worker")

# ==================================================
# Worker Process Supervisor
# ==================================================

READ_CHUNK_BYTES = 64 * 1024


class ProcessSupervisor:
    """
    Owns one worker OS process and its stdio pipes.

    Stdout is read in raw chunks by the caller (see `read_chunk`); stderr is
    drained on a daemon thread and forwarded to the `duckbridge.worker` logger.
    """

    def __init__(self, process: subprocess.Popen[bytes], argv: Sequence[str]) -> None:
        self.process = process
        self.argv = list(argv)
        self._write_lock = threading.Lock()
        self._terminated = False
        self._stderr_thread: threading.Thread | None = None
        if process.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=self._drain_stderr,
                name=f"duckbridge-stderr-{process.pid}",
                daemon=True,
            )
            self._stderr_thread.start()

    @classmethod
    def spawn(
        cls,
        executable: str,
        args: Sequence[str] = (),
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> "ProcessSupervisor":
        argv = [executable, *args]
        process_env = None
        if env:
            process_env = os.environ.copy()
            process_env.update(env)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=process_env,
                cwd=cwd,
            )
        except OSError as exc:
            raise SpawnError(f"Could not start worker {executable!r}: {exc}", operation="spawn") from exc

        logger.debug("spawned worker pid=%s argv=%s", process.pid, argv)
        return cls(process, argv)

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def write(self, data: bytes) -> None:
        stdin = self.process.stdin
        if stdin is None or stdin.closed:
            raise WriteError("Worker input pipe is closed", operation="write")
        with self._write_lock:
            try:
                stdin.write(data)
                stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise WriteError(f"Could not write to worker: {exc}", operation="write") from exc

    def read_chunk(self, size: int = READ_CHUNK_BYTES) -> bytes:
        """
        Blocks until the worker writes something. End of stream is reported as
        `WorkerExitedError`, never as an empty chunk.
        """
        stdout = self.process.stdout
        if stdout is None:
            raise WorkerExitedError(self.process.poll(), operation="read")
        try:
            chunk = os.read(stdout.fileno(), size)
        except (OSError, ValueError):
            chunk = b""
        if chunk:
            return chunk
        raise WorkerExitedError(self._wait_exit_code(), operation="read")

    def _wait_exit_code(self) -> int | None:
        try:
            return self.process.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            # stdout closed but the process lingers
            return self.process.poll()

    def terminate(self, grace_seconds: float = 5.0) -> int | None:
        """
        Closes stdin and waits for a clean exit, then escalates to SIGTERM and
        SIGKILL. Safe to call more than once.
        """
        if self._terminated:
            return self.process.poll()
        self._terminated = True

        stdin = self.process.stdin
        if stdin is not None:
            try:
                stdin.close()
            except OSError:
                logger.debug("worker pid=%s stdin already broken", self.pid)

        code = self._wait(grace_seconds)
        if code is None:
            logger.warning("worker pid=%s did not exit within %.1fs, terminating", self.pid, grace_seconds)
            self.process.terminate()
            code = self._wait(grace_seconds)
        if code is None:
            logger.warning("worker pid=%s ignored SIGTERM, killing", self.pid)
            self.process.kill()
            code = self._wait(None)

        logger.debug("worker pid=%s stopped with status %s", self.pid, code)
        return code

    def close_pipes(self) -> None:
        """
        Releases the stdout/stderr pipes once nothing reads them anymore.
        """
        if self._stderr_thread is not None:
            # lets the last stderr lines reach the log
            self._stderr_thread.join(timeout=1.0)
        for pipe in (self.process.stdout, self.process.stderr):
            if pipe is not None and not pipe.closed:
                pipe.close()

    def _wait(self, timeout: float | None) -> int | None:
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _drain_stderr(self) -> None:
        stderr = self.process.stderr
        if stderr is None:
            return
        try:
            for raw in iter(stderr.readline, b""):
                worker_logger.info("[pid %s] %s", self.pid, raw.decode("utf-8", "replace").rstrip())
        except (OSError, ValueError):
            return
