from __future__ import annotations

from duckbridge.errors import FramingError

# ==================================================
# Line Framer
# ==================================================

DEFAULT_MAX_LINE_BYTES = 64 * 1024 * 1024


class Framer:
    """
    Splits the worker's stdout byte stream into newline-terminated messages.

    Trailing bytes without a terminator are kept until a later chunk completes
    them. The terminator (and a preceding carriage return) is stripped.
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        if max_line_bytes < 1:
            raise ValueError("max_line_bytes must be >= 1")
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """
        Returns the messages completed by `chunk`. The size limit applies to
        the payload, without the terminator or a carriage return before it.
        """
        if not chunk:
            return []

        self._buffer.extend(chunk)
        lines: list[bytes] = []
        start = 0
        while True:
            end = self._buffer.find(b"\n", start)
            if end < 0:
                break
            line = bytes(self._buffer[start:end])
            if line.endswith(b"\r"):
                line = line[:-1]
            if len(line) > self.max_line_bytes:
                self.reset()
                raise FramingError(
                    f"Worker message exceeded {self.max_line_bytes} bytes",
                    lines=lines,
                    operation="read",
                )
            lines.append(line)
            start = end + 1

        del self._buffer[:start]
        pending = len(self._buffer)
        if self._buffer.endswith(b"\r"):
            # may be the first half of a CRLF terminator
            pending -= 1
        if pending > self.max_line_bytes:
            self.reset()
            raise FramingError(
                f"Worker message exceeded {self.max_line_bytes} bytes ({pending} buffered without terminator)",
                lines=lines,
                operation="read",
            )
        return lines

    def reset(self) -> None:
        self._buffer.clear()
