"""Newline framing for byte streams that arrive in arbitrary chunks."""

from __future__ import annotations

NEWLINE = 0x0A


class LineBuffer:
    """Accumulates bytes and yields complete lines.

    Invariant: `pending` plus every line returned so far (each followed by
    its line feed) equals all bytes fed so far. A trailing partial line is
    held until its line feed arrives or `flush()` is called.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """Append a chunk and return the complete lines it finished (line feeds stripped)."""
        if not chunk:
            return []
        self._buffer.extend(chunk)

        lines: list[bytes] = []
        start = 0
        while True:
            index = self._buffer.find(NEWLINE, start)
            if index < 0:
                break
            lines.append(bytes(self._buffer[start:index]))
            start = index + 1

        if start:
            del self._buffer[:start]
        return lines

    def flush(self) -> bytes:
        """Return and clear the trailing partial line."""
        rest = bytes(self._buffer)
        self._buffer.clear()
        return rest

    def clear(self) -> None:
        self._buffer.clear()
