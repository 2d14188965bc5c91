"""Newline framing for the child's stdout byte stream.

The child writes one JSON document per line, but pipe reads hand us
arbitrary chunks. ``LineFramer`` keeps the unterminated tail between
calls and only decodes complete lines, so a multi-byte UTF-8 character
split across two reads is never mangled.
"""

# Default pending-frame budget. Most JSON-RPC messages are far smaller;
# a child that writes this much without a newline is treated as broken.
DEFAULT_MAX_PENDING = 10 * 1024 * 1024  # 10 MiB


class LineFramer:
    """Accumulates raw stdout bytes and cuts them into trimmed text frames."""

    def __init__(self, max_pending: int | None = DEFAULT_MAX_PENDING) -> None:
        self._buffer = bytearray()
        self._max_pending = max_pending

    def feed(self, chunk: bytes) -> list[str]:
        """Append *chunk* and return every frame it completed, in order.

        Whitespace-only lines are dropped. The incomplete tail stays
        buffered for the next call.
        """
        # The carried-over tail has no newline in it; skip re-scanning it.
        search_from = len(self._buffer)
        self._buffer += chunk

        frames: list[str] = []
        start = 0
        while True:
            index = self._buffer.find(b"\n", search_from)
            if index == -1:
                break
            line = self._buffer[start:index].decode("utf-8", errors="replace").strip()
            if line:
                frames.append(line)
            start = search_from = index + 1

        if start:
            del self._buffer[:start]
        return frames

    def reset(self) -> None:
        self._buffer.clear()

    @property
    def pending(self) -> int:
        """Number of buffered bytes that do not yet form a complete frame."""
        return len(self._buffer)

    @property
    def overflowed(self) -> bool:
        return self._max_pending is not None and len(self._buffer) > self._max_pending
