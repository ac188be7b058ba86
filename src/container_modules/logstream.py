"""Incremental substring matching over a live log stream."""

from collections.abc import Iterable


class LogScanner:
    """
    Feeds chunks of a byte stream and reports whether ``pattern`` has appeared.

    Only the last ``len(pattern) - 1`` bytes are retained between chunks, so a
    match split across two chunks is still found while memory stays constant
    regardless of how long the container has been logging.
    """

    def __init__(self, pattern: str | bytes):
        self.pattern = pattern.encode() if isinstance(pattern, str) else pattern
        if not self.pattern:
            raise ValueError("pattern must not be empty")
        self._tail = b""
        self.bytes_seen = 0
        self.matched = False

    def feed(self, chunk: bytes) -> bool:
        if self.matched:
            return True

        self.bytes_seen += len(chunk)
        window = self._tail + chunk
        if self.pattern in window:
            self.matched = True
            self._tail = b""
            return True

        keep = len(self.pattern) - 1
        self._tail = window[-keep:] if keep else b""
        return False

    def scan(self, chunks: Iterable[bytes]) -> bool:
        """Consume ``chunks`` until a match; False if the stream ends first."""
        for chunk in chunks:
            if self.feed(chunk):
                return True
        return False
