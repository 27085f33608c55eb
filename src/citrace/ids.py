# src/citrace/ids.py
"""Random identifier source for synthesized trace contexts.

Random bytes are drawn from ``os.urandom`` in batches large enough for many
identifiers, so that generating one id per test does not hit the OS entropy
source every time. Identifiers are NOT suitable for cryptographic use.
"""

import os
import threading

_ID_BYTES = 8


class RandomIdSource:
    """Batched source of random 64-bit trace ids.

    Thread Safety:
        The batch buffer is guarded by a lock; ids may be drawn from any thread.

    Example:
        >>> source = RandomIdSource()
        >>> trace_id = source.next_id()
        >>> 0 < trace_id < 2**64
        True
    """

    def __init__(self, batch_size: int = 128) -> None:
        """Initialize the source.

        Args:
            batch_size: Number of ids refilled per ``os.urandom`` call.

        Raises:
            ValueError: If batch_size < 1.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._batch_bytes = batch_size * _ID_BYTES
        self._buffer = b""
        self._offset = 0
        self._lock = threading.Lock()

    def _take(self, size: int) -> bytes:
        with self._lock:
            if self._offset + size > len(self._buffer):
                self._buffer = os.urandom(self._batch_bytes)
                self._offset = 0
            chunk = self._buffer[self._offset : self._offset + size]
            self._offset += size
            return chunk

    def next_id(self) -> int:
        """Return a uniformly random non-zero 64-bit identifier."""
        while True:
            value = int.from_bytes(self._take(_ID_BYTES), "big")
            if value:
                return value


_default_source = RandomIdSource()


def generate_trace_id() -> int:
    """Return a random 64-bit trace id from the shared source."""
    return _default_source.next_id()
