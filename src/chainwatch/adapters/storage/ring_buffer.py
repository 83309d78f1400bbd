"""Ring buffer storage for engine log entries.

Provides bounded in-memory storage that automatically evicts oldest
entries when the buffer is full, so log capture has predictable memory use.
"""

import threading
from collections import deque

from chainwatch.core.models import LogEntry

DEFAULT_LOG_BUFFER_SIZE = 1000


class RingBufferLogStorage:
    """Ring buffer implementation of LogStoragePort.

    Writes may come from any thread (logging handlers run on the caller's
    thread), so the buffer is guarded by a lock.

    Args:
        max_size: Maximum number of entries to store.
    """

    def __init__(self, max_size: int = DEFAULT_LOG_BUFFER_SIZE) -> None:
        self._buffer: deque[LogEntry] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def write(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        with self._lock:
            self._buffer.append(entry)

    def read(self, since: float = 0) -> list[LogEntry]:
        """Read log entries since the given timestamp.

        Returns entries with timestamp > since, ordered by timestamp ascending.
        """
        with self._lock:
            filtered = [e for e in self._buffer if e.timestamp > since]
        return sorted(filtered, key=lambda e: e.timestamp)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)
