"""Storage adapters implementing core ports."""

from chainwatch.adapters.storage.alert_log import AlertLogFile, sanitize_node_name
from chainwatch.adapters.storage.ring_buffer import RingBufferLogStorage
from chainwatch.adapters.storage.sqlite_snapshots import SQLiteSnapshotStore

__all__ = [
    "AlertLogFile",
    "RingBufferLogStorage",
    "SQLiteSnapshotStore",
    "sanitize_node_name",
]
