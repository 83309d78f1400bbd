"""SQLite archive of downsampled per-node snapshots."""

import asyncio
import json
import logging
import zlib
from collections.abc import Iterable
from pathlib import Path

from chainwatch.adapters.storage.alert_log import sanitize_node_name
from chainwatch.adapters.storage.sqlite_base import AsyncConnectionManager
from chainwatch.core.encoding.csv import encode_csv
from chainwatch.core.errors import StorageError
from chainwatch.core.models import (
    ARCHIVED_FIELDS,
    ArchivedSnapshot,
    NormalizedMetrics,
    RetentionPolicy,
)

logger = logging.getLogger(__name__)

_SNAPSHOTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    payload BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snapshots_timestamp ON snapshots(timestamp);
"""

_INSERT_SNAPSHOT = """
INSERT INTO snapshots (timestamp, payload) VALUES (?, ?)
"""

_SELECT_SNAPSHOTS = """
SELECT timestamp, payload
FROM snapshots
WHERE timestamp > ?
ORDER BY timestamp ASC, id ASC
"""

_SELECT_LATEST = """
SELECT timestamp, payload
FROM snapshots
ORDER BY timestamp DESC, id DESC
LIMIT ?
"""

_SELECT_LAST_TIMESTAMP = """
SELECT MAX(timestamp) FROM snapshots
"""

_COUNT_SNAPSHOTS = """
SELECT COUNT(*) FROM snapshots
"""

_DELETE_SNAPSHOTS_BEFORE = """
DELETE FROM snapshots WHERE timestamp < ?
"""


def encode_payload(snapshot: ArchivedSnapshot) -> bytes:
    """Serialize archived values as zlib-compressed JSON."""
    document = {name: snapshot.get(name) for name in ARCHIVED_FIELDS}
    return zlib.compress(json.dumps(document, sort_keys=True).encode("utf-8"))


def decode_payload(timestamp: float, payload: bytes) -> ArchivedSnapshot:
    """Inverse of ``encode_payload``.

    Raises:
        StorageError: If the payload is not valid compressed JSON.
    """
    try:
        document = json.loads(zlib.decompress(payload).decode("utf-8"))
    except (zlib.error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StorageError(f"corrupt snapshot at {timestamp}: {exc}") from exc
    values = {name: document.get(name) for name in ARCHIVED_FIELDS}
    return ArchivedSnapshot(timestamp=timestamp, values=values)


class SQLiteSnapshotStore:
    """SnapshotStoragePort implementation backed by one SQLite file per node.

    The archive is downsampled: ``save`` only appends when at least
    ``retention.sample_interval_seconds`` have passed since the last stored
    row. The last row's time is read back from the file on first use, so the
    interval survives restarts. Callers only save while the node is online.

    Args:
        db_path: Database file, or ``:memory:``.
        retention: Sampling interval and maximum age of rows.
    """

    def __init__(
        self, db_path: str | Path, retention: RetentionPolicy | None = None
    ) -> None:
        self._connections = AsyncConnectionManager(db_path, _SNAPSHOTS_SCHEMA)
        self.retention = retention or RetentionPolicy()
        self._last_saved: float | None = None
        self._loaded_last = False

    @classmethod
    def for_node(
        cls,
        data_dir: str | Path,
        node_name: str,
        retention: RetentionPolicy | None = None,
    ) -> "SQLiteSnapshotStore":
        """Open the archive at ``<data_dir>/history/<node>.db``."""
        path = Path(data_dir) / "history" / f"{sanitize_node_name(node_name)}.db"
        return cls(path, retention)

    @property
    def db_path(self) -> str:
        return self._connections.db_path

    async def _last_timestamp(self) -> float | None:
        if not self._loaded_last:
            async with self._connections.connection() as db:
                async with db.execute(_SELECT_LAST_TIMESTAMP) as cursor:
                    row = await cursor.fetchone()
            self._last_saved = row[0] if row and row[0] is not None else None
            self._loaded_last = True
        return self._last_saved

    async def save(self, metrics: NormalizedMetrics, now: float) -> bool:
        """Archive ``metrics`` if the sampling interval has elapsed.

        Returns:
            True if a row was written.

        Raises:
            StorageError: If the database cannot be written.
        """
        last = await self._last_timestamp()
        if last is not None and now - last < self.retention.sample_interval_seconds:
            return False
        snapshot = ArchivedSnapshot.from_metrics(metrics, now)
        async with self._connections.connection() as db:
            await db.execute(_INSERT_SNAPSHOT, (now, encode_payload(snapshot)))
            await db.commit()
        self._last_saved = now
        logger.info("Archived snapshot to %s", self.db_path)
        return True

    async def enforce_retention(self, now: float) -> int:
        """Delete rows older than ``retention.max_age_seconds``.

        Returns:
            Number of rows deleted.
        """
        cutoff = now - self.retention.max_age_seconds
        async with self._connections.connection() as db:
            cursor = await db.execute(_DELETE_SNAPSHOTS_BEFORE, (cutoff,))
            deleted = cursor.rowcount
            await db.commit()
        if deleted:
            logger.info("Removed %d archived snapshots from %s", deleted, self.db_path)
        return deleted

    async def read(self, since: float = 0) -> list[ArchivedSnapshot]:
        """Read rows with timestamp > since, oldest first.

        Rows that fail to decode are skipped with a warning.
        """
        async with self._connections.connection() as db:
            async with db.execute(_SELECT_SNAPSHOTS, (since,)) as cursor:
                rows = await cursor.fetchall()
        return self._decode_rows(rows)

    async def latest(self, limit: int) -> list[ArchivedSnapshot]:
        """Read the newest ``limit`` rows, returned oldest first."""
        async with self._connections.connection() as db:
            async with db.execute(_SELECT_LATEST, (limit,)) as cursor:
                rows = await cursor.fetchall()
        return self._decode_rows(reversed(list(rows)))

    def _decode_rows(
        self, rows: Iterable[tuple[float, bytes]]
    ) -> list[ArchivedSnapshot]:
        snapshots = []
        for timestamp, payload in rows:
            try:
                snapshots.append(decode_payload(timestamp, payload))
            except StorageError as exc:
                logger.warning("Skipping archived row: %s", exc)
        return snapshots

    async def count(self) -> int:
        """Return the number of archived rows."""
        async with self._connections.connection() as db:
            async with db.execute(_COUNT_SNAPSHOTS) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def export_csv(self, path: str | Path, since: float = 0) -> int:
        """Write the archive to ``path`` as CSV.

        Returns:
            Number of data rows written.

        Raises:
            StorageError: If the file cannot be written.
        """
        snapshots = await self.read(since)
        text = encode_csv(snapshots)
        target = Path(path)
        try:
            await asyncio.to_thread(target.write_text, text, encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot write {target}: {exc}") from exc
        logger.info("Exported %d snapshots to %s", len(snapshots), target)
        return len(snapshots)

    async def close(self) -> None:
        await self._connections.close()
