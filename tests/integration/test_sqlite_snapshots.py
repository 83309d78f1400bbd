"""Integration tests for the SQLite snapshot archive and alert log file."""

from pathlib import Path

import aiosqlite
import pytest

from chainwatch.adapters.storage.alert_log import AlertLogFile, sanitize_node_name
from chainwatch.adapters.storage.sqlite_snapshots import (
    SQLiteSnapshotStore,
    decode_payload,
    encode_payload,
)
from chainwatch.core.encoding.csv import CSV_HEADER
from chainwatch.core.errors import StorageError
from chainwatch.core.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    ArchivedSnapshot,
    NormalizedMetrics,
    RetentionPolicy,
)

pytestmark = [pytest.mark.storage, pytest.mark.tier(1)]

T0 = 1_705_276_800.0
HOUR = 3600.0


def metrics(height: int) -> NormalizedMetrics:
    return NormalizedMetrics(block_height=height, connected_peers=20, epoch=480)


class TestPayloadEncoding:
    def test_payload_is_compressed_json(self) -> None:
        snapshot = ArchivedSnapshot.from_metrics(metrics(5), T0)

        decoded = decode_payload(T0, encode_payload(snapshot))

        assert decoded.get("block_height") == 5
        assert decoded.get("kes_remaining") is None

    def test_corrupt_payload_raises_storage_error(self) -> None:
        with pytest.raises(StorageError, match="corrupt"):
            decode_payload(T0, b"not zlib")


class TestSQLiteSnapshotStore:
    async def test_save_respects_sampling_interval(self, snapshot_db_path: str) -> None:
        store = SQLiteSnapshotStore(snapshot_db_path, RetentionPolicy())
        try:
            assert await store.save(metrics(1), T0) is True
            assert await store.save(metrics(2), T0 + 60) is False
            assert await store.save(metrics(3), T0 + HOUR) is True

            assert await store.count() == 2
        finally:
            await store.close()

    async def test_sampling_interval_survives_reopen(
        self, snapshot_db_path: str
    ) -> None:
        first = SQLiteSnapshotStore(snapshot_db_path)
        await first.save(metrics(1), T0)
        await first.close()

        reopened = SQLiteSnapshotStore(snapshot_db_path)
        try:
            assert await reopened.save(metrics(2), T0 + 60) is False
            assert await reopened.save(metrics(2), T0 + HOUR) is True
        finally:
            await reopened.close()

    async def test_read_returns_rows_oldest_first(self, snapshot_db_path: str) -> None:
        store = SQLiteSnapshotStore(
            snapshot_db_path, RetentionPolicy(sample_interval_seconds=0)
        )
        try:
            for i in range(3):
                await store.save(metrics(100 + i), T0 + i)

            rows = await store.read()
            recent = await store.read(since=T0)

            assert [r.get("block_height") for r in rows] == [100, 101, 102]
            assert [r.timestamp for r in recent] == [T0 + 1, T0 + 2]
        finally:
            await store.close()

    async def test_latest_returns_newest_rows_in_order(self) -> None:
        store = SQLiteSnapshotStore(
            ":memory:", RetentionPolicy(sample_interval_seconds=0)
        )
        try:
            for i in range(5):
                await store.save(metrics(i), T0 + i)

            rows = await store.latest(2)

            assert [r.get("block_height") for r in rows] == [3, 4]
        finally:
            await store.close()

    async def test_retention_deletes_old_rows(self, snapshot_db_path: str) -> None:
        store = SQLiteSnapshotStore(
            snapshot_db_path,
            RetentionPolicy(max_age_seconds=2 * HOUR, sample_interval_seconds=HOUR),
        )
        try:
            for i in range(4):
                await store.save(metrics(i), T0 + i * HOUR)

            deleted = await store.enforce_retention(T0 + 3 * HOUR)

            assert deleted == 1
            assert [r.get("block_height") for r in await store.read()] == [1, 2, 3]
        finally:
            await store.close()

    async def test_for_node_uses_sanitized_history_path(self, tmp_path: Path) -> None:
        store = SQLiteSnapshotStore.for_node(tmp_path, "Block Producer #1")
        try:
            await store.save(metrics(1), T0)
        finally:
            await store.close()

        assert (tmp_path / "history" / "block_producer__1.db").exists()

    async def test_corrupt_rows_are_skipped(self, snapshot_db_path: str) -> None:
        store = SQLiteSnapshotStore(
            snapshot_db_path, RetentionPolicy(sample_interval_seconds=0)
        )
        try:
            await store.save(metrics(1), T0)
            async with aiosqlite.connect(snapshot_db_path) as db:
                await db.execute(
                    "INSERT INTO snapshots (timestamp, payload) VALUES (?, ?)",
                    (T0 + 1, b"garbage"),
                )
                await db.commit()

            rows = await store.read()

            assert [r.get("block_height") for r in rows] == [1]
        finally:
            await store.close()

    async def test_unwritable_location_raises_storage_error(
        self, tmp_path: Path
    ) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = SQLiteSnapshotStore(blocker / "sub" / "a.db")

        with pytest.raises(StorageError):
            await store.save(metrics(1), T0)

    async def test_export_csv(self, snapshot_db_path: str, tmp_path: Path) -> None:
        store = SQLiteSnapshotStore(
            snapshot_db_path, RetentionPolicy(sample_interval_seconds=0)
        )
        target = tmp_path / "export.csv"
        try:
            await store.save(metrics(7), T0)
            await store.save(metrics(8), T0 + 60)

            written = await store.export_csv(target)
        finally:
            await store.close()

        lines = target.read_text().splitlines()
        assert written == 2
        assert lines[0] == ",".join(CSV_HEADER)
        assert lines[1].split(",")[2] == "7"
        assert lines[2].split(",")[2] == "8"

    async def test_export_to_missing_directory_raises(
        self, tmp_path: Path
    ) -> None:
        store = SQLiteSnapshotStore(":memory:")
        try:
            with pytest.raises(StorageError):
                await store.export_csv(tmp_path / "missing" / "out.csv")
        finally:
            await store.close()


class TestAlertLogFile:
    def _alert(self, message: str) -> Alert:
        return Alert(
            AlertKind.LOW_PEERS,
            AlertSeverity.WARNING,
            T0,
            "Relay One",
            "Low Peer Count",
            message,
        )

    def test_sanitize_node_name(self) -> None:
        assert sanitize_node_name("Relay One/EU") == "relay_one_eu"
        assert sanitize_node_name("bp-1_a") == "bp-1_a"

    def test_appends_one_line_per_alert(self, tmp_path: Path) -> None:
        sink = AlertLogFile(tmp_path / "alerts", "Relay One")

        sink.write([self._alert("first")])
        sink.write([self._alert("second")])

        lines = (tmp_path / "alerts" / "relay_one.log").read_text().splitlines()
        assert lines == [
            "2024-01-15T00:00:00Z | Relay One | WARN | Low Peer Count | first",
            "2024-01-15T00:00:00Z | Relay One | WARN | Low Peer Count | second",
        ]

    def test_write_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        sink = AlertLogFile(blocker, "relay")

        sink.write([self._alert("lost")])

        assert "Could not append" in caplog.text
