"""Flat-file export of archived snapshots.

Output is deterministic: identical rows always encode to identical bytes.
"""

import csv
import io
from collections.abc import Iterable

from chainwatch.core.alerts import format_timestamp
from chainwatch.core.models import ARCHIVED_FIELDS, ArchivedSnapshot, NormalizedMetrics

CSV_HEADER: tuple[str, ...] = (
    "timestamp",
    "datetime",
    "block_height",
    "slot",
    "epoch",
    "slot_in_epoch",
    "connected_peers",
    "memory_used_bytes",
    "mempool_txs",
    "mempool_bytes",
    "sync_percent",
    "kes_period",
    "kes_remaining",
)


def _integer(value: int | float | None) -> str:
    return "" if value is None else str(int(value))


def _percent(fraction: int | float | None) -> str:
    return "" if fraction is None else f"{fraction * 100:.2f}"


def encode_row(snapshot: ArchivedSnapshot) -> list[str]:
    """Render one snapshot as CSV cells in ``CSV_HEADER`` order."""
    row = [str(int(snapshot.timestamp)), format_timestamp(snapshot.timestamp)]
    for name in ARCHIVED_FIELDS:
        value = snapshot.get(name)
        row.append(_percent(value) if name == "sync_fraction" else _integer(value))
    return row


def encode_csv(snapshots: Iterable[ArchivedSnapshot]) -> str:
    """Encode snapshots to CSV text with a header row.

    Args:
        snapshots: Rows to export, in the order they should appear.

    Returns:
        CSV text with ``\\n`` line endings. Missing values are empty cells.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for snapshot in snapshots:
        writer.writerow(encode_row(snapshot))
    return buffer.getvalue()


def encode_live(metrics: NormalizedMetrics, timestamp: float) -> str:
    """Encode the current state of a node as a single-row CSV export."""
    return encode_csv([ArchivedSnapshot.from_metrics(metrics, timestamp)])
