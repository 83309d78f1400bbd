"""Bounded in-memory history for sparklines and trends.

Each tracked metric gets a fixed-size circular buffer. When the buffer is
full, the oldest sample is automatically evicted to make room for new ones.
"""

import threading
from collections import deque
from collections.abc import Iterable, Mapping

from chainwatch.core.models import NormalizedMetrics, Sample

DEFAULT_CAPACITY = 60

NEUTRAL_LEVEL = 0.5

# Metrics tracked per node, in display order.
TRACKED_METRICS: tuple[str, ...] = (
    "block_height",
    "slot",
    "connected_peers",
    "memory_used_bytes",
    "mempool_txs",
    "sync_fraction",
    "peers_hot",
    "peers_warm",
    "peers_cold",
    "kes_remaining",
    "blocks_forged",
    "txs_processed",
    "cpu_seconds",
)


class HistorySeries:
    """Fixed-capacity series of ``(timestamp, value)`` samples.

    Timestamps are kept non-decreasing: a sample older than the newest one
    is stored with the newest timestamp instead.

    Args:
        capacity: Maximum number of samples to retain.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._buffer: deque[Sample] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._buffer.maxlen or 0

    def push(self, timestamp: float, value: float) -> None:
        """Append a sample, evicting the oldest when at capacity."""
        with self._lock:
            if self._buffer and timestamp < self._buffer[-1].timestamp:
                timestamp = self._buffer[-1].timestamp
            self._buffer.append(Sample(timestamp, float(value)))

    def samples(self) -> tuple[Sample, ...]:
        """Return a copy of the retained samples, oldest first."""
        with self._lock:
            return tuple(self._buffer)

    def values(self) -> list[float]:
        return [s.value for s in self.samples()]

    def latest(self) -> Sample | None:
        with self._lock:
            return self._buffer[-1] if self._buffer else None

    def previous(self) -> Sample | None:
        """Return the sample before the latest one."""
        with self._lock:
            return self._buffer[-2] if len(self._buffer) >= 2 else None

    def min(self) -> float | None:
        values = self.values()
        return min(values) if values else None

    def max(self) -> float | None:
        values = self.values()
        return max(values) if values else None

    def avg(self) -> float | None:
        values = self.values()
        return sum(values) / len(values) if values else None

    def delta(self) -> float | None:
        """Difference between the newest and the oldest sample."""
        samples = self.samples()
        if len(samples) < 2:
            return None
        return samples[-1].value - samples[0].value

    def rate_per_minute(self) -> float | None:
        """Average change per minute across the retained window."""
        samples = self.samples()
        if len(samples) < 2:
            return None
        elapsed = samples[-1].timestamp - samples[0].timestamp
        if elapsed <= 0:
            return None
        return (samples[-1].value - samples[0].value) / elapsed * 60.0

    def normalized(self) -> list[float]:
        """Scale samples to [0, 1] for sparkline rendering."""
        return normalize_values(self.values())

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)


def normalize_values(values: Iterable[float]) -> list[float]:
    """Scale values to [0, 1] relative to their min and max.

    When every value is equal (including a single value) the range is zero
    and each value maps to ``NEUTRAL_LEVEL``.
    """
    items = list(values)
    if not items:
        return []
    low, high = min(items), max(items)
    span = high - low
    if span == 0:
        return [NEUTRAL_LEVEL] * len(items)
    return [(v - low) / span for v in items]


def sparkline_levels(values: Iterable[float], levels: int = 8) -> list[int]:
    """Quantize normalized values into ``levels`` bar heights (0..levels-1)."""
    if levels < 1:
        raise ValueError("levels must be at least 1")
    top = levels - 1
    return [min(top, int(round(v * top))) for v in normalize_values(values)]


class MetricsHistory:
    """One ``HistorySeries`` per tracked metric for a single node.

    Args:
        capacity: Capacity of each series.
        metrics: Metric names to track.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        metrics: Iterable[str] = TRACKED_METRICS,
    ) -> None:
        self._series = {name: HistorySeries(capacity) for name in metrics}

    def push(self, metric: str, timestamp: float, value: float) -> None:
        self._series[metric].push(timestamp, value)

    def get(self, metric: str) -> HistorySeries:
        return self._series[metric]

    def series(self, metric: str) -> tuple[Sample, ...]:
        """Return the retained samples of ``metric``, oldest first."""
        return self._series[metric].samples()

    def update(self, metrics: NormalizedMetrics, timestamp: float) -> None:
        """Record every present tracked field; absent fields are skipped."""
        for name, series in self._series.items():
            value = getattr(metrics, name)
            if value is not None:
                series.push(timestamp, value)

    def names(self) -> tuple[str, ...]:
        return tuple(self._series)

    def snapshot(self) -> Mapping[str, tuple[Sample, ...]]:
        """Copy every series, for handing to readers."""
        return {name: series.samples() for name, series in self._series.items()}
