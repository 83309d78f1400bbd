"""Health classification and trend computation.

Health levels are recomputed every cycle from the latest metrics. Absent
inputs always classify as ``HealthLevel.UNKNOWN``.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from chainwatch.core.history import MetricsHistory
from chainwatch.core.models import (
    Dimension,
    HealthLevel,
    NormalizedMetrics,
    Sample,
    Status,
    TrendDirection,
)

GB = 1_000_000_000


@dataclass(frozen=True)
class Threshold:
    """Green/yellow cutoffs for one dimension.

    For ``higher_is_better`` dimensions a value is Healthy when ``>= green``
    and Warning when ``>= yellow``. Otherwise a value is Healthy when
    ``< green`` and Warning when ``< yellow``. Anything else is Critical.
    """

    green: float
    yellow: float
    higher_is_better: bool = True

    def classify(self, value: float | None) -> HealthLevel:
        if value is None:
            return HealthLevel.UNKNOWN
        if self.higher_is_better:
            if value >= self.green:
                return HealthLevel.HEALTHY
            if value >= self.yellow:
                return HealthLevel.WARNING
            return HealthLevel.CRITICAL
        if value < self.green:
            return HealthLevel.HEALTHY
        if value < self.yellow:
            return HealthLevel.WARNING
        return HealthLevel.CRITICAL


THRESHOLDS: Mapping[Dimension, Threshold] = {
    Dimension.SYNC: Threshold(0.999, 0.95),
    Dimension.PEERS: Threshold(5, 2),
    Dimension.MEMORY: Threshold(12 * GB, 14 * GB, higher_is_better=False),
    Dimension.KES: Threshold(20, 5),
    Dimension.TIP_AGE: Threshold(60, 120, higher_is_better=False),
}

# Counters only grow; a decrease means the node restarted.
MONOTONIC_METRICS = frozenset(
    {
        "block_height",
        "slot",
        "epoch",
        "blocks_forged",
        "leader_slots",
        "blocks_adopted",
        "txs_processed",
        "cpu_seconds",
        "uptime_seconds",
    }
)


def dimension_value(
    dimension: Dimension, metrics: NormalizedMetrics, tip_age: float | None
) -> float | None:
    """Return the input value a dimension is classified on."""
    if dimension is Dimension.SYNC:
        return metrics.sync_fraction
    if dimension is Dimension.PEERS:
        return metrics.connected_peers
    if dimension is Dimension.MEMORY:
        return metrics.memory_used_bytes
    if dimension is Dimension.KES:
        return metrics.kes_remaining
    return tip_age


def evaluate_health(
    metrics: NormalizedMetrics, tip_age: float | None = None
) -> dict[Dimension, HealthLevel]:
    """Classify every dimension.

    Args:
        metrics: Latest normalized metrics.
        tip_age: Seconds since the block height last changed, if known.

    Returns:
        Health level per dimension.
    """
    return {
        dimension: threshold.classify(dimension_value(dimension, metrics, tip_age))
        for dimension, threshold in THRESHOLDS.items()
    }


def overall_health(levels: Iterable[HealthLevel], status: Status) -> HealthLevel:
    """Combine dimension levels into one level for the node.

    A node that is not online is Critical. Otherwise the worst known level
    wins; Unknown is returned only when nothing is known.
    """
    if not status.is_online:
        return HealthLevel.CRITICAL
    worst = HealthLevel.UNKNOWN
    for level in levels:
        if level.rank > worst.rank:
            worst = level
    return worst


def trend(
    previous: float | None, latest: float | None, monotonic: bool = False
) -> TrendDirection:
    """Direction of change from ``previous`` to ``latest``.

    For monotonic counters a decrease is a reset and reports Flat.
    """
    if previous is None or latest is None:
        return TrendDirection.FLAT
    if latest == previous or math.isclose(latest, previous, rel_tol=1e-12):
        return TrendDirection.FLAT
    if latest > previous:
        return TrendDirection.UP
    if monotonic:
        return TrendDirection.FLAT
    return TrendDirection.DOWN


def series_trend(
    samples: tuple[Sample, ...], monotonic: bool = False
) -> TrendDirection:
    """Trend between the two newest samples of a series."""
    if len(samples) < 2:
        return TrendDirection.FLAT
    return trend(samples[-2].value, samples[-1].value, monotonic)


def compute_trends(history: MetricsHistory) -> dict[str, TrendDirection]:
    """Trend for every tracked metric."""
    return {
        name: series_trend(history.series(name), name in MONOTONIC_METRICS)
        for name in history.names()
    }
