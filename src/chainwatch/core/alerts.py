"""Edge-triggered alert detection.

A rule fires when its condition becomes true and then stays latched. It
fires again only after the node has recovered (the related dimension is
back to Healthy and the condition is false) or when the condition escalates
to a higher severity. Missing inputs neither fire nor recover a rule.
"""

import logging
import math
import threading
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from chainwatch.core.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    ConnectivityState,
    Dimension,
    HealthLevel,
    NormalizedMetrics,
    Status,
)

logger = logging.getLogger(__name__)

DEFAULT_RECENT_ALERTS = 50
DEFAULT_STALL_WINDOW_SECONDS = 300.0
PEER_DROP_RATIO = 0.30
KES_CRITICAL = 5
KES_WARNING = 20
SYNC_DEGRADED = 0.95
SYNC_CRITICAL = 0.90


@dataclass(frozen=True)
class AlertContext:
    """Inputs for one alert evaluation.

    Attributes:
        node_name: Node being evaluated.
        now: Evaluation time (Unix seconds).
        current: Latest metrics.
        previous: Metrics from the previous successful cycle.
        health: Health level per dimension for ``current``.
        tip_age: Seconds since the block height last changed.
        status: Connectivity status after this cycle.
        stall_window: Seconds without a new block before BLOCK_STALL fires.
    """

    node_name: str
    now: float
    current: NormalizedMetrics
    previous: NormalizedMetrics | None
    health: Mapping[Dimension, HealthLevel]
    status: Status
    tip_age: float | None = None
    stall_window: float = DEFAULT_STALL_WINDOW_SECONDS

    def healthy(self, dimension: Dimension) -> bool:
        return self.health.get(dimension) is HealthLevel.HEALTHY


Finding = tuple[AlertSeverity, str]


@dataclass(frozen=True)
class AlertRule:
    """One alert condition.

    Attributes:
        kind: Alert kind produced by this rule.
        title: Headline used for raised alerts.
        check: Returns ``(severity, message)`` while the condition holds.
        recovered: True once the node is known to be healthy again.
    """

    kind: AlertKind
    title: str
    check: Callable[[AlertContext], Finding | None]
    recovered: Callable[[AlertContext], bool]


def _check_kes(ctx: AlertContext) -> Finding | None:
    remaining = ctx.current.kes_remaining
    if remaining is None or remaining >= KES_WARNING:
        return None
    severity = (
        AlertSeverity.CRITICAL if remaining < KES_CRITICAL else AlertSeverity.WARNING
    )
    return severity, f"{remaining} KES periods left, renew the operational certificate"


def _check_low_peers(ctx: AlertContext) -> Finding | None:
    peers = ctx.current.connected_peers
    if peers is None or peers >= 2:
        return None
    severity = AlertSeverity.CRITICAL if peers == 0 else AlertSeverity.WARNING
    return severity, f"Only {peers} peer(s) connected"


def _peer_drop(ctx: AlertContext) -> float | None:
    if ctx.previous is None:
        return None
    before, after = ctx.previous.connected_peers, ctx.current.connected_peers
    if before is None or after is None or before <= 0:
        return None
    return (before - after) / before


def _check_peer_drop(ctx: AlertContext) -> Finding | None:
    drop = _peer_drop(ctx)
    if drop is None or drop <= PEER_DROP_RATIO:
        return None
    before = ctx.previous.connected_peers if ctx.previous else None
    return (
        AlertSeverity.WARNING,
        f"Connected peers fell from {before} to {ctx.current.connected_peers} "
        f"({drop:.0%})",
    )


def _peer_drop_recovered(ctx: AlertContext) -> bool:
    drop = _peer_drop(ctx)
    return drop is not None and drop <= PEER_DROP_RATIO and ctx.healthy(Dimension.PEERS)


def _check_sync_degraded(ctx: AlertContext) -> Finding | None:
    fraction = ctx.current.sync_fraction
    if fraction is None or fraction >= SYNC_DEGRADED:
        return None
    severity = (
        AlertSeverity.CRITICAL if fraction < SYNC_CRITICAL else AlertSeverity.WARNING
    )
    return severity, f"Node is {fraction:.2%} synced"


def _sync_regressed(ctx: AlertContext) -> bool | None:
    if ctx.previous is None:
        return None
    before, after = ctx.previous.sync_fraction, ctx.current.sync_fraction
    if before is None or after is None:
        return None
    return after < before and not math.isclose(after, before, rel_tol=1e-12)


def _check_sync_regression(ctx: AlertContext) -> Finding | None:
    if not _sync_regressed(ctx):
        return None
    before = ctx.previous.sync_fraction if ctx.previous else None
    return (
        AlertSeverity.WARNING,
        f"Sync progress went backwards from {before:.2%} to "
        f"{ctx.current.sync_fraction:.2%}",
    )


def _sync_regression_recovered(ctx: AlertContext) -> bool:
    return _sync_regressed(ctx) is False and ctx.healthy(Dimension.SYNC)


def _check_block_stall(ctx: AlertContext) -> Finding | None:
    if ctx.tip_age is None or ctx.tip_age <= ctx.stall_window:
        return None
    height = ctx.current.block_height
    shown = "unknown" if height is None else str(height)
    return (
        AlertSeverity.WARNING,
        f"No new blocks for {ctx.tip_age:.0f} seconds (height: {shown})",
    )


def _check_memory(ctx: AlertContext) -> Finding | None:
    if ctx.health.get(Dimension.MEMORY) is not HealthLevel.CRITICAL:
        return None
    used = ctx.current.memory_used_bytes or 0
    return AlertSeverity.WARNING, f"Memory usage at {used / 1e9:.1f} GB"


def _check_offline(ctx: AlertContext) -> Finding | None:
    if ctx.status.state is not ConnectivityState.OFFLINE:
        return None
    reason = ctx.status.reason or "no response"
    return AlertSeverity.CRITICAL, f"Node unreachable: {reason}"


DEFAULT_RULES: tuple[AlertRule, ...] = (
    AlertRule(
        AlertKind.KES_EXPIRY,
        "KES Expiry",
        _check_kes,
        lambda ctx: ctx.healthy(Dimension.KES),
    ),
    AlertRule(
        AlertKind.LOW_PEERS,
        "Low Peer Count",
        _check_low_peers,
        lambda ctx: ctx.healthy(Dimension.PEERS),
    ),
    AlertRule(
        AlertKind.PEER_DROP,
        "Peer Count Dropped",
        _check_peer_drop,
        _peer_drop_recovered,
    ),
    AlertRule(
        AlertKind.SYNC_DEGRADED,
        "Sync Progress Degraded",
        _check_sync_degraded,
        lambda ctx: ctx.healthy(Dimension.SYNC),
    ),
    AlertRule(
        AlertKind.SYNC_REGRESSION,
        "Sync Progress Regressed",
        _check_sync_regression,
        _sync_regression_recovered,
    ),
    AlertRule(
        AlertKind.BLOCK_STALL,
        "Block Height Stalled",
        _check_block_stall,
        lambda ctx: ctx.healthy(Dimension.TIP_AGE),
    ),
    AlertRule(
        AlertKind.HIGH_MEMORY,
        "High Memory Usage",
        _check_memory,
        lambda ctx: ctx.healthy(Dimension.MEMORY),
    ),
    AlertRule(
        AlertKind.NODE_OFFLINE,
        "Node Offline",
        _check_offline,
        lambda ctx: ctx.status.is_online,
    ),
)


class RecentAlertLog:
    """Bounded, thread-safe log of recent alerts (oldest evicted first).

    Args:
        max_size: Maximum number of alerts to keep.
    """

    def __init__(self, max_size: int = DEFAULT_RECENT_ALERTS) -> None:
        self._alerts: deque[Alert] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def append(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def items(self) -> tuple[Alert, ...]:
        """Copy of the retained alerts, oldest first."""
        with self._lock:
            return tuple(self._alerts)

    def latest_critical(self) -> Alert | None:
        for alert in reversed(self.items()):
            if alert.severity is AlertSeverity.CRITICAL:
                return alert
        return None

    def since(self, timestamp: float) -> list[Alert]:
        return [a for a in self.items() if a.triggered_at >= timestamp]

    def clear(self) -> None:
        with self._lock:
            self._alerts.clear()

    def __len__(self) -> int:
        return len(self._alerts)


class AlertEngine:
    """Evaluates alert rules for one node and remembers what already fired.

    Args:
        recent: Log that raised alerts are appended to.
        rules: Rules to evaluate.
    """

    def __init__(
        self,
        recent: RecentAlertLog | None = None,
        rules: Iterable[AlertRule] = DEFAULT_RULES,
    ) -> None:
        self.recent = recent if recent is not None else RecentAlertLog()
        self._rules = {rule.kind: rule for rule in rules}
        self._latched: dict[AlertKind, AlertSeverity] = {}

    def is_latched(self, kind: AlertKind) -> bool:
        return kind in self._latched

    def evaluate(
        self, ctx: AlertContext, kinds: Iterable[AlertKind] | None = None
    ) -> list[Alert]:
        """Evaluate rules and return the alerts raised by this transition.

        Args:
            ctx: Evaluation inputs.
            kinds: Restrict evaluation to these kinds (default: all rules).
        """
        selected = self._rules.values() if kinds is None else [
            self._rules[kind] for kind in kinds if kind in self._rules
        ]
        raised: list[Alert] = []
        for rule in selected:
            finding = rule.check(ctx)
            latched = self._latched.get(rule.kind)
            if finding is not None:
                severity, message = finding
                if latched is None or severity.rank > latched.rank:
                    self._latched[rule.kind] = severity
                    raised.append(
                        Alert(
                            kind=rule.kind,
                            severity=severity,
                            triggered_at=ctx.now,
                            node_name=ctx.node_name,
                            title=rule.title,
                            message=message,
                        )
                    )
            elif latched is not None and rule.recovered(ctx):
                del self._latched[rule.kind]
                logger.debug("Alert %s recovered on %s", rule.kind.value, ctx.node_name)

        for alert in raised:
            self.recent.append(alert)
            logger.info("Alert on %s: %s", alert.node_name, alert.display())
        return raised


def format_timestamp(timestamp: float) -> str:
    """Render a Unix timestamp as ISO-8601 UTC with second precision."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(
        "%Y-%m-%dT%H:%M:%SZ"
    )


def format_alert_line(alert: Alert) -> str:
    """Single-line audit log format for an alert."""
    return " | ".join(
        (
            format_timestamp(alert.triggered_at),
            alert.node_name,
            alert.severity.value,
            alert.title,
            alert.message,
        )
    )
