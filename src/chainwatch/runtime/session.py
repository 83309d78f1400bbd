"""Per-node monitoring session.

A ``NodeSession`` owns everything known about one node: the latest metrics,
history, health, alert latches, discovered peers and connectivity status.
All state changes happen on the event loop, one polling cycle at a time, and
are published to readers as immutable ``NodeSnapshot`` objects.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from types import MappingProxyType

from chainwatch.adapters.geoip import LocationCache
from chainwatch.config import EngineSettings, NodeConfig
from chainwatch.core.alerts import AlertContext, AlertEngine, RecentAlertLog
from chainwatch.core.encoding.exposition import parse_exposition
from chainwatch.core.errors import (
    DiscoveryUnavailable,
    FetchError,
    ParseWarning,
    StorageError,
)
from chainwatch.core.health import compute_trends, evaluate_health, overall_health
from chainwatch.core.history import MetricsHistory
from chainwatch.core.models import (
    AggregatePeers,
    Alert,
    AlertKind,
    Dimension,
    DiscoveryMode,
    HealthLevel,
    NodeSnapshot,
    NormalizedMetrics,
    Status,
    TrendDirection,
)
from chainwatch.core.normalize import normalize
from chainwatch.core.peers import PeerDiscovery, resolve_discovery
from chainwatch.core.ports import (
    AlertSinkPort,
    LocationResolverPort,
    MetricsSourcePort,
    SnapshotStoragePort,
    SocketInspectorPort,
)

logger = logging.getLogger(__name__)

NOT_POLLED = "waiting for first poll"


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning(
            "Background task %s failed", task.get_name(), exc_info=task.exception()
        )


class NodeSession:
    """Aggregate root for one monitored node.

    At most one fetch cycle and one discovery pass run at a time. Callers
    that ask for a refresh while one is in flight wait for that cycle's
    result instead of starting another.

    Args:
        config: Node configuration.
        settings: Engine settings.
        source: Fetches the exposition text.
        inspector: Lists peer connections from the socket table.
        resolver: Resolves peer locations.
        location_cache: Cache shared by every session.
        store: Downsampled snapshot archive.
        alert_sink: Append-only alert audit trail.
        recent_alerts: Alert log, possibly shared with other sessions.
        clock: Wall-clock source (Unix seconds).
    """

    def __init__(
        self,
        config: NodeConfig,
        settings: EngineSettings,
        source: MetricsSourcePort,
        inspector: SocketInspectorPort | None = None,
        resolver: LocationResolverPort | None = None,
        location_cache: LocationCache | None = None,
        store: SnapshotStoragePort | None = None,
        alert_sink: AlertSinkPort | None = None,
        recent_alerts: RecentAlertLog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.settings = settings
        self.store = store
        self._source = source
        self._inspector = inspector
        self._resolver = resolver
        self._cache = location_cache
        self._alert_sink = alert_sink
        self._clock = clock
        if recent_alerts is None:
            recent_alerts = RecentAlertLog(settings.recent_alerts)
        self._engine = AlertEngine(recent_alerts)

        self._metrics = NormalizedMetrics()
        self._status = Status.offline(NOT_POLLED)
        self._history = MetricsHistory(settings.history_capacity)
        self._health: dict[Dimension, HealthLevel] = {
            dimension: HealthLevel.UNKNOWN for dimension in Dimension
        }
        self._trends: dict[str, TrendDirection] = {}
        self._discovery = PeerDiscovery(DiscoveryMode.AGGREGATE_ONLY)
        self._last_height: int | None = None
        self._height_changed_at: float | None = None
        self._tip_age: float | None = None
        self._failures = 0
        self._polled = False
        self._fetch_count = 0
        self._last_updated: float | None = None
        self.last_warnings: list[ParseWarning] = []

        self._version = 0
        self._snapshot: NodeSnapshot | None = None
        self._cycle_task: asyncio.Task[Status] | None = None
        self._peers_task: asyncio.Task[PeerDiscovery] | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def status(self) -> Status:
        return self._status

    @property
    def metrics(self) -> NormalizedMetrics:
        return self._metrics

    @property
    def history(self) -> MetricsHistory:
        return self._history

    @property
    def version(self) -> int:
        return self._version

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def fetch_in_flight(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    def _touch(self) -> None:
        self._version += 1

    # --- Fetch cycle ---

    async def refresh(self) -> Status:
        """Run a fetch cycle, or join the one already in flight.

        Returns:
            The status after the cycle completed.
        """
        if self._cycle_task is None or self._cycle_task.done():
            self._cycle_task = asyncio.create_task(
                self._cycle(), name=f"chainwatch-fetch-{self.name}"
            )
        return await asyncio.shield(self._cycle_task)

    async def _cycle(self) -> Status:
        try:
            text = await self._source.fetch()
        except FetchError as exc:
            alerts = self._record_failure(exc.reason, self._clock())
        else:
            now = self._clock()
            parsed = parse_exposition(text, self.settings.max_metrics)
            result = normalize(parsed.metrics)
            for warning in result.warnings:
                logger.debug(
                    "Discarded %s from %s: %s", warning.key, self.name, warning.reason
                )
            alerts = self._apply(result.metrics, parsed.warnings + result.warnings, now)
            await self._persist(now)
        if alerts and self._alert_sink is not None:
            await asyncio.to_thread(self._alert_sink.write, alerts)
        return self._status

    def _update_tip_age(self, metrics: NormalizedMetrics, now: float) -> None:
        height = metrics.block_height
        if height is not None and height != self._last_height:
            self._last_height = height
            self._height_changed_at = now
        if self._height_changed_at is None:
            self._tip_age = None
        else:
            self._tip_age = max(0.0, now - self._height_changed_at)

    def _apply(
        self,
        metrics: NormalizedMetrics,
        warnings: list[ParseWarning],
        now: float,
    ) -> list[Alert]:
        """Fold a successful fetch into the session state."""
        if not self._status.is_online and self._fetch_count:
            logger.info("%s is back online", self.name)
        previous = self._metrics if self._fetch_count else None

        self._update_tip_age(metrics, now)
        self._metrics = metrics
        self._status = Status.online()
        self._failures = 0
        self._fetch_count += 1
        self._polled = True
        self._last_updated = now
        self.last_warnings = warnings
        self._history.update(metrics, now)
        self._trends = compute_trends(self._history)
        self._health = evaluate_health(metrics, self._tip_age)

        alerts = self._engine.evaluate(
            AlertContext(
                node_name=self.name,
                now=now,
                current=metrics,
                previous=previous,
                health=self._health,
                status=self._status,
                tip_age=self._tip_age,
                stall_window=self.settings.stall_window_seconds,
            )
        )
        self._touch()
        return alerts

    def _record_failure(self, reason: str, now: float) -> list[Alert]:
        """Record a failed fetch. Metrics from the last success are kept."""
        self._failures += 1
        self._polled = True
        if self._failures >= self.settings.offline_after_failures:
            self._status = Status.offline(reason)
            # Values this old no longer say anything about the node's health.
            self._health = {dimension: HealthLevel.UNKNOWN for dimension in Dimension}
            if self._failures == self.settings.offline_after_failures:
                logger.warning(
                    "%s is offline after %d failed fetches: %s",
                    self.name,
                    self._failures,
                    reason,
                )
        else:
            self._status = Status.error(reason)
            if self._failures == 1:
                logger.info("Fetch from %s failed: %s", self.name, reason)

        alerts = self._engine.evaluate(
            AlertContext(
                node_name=self.name,
                now=now,
                current=self._metrics,
                previous=None,
                health=self._health,
                status=self._status,
                tip_age=self._tip_age,
                stall_window=self.settings.stall_window_seconds,
            ),
            kinds=(AlertKind.NODE_OFFLINE,),
        )
        self._touch()
        return alerts

    async def _persist(self, now: float) -> None:
        if self.store is None or not self._status.is_online:
            return
        try:
            if await self.store.save(self._metrics, now):
                await self.store.enforce_retention(now)
        except StorageError as exc:
            logger.warning("Skipping snapshot archive for %s: %s", self.name, exc)

    async def restore_history(self) -> int:
        """Seed the history buffers from the newest archived snapshots.

        Returns:
            Number of archived rows replayed.
        """
        if self.store is None:
            return 0
        try:
            rows = await self.store.latest(self.settings.history_capacity)
        except StorageError as exc:
            logger.warning("Could not restore history for %s: %s", self.name, exc)
            return 0
        tracked = set(self._history.names())
        for row in rows:
            for name, value in row.values.items():
                if name in tracked and value is not None:
                    self._history.push(name, row.timestamp, value)
        if rows:
            self._trends = compute_trends(self._history)
            self._touch()
        return len(rows)

    # --- Peer discovery ---

    async def refresh_peers(self) -> PeerDiscovery:
        """Run a discovery pass, or join the one already in flight."""
        if self._peers_task is None or self._peers_task.done():
            self._peers_task = asyncio.create_task(
                self._discover(), name=f"chainwatch-peers-{self.name}"
            )
        return await asyncio.shield(self._peers_task)

    async def _discover(self) -> PeerDiscovery:
        records = None
        if self._inspector is not None:
            try:
                records = await self._inspector.inspect(self.config.node_port)
            except DiscoveryUnavailable as exc:
                logger.debug("Socket inspection unavailable for %s: %s", self.name, exc)
        self._discovery = resolve_discovery(records, self._metrics)
        self._touch()

        if self._discovery.peers and self._resolver and self._cache is not None:
            task = asyncio.create_task(
                self._locate([peer.address for peer in self._discovery.peers]),
                name=f"chainwatch-geoip-{self.name}",
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            task.add_done_callback(_log_task_failure)
        return self._discovery

    async def _locate(self, addresses: Sequence[str]) -> None:
        assert self._cache is not None and self._resolver is not None
        if await self._cache.resolve(addresses, self._resolver):
            self._touch()

    # --- Read side ---

    def snapshot(self) -> NodeSnapshot:
        """Immutable view of the session, rebuilt only when the state changed."""
        if self._snapshot is not None and self._snapshot.version == self._version:
            return self._snapshot

        peers = self._discovery.peers
        if self._cache is not None:
            peers = self._cache.annotate(peers)
        alerts = tuple(
            alert
            for alert in self._engine.recent.items()
            if alert.node_name == self.name
        )
        self._snapshot = NodeSnapshot(
            node_name=self.name,
            role=self.config.role,
            network=self.config.network,
            version=self._version,
            status=self._status,
            metrics=self._metrics,
            health=MappingProxyType(dict(self._health)),
            overall_health=(
                overall_health(self._health.values(), self._status)
                if self._polled
                else HealthLevel.UNKNOWN
            ),
            trends=MappingProxyType(dict(self._trends)),
            history=MappingProxyType(dict(self._history.snapshot())),
            tip_age_seconds=self._tip_age,
            peers=peers,
            discovery_mode=self._discovery.mode,
            aggregate_peers=AggregatePeers.from_metrics(self._metrics),
            alerts=alerts,
            last_updated=self._last_updated,
            fetch_count=self._fetch_count,
        )
        return self._snapshot

    async def close(self) -> None:
        """Abandon in-flight work and release adapters."""
        tasks = [
            task
            for task in (self._cycle_task, self._peers_task, *self._background)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._source.aclose()
        if self.store is not None:
            await self.store.close()
