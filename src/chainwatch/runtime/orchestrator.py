"""Scheduling of node sessions.

``MonitorRuntime`` runs one independent polling task per node. A slow node
only delays its own task; sessions never wait on each other.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from chainwatch.adapters.geoip import LOCATION_CACHE, LocationCache
from chainwatch.adapters.http_source import HttpMetricsSource
from chainwatch.adapters.sockets import probe_inspector
from chainwatch.adapters.storage.alert_log import AlertLogFile
from chainwatch.adapters.storage.sqlite_snapshots import SQLiteSnapshotStore
from chainwatch.config import EngineSettings, NodeConfig
from chainwatch.core.alerts import RecentAlertLog
from chainwatch.core.encoding.csv import encode_csv, encode_live
from chainwatch.core.errors import ConfigError
from chainwatch.core.models import Alert, NodeSnapshot
from chainwatch.core.ports import (
    LocationResolverPort,
    MetricsSourcePort,
    SocketInspectorPort,
)
from chainwatch.runtime.session import NodeSession

logger = logging.getLogger(__name__)

SourceFactory = Callable[[NodeConfig, float], MetricsSourcePort]


def http_source_factory(config: NodeConfig, timeout: float) -> MetricsSourcePort:
    return HttpMetricsSource(config.name, config.metrics_url, timeout)


class MonitorRuntime:
    """Owns every node session and its polling task.

    Args:
        configs: Nodes to monitor; names must be unique.
        settings: Engine settings.
        source_factory: Builds the metrics source for a node.
        inspector: Socket inspector; probed from the system when omitted.
        resolver: Peer location resolver; locations stay pending when omitted.
        location_cache: Cache shared by all sessions.
        persist: Archive snapshots and alerts under ``settings.data_dir``.
        clock: Wall-clock source (Unix seconds).

    Raises:
        ConfigError: If ``configs`` is empty or has duplicate names.
    """

    def __init__(
        self,
        configs: Sequence[NodeConfig],
        settings: EngineSettings | None = None,
        source_factory: SourceFactory = http_source_factory,
        inspector: SocketInspectorPort | None = None,
        resolver: LocationResolverPort | None = None,
        location_cache: LocationCache = LOCATION_CACHE,
        persist: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not configs:
            raise ConfigError("no nodes configured")
        names = [config.name for config in configs]
        if len(set(names)) != len(names):
            raise ConfigError("node names must be unique")

        self.settings = settings or EngineSettings()
        self.recent = RecentAlertLog(self.settings.recent_alerts)
        self.inspector = inspector or probe_inspector(
            self.settings.discovery_timeout_seconds
        )
        self._clock = clock
        self._sessions: dict[str, NodeSession] = {}
        for config in configs:
            data_dir = self.settings.data_dir
            self._sessions[config.name] = NodeSession(
                config,
                self.settings,
                source_factory(config, self.settings.timeout_for(config)),
                inspector=self.inspector,
                resolver=resolver,
                location_cache=location_cache,
                store=(
                    SQLiteSnapshotStore.for_node(
                        data_dir, config.name, self.settings.retention
                    )
                    if persist
                    else None
                ),
                alert_sink=(
                    AlertLogFile(data_dir / "alerts", config.name) if persist else None
                ),
                recent_alerts=self.recent,
                clock=clock,
            )
        self._selected = names[0]
        self._tasks: dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._sessions)

    def session(self, name: str) -> NodeSession:
        """Return the session for ``name``.

        Raises:
            KeyError: If no node has that name.
        """
        try:
            return self._sessions[name]
        except KeyError:
            raise KeyError(f"unknown node {name!r}") from None

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start one polling task per node."""
        if self._running:
            return
        self._running = True
        for session in self._sessions.values():
            self._tasks[session.name] = asyncio.create_task(
                self._poll(session), name=f"chainwatch-poll-{session.name}"
            )
            self._tasks[f"{session.name}:peers"] = asyncio.create_task(
                session.refresh_peers(), name=f"chainwatch-discover-{session.name}"
            )
        logger.info("Monitoring %d node(s)", len(self._sessions))

    async def stop(self) -> None:
        """Cancel polling, abandon in-flight fetches and release adapters."""
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for session in self._sessions.values():
            await session.close()
        logger.info("Monitoring stopped")

    async def _poll(self, session: NodeSession) -> None:
        """Restore archived history, then poll one node until cancelled."""
        restored = await session.restore_history()
        if restored:
            logger.info("Restored %d archived samples for %s", restored, session.name)
        loop = asyncio.get_running_loop()
        interval = self.settings.poll_interval_seconds
        deadline = loop.time()
        while True:
            try:
                await session.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Polling cycle for %s failed", session.name)

            deadline += interval
            now = loop.time()
            if deadline < now:
                # Missed ticks are skipped, not replayed.
                deadline = now
            await asyncio.sleep(deadline - now)

    # --- Read side and triggers ---

    def snapshots(self) -> list[NodeSnapshot]:
        return [session.snapshot() for session in self._sessions.values()]

    def snapshot(self, name: str) -> NodeSnapshot:
        return self.session(name).snapshot()

    async def refresh(self, name: str) -> NodeSnapshot:
        """Fetch now (or join the fetch in flight) and return the new snapshot."""
        session = self.session(name)
        await session.refresh()
        return session.snapshot()

    async def refresh_peers(self, name: str) -> NodeSnapshot:
        session = self.session(name)
        await session.refresh_peers()
        return session.snapshot()

    def select(self, name: str) -> NodeSnapshot:
        """Make ``name`` the selected node."""
        snapshot = self.snapshot(name)
        self._selected = name
        return snapshot

    @property
    def selected(self) -> str:
        return self._selected

    def recent_alerts(self) -> tuple[Alert, ...]:
        return self.recent.items()

    async def export_csv(self, name: str, live: bool = False) -> str:
        """CSV export of a node's archive, or of its current state.

        Raises:
            KeyError: If no node has that name.
            StorageError: If the archive cannot be read.
        """
        session = self.session(name)
        if live:
            snapshot = session.snapshot()
            timestamp = snapshot.last_updated or self._clock()
            return encode_live(snapshot.metrics, timestamp)
        if session.store is None:
            return encode_csv([])
        return encode_csv(await session.store.read())
