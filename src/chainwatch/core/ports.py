"""Port interfaces for engine adapters.

These protocols define the contracts that adapters must implement. The core
and the runtime depend only on these interfaces, not concrete implementations.
"""

from collections.abc import Iterable, Sequence
from typing import Protocol, runtime_checkable

from chainwatch.core.models import (
    Alert,
    ArchivedSnapshot,
    LogEntry,
    NormalizedMetrics,
    PeerRecord,
)


@runtime_checkable
class MetricsSourcePort(Protocol):
    """Port for fetching raw exposition text from a node.

    Examples: HttpMetricsSource.
    """

    async def fetch(self) -> str:
        """Return the exposition body.

        Raises:
            FetchError: On network failure, timeout or non-success status.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


@runtime_checkable
class SocketInspectorPort(Protocol):
    """Port for enumerating peer connections from the OS socket table.

    Examples: SsInspector, NetstatInspector, UnavailableInspector.
    """

    reports_rtt: bool

    async def inspect(self, node_port: int) -> list[PeerRecord]:
        """List connections relevant to ``node_port``.

        Raises:
            DiscoveryUnavailable: When inspection cannot run.
        """
        ...


@runtime_checkable
class LocationResolverPort(Protocol):
    """Port for resolving IP addresses to location text."""

    async def lookup(self, addresses: Sequence[str]) -> dict[str, str]:
        """Resolve addresses; unresolved addresses are omitted."""
        ...


@runtime_checkable
class SnapshotStoragePort(Protocol):
    """Port for the per-node downsampled snapshot archive.

    Examples: SQLiteSnapshotStore.
    """

    async def save(self, metrics: NormalizedMetrics, now: float) -> bool:
        """Archive a snapshot if the sampling interval has elapsed."""
        ...

    async def enforce_retention(self, now: float) -> int:
        """Delete snapshots older than the retention window."""
        ...

    async def read(self, since: float = 0) -> list[ArchivedSnapshot]:
        """Return archived rows with timestamp > since, oldest first."""
        ...

    async def latest(self, limit: int) -> list[ArchivedSnapshot]:
        """Return the newest ``limit`` archived rows, oldest first."""
        ...

    async def close(self) -> None:
        """Release database resources."""
        ...


@runtime_checkable
class AlertSinkPort(Protocol):
    """Port for the write-only alert audit trail.

    Examples: AlertLogFile.
    """

    def write(self, alerts: Iterable[Alert]) -> None:
        """Append alerts to the audit trail."""
        ...


@runtime_checkable
class LogStoragePort(Protocol):
    """Port for engine log storage.

    Examples: RingBufferLogStorage.
    """

    def write(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        ...

    def read(self, since: float = 0) -> Iterable[LogEntry]:
        """Read log entries with timestamp > since, oldest first."""
        ...
