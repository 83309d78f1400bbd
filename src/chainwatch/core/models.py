"""Core domain models for node telemetry, health and peers."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class NodeRole(str, Enum):
    """Operational role of a monitored node."""

    RELAY = "relay"
    BLOCK_PRODUCER = "block-producer"


class NodeImplementation(str, Enum):
    """Node software detected from the metric namespace."""

    CARDANO_NODE = "cardano-node"
    DINGO = "dingo"
    AMARU = "amaru"
    UNKNOWN = "unknown"


class HealthLevel(str, Enum):
    """Three-tier health classification plus Unknown for absent data."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Ordering used to pick the worst level (Unknown ranks lowest)."""
        return _HEALTH_RANK[self]


_HEALTH_RANK = {
    HealthLevel.UNKNOWN: 0,
    HealthLevel.HEALTHY: 1,
    HealthLevel.WARNING: 2,
    HealthLevel.CRITICAL: 3,
}


class Dimension(str, Enum):
    """Monitored health dimensions."""

    SYNC = "sync"
    PEERS = "peers"
    MEMORY = "memory"
    KES = "kes"
    TIP_AGE = "tip_age"


class TrendDirection(str, Enum):
    """Direction of change between the two latest samples of a metric."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"


@dataclass(frozen=True)
class NormalizedMetrics:
    """Version-independent view of a node's metrics.

    Every field is optional. ``None`` means the node did not report the
    value (or reported an invalid one); it is never replaced by zero.

    Attributes:
        implementation: Node software detected from metric names.
        block_height: Height of the current chain tip.
        slot: Absolute slot number of the tip.
        epoch: Current epoch number.
        slot_in_epoch: Slot offset within the epoch.
        sync_fraction: Sync progress in [0, 1].
        density: Chain density.
        connected_peers: Number of connected peers.
        peers_hot: Hot peers from peer selection.
        peers_warm: Warm peers from peer selection.
        peers_cold: Cold peers from peer selection.
        incoming_connections: Inbound connections from the connection manager.
        outgoing_connections: Outbound connections from the connection manager.
        duplex_connections: Duplex connections from the connection manager.
        memory_used_bytes: Live heap bytes.
        memory_heap_bytes: Total heap bytes.
        cpu_seconds: Cumulative CPU time.
        uptime_seconds: Process uptime.
        mempool_txs: Transactions in the mempool.
        mempool_bytes: Mempool size in bytes.
        txs_processed: Cumulative processed transactions.
        kes_period: Current KES period.
        kes_remaining: KES periods left before the certificate expires.
        opcert_expiry_period: KES period at which the certificate expires.
        blocks_forged: Blocks forged since start.
        leader_slots: Slots in which the node was leader.
        blocks_adopted: Forged blocks adopted by the node.
        blocks_not_adopted: Forged blocks the node did not adopt.
        missed_slots: Leadership checks that ran late.
        block_delay_seconds: Last block propagation delay.
        block_delay_cdf_1s: Fraction of blocks propagated within 1s.
        block_delay_cdf_3s: Fraction of blocks propagated within 3s.
        block_delay_cdf_5s: Fraction of blocks propagated within 5s.
    """

    implementation: NodeImplementation = NodeImplementation.UNKNOWN
    block_height: int | None = None
    slot: int | None = None
    epoch: int | None = None
    slot_in_epoch: int | None = None
    sync_fraction: float | None = None
    density: float | None = None
    connected_peers: int | None = None
    peers_hot: int | None = None
    peers_warm: int | None = None
    peers_cold: int | None = None
    incoming_connections: int | None = None
    outgoing_connections: int | None = None
    duplex_connections: int | None = None
    memory_used_bytes: int | None = None
    memory_heap_bytes: int | None = None
    cpu_seconds: float | None = None
    uptime_seconds: float | None = None
    mempool_txs: int | None = None
    mempool_bytes: int | None = None
    txs_processed: int | None = None
    kes_period: int | None = None
    kes_remaining: int | None = None
    opcert_expiry_period: int | None = None
    blocks_forged: int | None = None
    leader_slots: int | None = None
    blocks_adopted: int | None = None
    blocks_not_adopted: int | None = None
    missed_slots: int | None = None
    block_delay_seconds: float | None = None
    block_delay_cdf_1s: float | None = None
    block_delay_cdf_3s: float | None = None
    block_delay_cdf_5s: float | None = None


@dataclass(frozen=True)
class Sample:
    """A single timestamped history point.

    Attributes:
        timestamp: Unix timestamp in seconds.
        value: The sampled value.
    """

    timestamp: float
    value: float


class AlertSeverity(str, Enum):
    """Alert severity, ordered from least to most severe."""

    INFO = "INFO"
    WARNING = "WARN"
    CRITICAL = "CRIT"

    @property
    def rank(self) -> int:
        return list(AlertSeverity).index(self)


class AlertKind(str, Enum):
    """Conditions that raise alerts."""

    KES_EXPIRY = "kes_expiry"
    LOW_PEERS = "low_peers"
    PEER_DROP = "peer_drop"
    SYNC_DEGRADED = "sync_degraded"
    SYNC_REGRESSION = "sync_regression"
    BLOCK_STALL = "block_stall"
    HIGH_MEMORY = "high_memory"
    NODE_OFFLINE = "node_offline"


@dataclass(frozen=True)
class Alert:
    """A raised alert.

    Attributes:
        kind: Condition that fired.
        severity: How urgent the alert is.
        triggered_at: Unix timestamp when the condition became true.
        node_name: Node the alert belongs to.
        title: Short headline.
        message: Human-readable detail.
    """

    kind: AlertKind
    severity: AlertSeverity
    triggered_at: float
    node_name: str
    title: str
    message: str

    def display(self) -> str:
        return f"[{self.severity.value}] {self.title} - {self.message}"


class PeerDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class LatencyBucket(str, Enum):
    """RTT classification of a peer."""

    VERY_LOW = "<50ms"
    LOW = "50-100ms"
    MEDIUM = "100-200ms"
    HIGH = ">200ms"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PeerRecord:
    """One peer connection discovered from the OS socket table.

    Attributes:
        address: Remote IP address.
        port: Remote port.
        direction: Whether the peer connected to us or we connected out.
        rtt_ms: Round-trip time, when the inspection method reports it.
        recv_queue: Bytes waiting in the receive queue.
        send_queue: Bytes waiting in the send queue.
        location: Resolved location text, ``None`` while pending.
    """

    address: str
    port: int
    direction: PeerDirection
    rtt_ms: float | None = None
    recv_queue: int = 0
    send_queue: int = 0
    location: str | None = None

    @property
    def queue_depth(self) -> int:
        return self.recv_queue + self.send_queue

    @property
    def latency_bucket(self) -> LatencyBucket:
        if self.rtt_ms is None:
            return LatencyBucket.UNKNOWN
        if self.rtt_ms < 50:
            return LatencyBucket.VERY_LOW
        if self.rtt_ms < 100:
            return LatencyBucket.LOW
        if self.rtt_ms < 200:
            return LatencyBucket.MEDIUM
        return LatencyBucket.HIGH


class DiscoveryMode(str, Enum):
    """Whether peers come from socket inspection or from aggregate metrics."""

    FULL = "full"
    AGGREGATE_ONLY = "aggregate_only"


@dataclass(frozen=True)
class AggregatePeers:
    """Peer counts reported by the node itself, used when inspection fails."""

    hot: int | None = None
    warm: int | None = None
    cold: int | None = None
    incoming: int | None = None
    outgoing: int | None = None
    duplex: int | None = None

    @classmethod
    def from_metrics(cls, metrics: NormalizedMetrics) -> "AggregatePeers":
        return cls(
            hot=metrics.peers_hot,
            warm=metrics.peers_warm,
            cold=metrics.peers_cold,
            incoming=metrics.incoming_connections,
            outgoing=metrics.outgoing_connections,
            duplex=metrics.duplex_connections,
        )

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.hot,
                self.warm,
                self.cold,
                self.incoming,
                self.outgoing,
                self.duplex,
            )
        )


class ConnectivityState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass(frozen=True)
class Status:
    """Connectivity status of a node session.

    Attributes:
        state: Online, Offline or Error.
        reason: Failure description for Error and Offline.
    """

    state: ConnectivityState
    reason: str | None = None

    @classmethod
    def online(cls) -> "Status":
        return cls(ConnectivityState.ONLINE)

    @classmethod
    def offline(cls, reason: str | None = None) -> "Status":
        return cls(ConnectivityState.OFFLINE, reason)

    @classmethod
    def error(cls, reason: str) -> "Status":
        return cls(ConnectivityState.ERROR, reason)

    @property
    def is_online(self) -> bool:
        return self.state is ConnectivityState.ONLINE


def _frozen_mapping(data: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class NodeSnapshot:
    """Immutable, versioned view of one node for the presentation layer.

    Attributes:
        node_name: Configured node name.
        role: Configured node role.
        network: Network label.
        version: Monotonic counter, bumped on every state change.
        status: Connectivity status.
        metrics: Latest normalized metrics (stale values are kept on errors).
        health: Health level per dimension.
        overall_health: Worst level across dimensions and connectivity.
        trends: Trend per tracked metric.
        history: Retained samples per tracked metric, oldest first.
        tip_age_seconds: Seconds since the block height last changed.
        peers: Discovered peers, sorted for display.
        discovery_mode: Full or AggregateOnly.
        aggregate_peers: Node-reported peer counts.
        alerts: Recent alerts, oldest first.
        last_updated: Unix timestamp of the last successful fetch.
        fetch_count: Number of successful fetches.
    """

    node_name: str
    role: NodeRole
    network: str
    version: int
    status: Status
    metrics: NormalizedMetrics
    health: Mapping[Dimension, HealthLevel] = field(default_factory=_frozen_mapping)
    overall_health: HealthLevel = HealthLevel.UNKNOWN
    trends: Mapping[str, TrendDirection] = field(default_factory=_frozen_mapping)
    history: Mapping[str, tuple[Sample, ...]] = field(default_factory=_frozen_mapping)
    tip_age_seconds: float | None = None
    peers: tuple[PeerRecord, ...] = ()
    discovery_mode: DiscoveryMode = DiscoveryMode.AGGREGATE_ONLY
    aggregate_peers: AggregatePeers = field(default_factory=AggregatePeers)
    alerts: tuple[Alert, ...] = ()
    last_updated: float | None = None
    fetch_count: int = 0


@dataclass(frozen=True)
class LogEntry:
    """A structured engine log entry.

    Attributes:
        timestamp: Unix timestamp in seconds.
        level: Log level (e.g., INFO, ERROR, DEBUG).
        message: The log message.
        attributes: Additional structured fields.
    """

    timestamp: float
    level: str
    message: str
    attributes: dict[str, str | int | float | bool] = field(default_factory=dict)


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention and downsampling policy for archived snapshots.

    Attributes:
        max_age_seconds: Snapshots older than this are deleted.
        sample_interval_seconds: Minimum spacing between archived snapshots.
    """

    max_age_seconds: float = 30 * 86400
    sample_interval_seconds: float = 3600

    def __post_init__(self) -> None:
        if self.max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
        if self.sample_interval_seconds < 0:
            raise ValueError("sample_interval_seconds must not be negative")


# Fields carried into the downsampled archive, in export column order.
ARCHIVED_FIELDS: tuple[str, ...] = (
    "block_height",
    "slot",
    "epoch",
    "slot_in_epoch",
    "connected_peers",
    "memory_used_bytes",
    "mempool_txs",
    "mempool_bytes",
    "sync_fraction",
    "kes_period",
    "kes_remaining",
)


@dataclass(frozen=True)
class ArchivedSnapshot:
    """One downsampled row of the per-node archive.

    Attributes:
        timestamp: Unix timestamp in seconds when the row was taken.
        values: Archived metric values keyed by ``ARCHIVED_FIELDS`` name.
    """

    timestamp: float
    values: Mapping[str, int | float | None] = field(default_factory=_frozen_mapping)

    @classmethod
    def from_metrics(
        cls, metrics: NormalizedMetrics, timestamp: float
    ) -> "ArchivedSnapshot":
        return cls(
            timestamp=timestamp,
            values=_frozen_mapping(
                {name: getattr(metrics, name) for name in ARCHIVED_FIELDS}
            ),
        )

    def get(self, name: str) -> int | float | None:
        return self.values.get(name)
