"""Peer connection parsing and classification.

Socket tables come from ``ss -tni state established`` (with RTT) or
``netstat -tn`` (without RTT). Only connections touching the node's P2P port
are relevant; loopback connections are ignored.
"""

import ipaddress
import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from chainwatch.core.models import (
    AggregatePeers,
    DiscoveryMode,
    LatencyBucket,
    NormalizedMetrics,
    PeerDirection,
    PeerRecord,
)

logger = logging.getLogger(__name__)


def parse_address(text: str) -> tuple[str, int] | None:
    """Split a socket address into ``(ip, port)``.

    Accepts ``1.2.3.4:3001``, ``[2001:db8::1]:3001`` and the BSD form
    ``1.2.3.4.3001``. IPv4-mapped IPv6 addresses are reduced to IPv4 and
    interface scopes (``%eth0``) are dropped.

    Returns:
        ``(ip, port)``, or None if the text is not an address with a port.
    """
    text = text.strip()
    if text.startswith("["):
        end = text.find("]")
        if end < 0 or text[end + 1 : end + 2] != ":":
            return None
        return _split_host_port(text[1:end], text[end + 2 :])
    # Linux prints host:port, BSD prints host.port; IPv6 hosts contain both.
    for sep in (":", "."):
        host, found, port_text = text.rpartition(sep)
        if found:
            parsed = _split_host_port(host, port_text)
            if parsed is not None:
                return parsed
    return None


def _split_host_port(host: str, port_text: str) -> tuple[str, int] | None:
    if not port_text.isdigit():
        return None
    port = int(port_text)
    if not 0 < port <= 65535:
        return None
    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip), port


def parse_rtt(text: str) -> float | None:
    """Extract the smoothed RTT in milliseconds from an ``ss -i`` detail line."""
    for part in text.split():
        if part.startswith("rtt:"):
            value = part[4:].split("/", 1)[0]
            try:
                return float(value)
            except ValueError:
                return None
    return None


def _is_loopback(address: str) -> bool:
    return ipaddress.ip_address(address).is_loopback


def classify_connection(
    local: str,
    remote: str,
    node_port: int,
    rtt_ms: float | None = None,
    recv_queue: int = 0,
    send_queue: int = 0,
) -> PeerRecord | None:
    """Build a ``PeerRecord`` if the connection belongs to the node.

    A connection is relevant when either end uses ``node_port``. When the
    local end listens on ``node_port`` the peer dialled in (Incoming),
    otherwise the node dialled out (Outgoing).
    """
    local_addr = parse_address(local)
    remote_addr = parse_address(remote)
    if local_addr is None or remote_addr is None:
        return None
    local_ip, local_port = local_addr
    remote_ip, remote_port = remote_addr

    if node_port not in (local_port, remote_port):
        return None
    if _is_loopback(local_ip) or _is_loopback(remote_ip):
        return None

    direction = (
        PeerDirection.INCOMING if local_port == node_port else PeerDirection.OUTGOING
    )
    return PeerRecord(
        address=remote_ip,
        port=remote_port,
        direction=direction,
        rtt_ms=rtt_ms,
        recv_queue=recv_queue,
        send_queue=send_queue,
    )


def parse_ss_output(text: str, node_port: int) -> list[PeerRecord]:
    """Parse ``ss -tni state established`` output.

    Each connection is a header line (``Recv-Q Send-Q Local Peer``) optionally
    followed by an indented detail line carrying ``rtt:avg/var``.
    """
    peers: list[PeerRecord] = []
    pending: tuple[int, int, str, str] | None = None

    def flush(rtt_ms: float | None) -> None:
        nonlocal pending
        if pending is None:
            return
        recv_q, send_q, local, remote = pending
        pending = None
        record = classify_connection(local, remote, node_port, rtt_ms, recv_q, send_q)
        if record is not None:
            peers.append(record)

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("Recv-Q"):
            continue
        parts = line.split()
        if len(parts) >= 4 and parts[0].isdigit() and parts[1].isdigit():
            flush(None)
            pending = (int(parts[0]), int(parts[1]), parts[2], parts[3])
        elif pending is not None:
            flush(parse_rtt(line))
    flush(None)

    logger.debug("ss reported %d connections on port %d", len(peers), node_port)
    return peers


def parse_netstat_output(text: str, node_port: int) -> list[PeerRecord]:
    """Parse ``netstat -tn`` output (Linux and BSD address styles). No RTT."""
    peers: list[PeerRecord] = []
    for raw_line in text.splitlines():
        parts = raw_line.split()
        if len(parts) < 6 or not parts[0].lower().startswith("tcp"):
            continue
        if parts[5].upper() != "ESTABLISHED":
            continue
        if not (parts[1].isdigit() and parts[2].isdigit()):
            continue
        record = classify_connection(
            parts[3],
            parts[4],
            node_port,
            recv_queue=int(parts[1]),
            send_queue=int(parts[2]),
        )
        if record is not None:
            peers.append(record)

    logger.debug("netstat reported %d connections on port %d", len(peers), node_port)
    return peers


def _sort_key(peer: PeerRecord) -> tuple:
    return (
        0 if peer.direction is PeerDirection.INCOMING else 1,
        peer.rtt_ms is None,
        peer.rtt_ms if peer.rtt_ms is not None else 0.0,
        peer.address,
        peer.port,
    )


def sort_peers(peers: Iterable[PeerRecord]) -> list[PeerRecord]:
    """Incoming before outgoing, then ascending RTT with unknown RTT last."""
    return sorted(peers, key=_sort_key)


@dataclass(frozen=True)
class PeerStats:
    """Summary counts over a discovered peer list."""

    total: int = 0
    incoming: int = 0
    outgoing: int = 0
    by_latency: dict[LatencyBucket, int] = field(default_factory=dict)
    avg_rtt_ms: float | None = None
    max_queue_depth: int = 0

    @classmethod
    def from_peers(cls, peers: Sequence[PeerRecord]) -> "PeerStats":
        directions = Counter(peer.direction for peer in peers)
        buckets = Counter(peer.latency_bucket for peer in peers)
        rtts = [peer.rtt_ms for peer in peers if peer.rtt_ms is not None]
        return cls(
            total=len(peers),
            incoming=directions[PeerDirection.INCOMING],
            outgoing=directions[PeerDirection.OUTGOING],
            by_latency={bucket: buckets[bucket] for bucket in LatencyBucket},
            avg_rtt_ms=sum(rtts) / len(rtts) if rtts else None,
            max_queue_depth=max((peer.queue_depth for peer in peers), default=0),
        )


@dataclass(frozen=True)
class PeerDiscovery:
    """Result of one discovery pass.

    Attributes:
        mode: Full when the socket table produced relevant entries.
        peers: Sorted peer records (empty in AggregateOnly mode).
        aggregate: Node-reported peer counts, always populated from metrics.
    """

    mode: DiscoveryMode
    peers: tuple[PeerRecord, ...] = ()
    aggregate: AggregatePeers = field(default_factory=AggregatePeers)


def resolve_discovery(
    records: Sequence[PeerRecord] | None, metrics: NormalizedMetrics
) -> PeerDiscovery:
    """Choose between the socket table and the aggregate fallback.

    Args:
        records: Peers from socket inspection, or None if inspection failed.
        metrics: Latest metrics, used for the aggregate breakdown.
    """
    aggregate = AggregatePeers.from_metrics(metrics)
    if not records:
        return PeerDiscovery(DiscoveryMode.AGGREGATE_ONLY, (), aggregate)
    return PeerDiscovery(DiscoveryMode.FULL, tuple(sort_peers(records)), aggregate)
