"""In-process stand-ins for the engine's I/O ports."""

import asyncio
from collections.abc import Iterable, Mapping, Sequence

from chainwatch.core.errors import DiscoveryUnavailable, FetchError
from chainwatch.core.models import PeerRecord

NS = "cardano_node_metrics_"

# First-priority cardano-node series for the fields tests usually set.
SERIES = {
    "block_height": f"{NS}blockNum_int",
    "slot": f"{NS}slotNum_int",
    "epoch": f"{NS}epoch_int",
    "slot_in_epoch": f"{NS}slotInEpoch_int",
    "sync_fraction": f"{NS}ChainSync_progress",
    "connected_peers": f"{NS}connectedPeers_int",
    "peers_hot": f"{NS}peerSelection_hot",
    "peers_warm": f"{NS}peerSelection_warm",
    "peers_cold": f"{NS}peerSelection_cold",
    "memory_used_bytes": f"{NS}RTS_gcLiveBytes_int",
    "mempool_txs": f"{NS}txsInMempool_int",
    "mempool_bytes": f"{NS}mempoolBytes_int",
    "kes_period": f"{NS}currentKESPeriod_int",
    "kes_remaining": f"{NS}remainingKESPeriods_int",
}


def exposition(**values: float) -> str:
    """Render field values as a cardano-node style scrape body."""
    lines = ["# HELP cardano_node_metrics_blockNum_int Block number"]
    for name, value in values.items():
        lines.append(f"{SERIES[name]} {value}")
    return "\n".join(lines) + "\n"


HEALTHY_BODY = exposition(
    block_height=10_000_000,
    slot=120_000_000,
    epoch=480,
    slot_in_epoch=1200,
    sync_fraction=1.0,
    connected_peers=20,
    peers_hot=20,
    peers_warm=30,
    peers_cold=60,
    memory_used_bytes=4_000_000_000,
    mempool_txs=12,
    mempool_bytes=34_000,
    kes_period=700,
    kes_remaining=50,
)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedSource:
    """MetricsSourcePort replaying bodies and failures in order.

    Each item is a body (returned) or a reason string wrapped in
    ``FetchError`` when given as an exception. The last item repeats once
    the script runs out. ``gate`` lets tests hold a fetch in flight.
    """

    def __init__(
        self, script: Iterable[str | Exception] = (), node_name: str = "relay-1"
    ) -> None:
        self.script = list(script)
        self.node_name = node_name
        self.calls = 0
        self.closed = False
        self.gate: asyncio.Event | None = None

    def push(self, *items: str | Exception) -> None:
        self.script.extend(items)

    async def fetch(self) -> str:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if not self.script:
            raise FetchError(self.node_name, "nothing scripted")
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class StaticInspector:
    """SocketInspectorPort returning fixed records, or failing."""

    reports_rtt = True

    def __init__(
        self, records: Sequence[PeerRecord] = (), available: bool = True
    ) -> None:
        self.records = list(records)
        self.available = available
        self.calls: list[int] = []

    async def inspect(self, node_port: int) -> list[PeerRecord]:
        self.calls.append(node_port)
        if not self.available:
            raise DiscoveryUnavailable("inspection disabled")
        return list(self.records)


class StaticResolver:
    """LocationResolverPort answering from a fixed table."""

    def __init__(self, table: Mapping[str, str] | None = None) -> None:
        self.table = dict(table or {})
        self.requests: list[list[str]] = []

    async def lookup(self, addresses: Sequence[str]) -> dict[str, str]:
        self.requests.append(list(addresses))
        return {a: self.table[a] for a in addresses if a in self.table}


class MemorySink:
    """AlertSinkPort collecting alerts in a list."""

    def __init__(self) -> None:
        self.alerts: list = []

    def write(self, alerts) -> None:
        self.alerts.extend(alerts)
