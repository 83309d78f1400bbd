"""Resolution of raw metric names into ``NormalizedMetrics``.

Node releases rename metrics (``_int`` vs ``_counter`` suffixes, new tracing
namespaces, different casing). Each semantic field lists its candidate source
keys in priority order; the first candidate present with a sane value wins.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from chainwatch.core.errors import ParseWarning
from chainwatch.core.models import NodeImplementation, NormalizedMetrics


@dataclass(frozen=True)
class Alias:
    """A candidate source key for a semantic field.

    Attributes:
        key: Series key as produced by the exposition parser.
        scale: Factor applied to convert the source unit.
    """

    key: str
    scale: float = 1.0


@dataclass(frozen=True)
class FieldSpec:
    """Resolution rules for one ``NormalizedMetrics`` field."""

    name: str
    aliases: tuple[Alias, ...]
    integral: bool = True
    non_negative: bool = True
    upper_bound: float | None = None


def _a(*keys: str, scale: float = 1.0) -> tuple[Alias, ...]:
    return tuple(Alias(key, scale) for key in keys)


_NS = "cardano_node_metrics_"

FIELD_SPECS: tuple[FieldSpec, ...] = (
    FieldSpec(
        "block_height",
        _a(
            f"{_NS}blockNum_int",
            f"{_NS}blockNum_counter",
            f"{_NS}ChainDB_BlockNum",
            "dingo_chain_block_number",
            "amaru_chain_block_height",
        ),
    ),
    FieldSpec(
        "slot",
        _a(
            f"{_NS}slotNum_int",
            f"{_NS}slotNum_counter",
            f"{_NS}ChainDB_SlotNum",
            "dingo_chain_slot_number",
            "amaru_chain_slot",
        ),
    ),
    FieldSpec(
        "epoch",
        _a(
            f"{_NS}epoch_int",
            f"{_NS}epoch_counter",
            f"{_NS}ChainDB_Epoch",
            "dingo_chain_epoch",
            "amaru_chain_epoch",
        ),
    ),
    FieldSpec(
        "slot_in_epoch",
        _a(
            f"{_NS}slotInEpoch_int",
            f"{_NS}slotInEpoch_counter",
            f"{_NS}ChainDB_SlotInEpoch",
        ),
    ),
    FieldSpec(
        "sync_fraction",
        _a(f"{_NS}ChainSync_progress", f"{_NS}syncProgress_real")
        + _a(f"{_NS}syncPercent_real", "dingo_chain_sync_percent", scale=0.01),
        integral=False,
        upper_bound=1.0,
    ),
    FieldSpec(
        "density",
        _a(f"{_NS}density_real", f"{_NS}ChainDB_Density"),
        integral=False,
    ),
    FieldSpec(
        "connected_peers",
        _a(
            f"{_NS}connectedPeers_int",
            f"{_NS}connectedPeers_counter",
            f"{_NS}peerSelection_ActivePeers",
            "dingo_peers_connected",
            "amaru_peers_connected",
        ),
    ),
    FieldSpec(
        "peers_hot",
        _a(
            f"{_NS}peerSelection_hot",
            f"{_NS}peerSelection_ActivePeers",
            f'{_NS}peerSelection_peers{{state="hot"}}',
        ),
    ),
    FieldSpec(
        "peers_warm",
        _a(
            f"{_NS}peerSelection_warm",
            f"{_NS}peerSelection_EstablishedPeers",
            f'{_NS}peerSelection_peers{{state="warm"}}',
        ),
    ),
    FieldSpec(
        "peers_cold",
        _a(
            f"{_NS}peerSelection_cold",
            f"{_NS}peerSelection_KnownPeers",
            f'{_NS}peerSelection_peers{{state="cold"}}',
        ),
    ),
    FieldSpec(
        "incoming_connections",
        _a(
            f"{_NS}connectionManager_incomingConns",
            f"{_NS}connectionManager_incomingConns_int",
            f"{_NS}connectionManager_IncomingConns",
        ),
    ),
    FieldSpec(
        "outgoing_connections",
        _a(
            f"{_NS}connectionManager_outgoingConns",
            f"{_NS}connectionManager_outgoingConns_int",
            f"{_NS}connectionManager_OutgoingConns",
        ),
    ),
    FieldSpec(
        "duplex_connections",
        _a(
            f"{_NS}connectionManager_duplexConns",
            f"{_NS}connectionManager_duplexConns_int",
            f"{_NS}connectionManager_DuplexConns",
        ),
    ),
    FieldSpec(
        "memory_used_bytes",
        _a(
            f"{_NS}RTS_gcLiveBytes_int",
            f"{_NS}RTS_gcLiveBytes",
            f"{_NS}Mem_resident_int",
            "process_resident_memory_bytes",
        ),
    ),
    FieldSpec(
        "memory_heap_bytes",
        _a(f"{_NS}RTS_gcHeapBytes_int", f"{_NS}RTS_gcHeapBytes"),
    ),
    FieldSpec(
        "cpu_seconds",
        _a(f"{_NS}RTS_cpuNs_int", f"{_NS}RTS_cpuNs", scale=1e-9)
        + _a("process_cpu_seconds_total"),
        integral=False,
    ),
    FieldSpec(
        "uptime_seconds",
        _a(f"{_NS}upTime_ns", f"{_NS}upTime_int", scale=1e-9),
        integral=False,
    ),
    FieldSpec(
        "mempool_txs",
        _a(
            f"{_NS}txsInMempool_int",
            f"{_NS}txsInMempool_counter",
            f"{_NS}Mempool_TxsInMempool",
        ),
    ),
    FieldSpec(
        "mempool_bytes",
        _a(
            f"{_NS}mempoolBytes_int",
            f"{_NS}mempoolBytes_counter",
            f"{_NS}Mempool_MempoolBytes",
        ),
    ),
    FieldSpec(
        "txs_processed",
        _a(f"{_NS}txsProcessedNum_int", f"{_NS}txsProcessedNum_counter"),
    ),
    FieldSpec(
        "kes_period",
        _a(f"{_NS}currentKESPeriod_int", f"{_NS}Forge_CurrentKESPeriod"),
    ),
    FieldSpec(
        "kes_remaining",
        _a(
            f"{_NS}remainingKESPeriods_int",
            f"{_NS}Forge_RemainingKESPeriods",
        ),
    ),
    FieldSpec(
        "opcert_expiry_period",
        _a(
            f"{_NS}operationalCertificateExpiryKESPeriod_int",
            f"{_NS}Forge_OperationalCertificateExpiryKESPeriod",
        ),
    ),
    FieldSpec(
        "blocks_forged",
        _a(
            f"{_NS}Forge_forged_int",
            f"{_NS}Forge_forged_counter",
            f"{_NS}blocksForgedNum_int",
        ),
    ),
    FieldSpec(
        "leader_slots",
        _a(
            f"{_NS}Forge_node_is_leader_int",
            f"{_NS}Forge_node_is_leader_counter",
            f"{_NS}nodeIsLeaderNum_int",
        ),
    ),
    FieldSpec(
        "blocks_adopted",
        _a(f"{_NS}Forge_adopted_int", f"{_NS}Forge_adopted_counter"),
    ),
    FieldSpec(
        "blocks_not_adopted",
        _a(f"{_NS}Forge_didnt_adopt_int", f"{_NS}Forge_didnt_adopt_counter"),
    ),
    FieldSpec(
        "missed_slots",
        _a(f"{_NS}slotsMissedNum_int", f"{_NS}slotsMissed_int"),
    ),
    FieldSpec(
        "block_delay_seconds",
        _a(
            f"{_NS}blockfetchclient_blockdelay_s",
            f"{_NS}blockfetchclient_blockdelay_real",
        ),
        integral=False,
    ),
    FieldSpec(
        "block_delay_cdf_1s",
        _a(
            f"{_NS}blockfetchclient_blockdelay_cdfOne",
            f"{_NS}blockfetchclient_blockdelay_cdfOne_real",
        ),
        integral=False,
        upper_bound=1.0,
    ),
    FieldSpec(
        "block_delay_cdf_3s",
        _a(
            f"{_NS}blockfetchclient_blockdelay_cdfThree",
            f"{_NS}blockfetchclient_blockdelay_cdfThree_real",
        ),
        integral=False,
        upper_bound=1.0,
    ),
    FieldSpec(
        "block_delay_cdf_5s",
        _a(
            f"{_NS}blockfetchclient_blockdelay_cdfFive",
            f"{_NS}blockfetchclient_blockdelay_cdfFive_real",
        ),
        integral=False,
        upper_bound=1.0,
    ),
)

_IMPLEMENTATION_PREFIXES = (
    ("dingo_", NodeImplementation.DINGO),
    ("amaru_", NodeImplementation.AMARU),
    ("cardano_node_", NodeImplementation.CARDANO_NODE),
)


@dataclass
class NormalizationResult:
    """Normalized metrics plus the values that were rejected."""

    metrics: NormalizedMetrics
    warnings: list[ParseWarning] = field(default_factory=list)


def detect_implementation(keys: Mapping[str, float]) -> NodeImplementation:
    """Detect the node software from the metric namespace."""
    for prefix, implementation in _IMPLEMENTATION_PREFIXES:
        if any(key.startswith(prefix) for key in keys):
            return implementation
    return NodeImplementation.UNKNOWN


def validate_value(
    spec: FieldSpec, alias: Alias, raw: float
) -> tuple[int | float | None, str | None]:
    """Check a raw value against a field's rules.

    Returns:
        ``(value, None)`` when the value is accepted, or ``(None, reason)``
        when it must be discarded.
    """
    if not math.isfinite(raw):
        return None, f"non-finite value {raw!r}"
    value = raw * alias.scale
    if spec.non_negative and value < 0:
        return None, f"negative value {raw!r}"
    if spec.upper_bound is not None and value > spec.upper_bound:
        return None, f"value {value!r} above {spec.upper_bound}"
    if spec.integral:
        if not float(value).is_integer():
            return None, f"non-integral value {raw!r}"
        return int(value), None
    return float(value), None


def resolve_field(
    spec: FieldSpec, raw: Mapping[str, float], warnings: list[ParseWarning]
) -> int | float | None:
    """Resolve one field from the raw metrics using its alias priority."""
    for alias in spec.aliases:
        if alias.key not in raw:
            continue
        value, reason = validate_value(spec, alias, raw[alias.key])
        if reason is None:
            return value
        warnings.append(ParseWarning(0, alias.key, f"{spec.name}: {reason}"))
    return None


def normalize(raw: Mapping[str, float]) -> NormalizationResult:
    """Resolve a raw metric set into ``NormalizedMetrics``.

    Args:
        raw: Series key to value mapping, usually a ``RawMetricSet``.

    Returns:
        NormalizationResult. Fields without a usable alias are ``None``.
    """
    warnings: list[ParseWarning] = []
    values: dict[str, int | float | None] = {
        spec.name: resolve_field(spec, raw, warnings) for spec in FIELD_SPECS
    }
    metrics = NormalizedMetrics(implementation=detect_implementation(raw), **values)
    return NormalizationResult(metrics=metrics, warnings=warnings)
