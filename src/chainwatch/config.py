"""Node and engine configuration.

Configuration is plain frozen dataclasses. It can be built directly, from
environment variables (single node) or from a TOML file (several nodes).
All validation failures raise ``ConfigError``.
"""

import os
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from chainwatch.core.errors import ConfigError
from chainwatch.core.models import NodeRole, RetentionPolicy

DEFAULT_NODE_NAME = "Cardano Node"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_METRICS_PORT = 12798
DEFAULT_NODE_PORT = 3001
DEFAULT_NETWORK = "mainnet"

_ROLE_ALIASES = {
    "relay": NodeRole.RELAY,
    "block-producer": NodeRole.BLOCK_PRODUCER,
    "block_producer": NodeRole.BLOCK_PRODUCER,
    "producer": NodeRole.BLOCK_PRODUCER,
    "bp": NodeRole.BLOCK_PRODUCER,
}


def default_data_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Directory for archives and alert logs.

    ``$CHAINWATCH_DATA_DIR`` wins, then ``$XDG_DATA_HOME/chainwatch``, then
    ``~/.local/share/chainwatch``.
    """
    env = os.environ if environ is None else environ
    if env.get("CHAINWATCH_DATA_DIR"):
        return Path(env["CHAINWATCH_DATA_DIR"]).expanduser()
    if env.get("XDG_DATA_HOME"):
        return Path(env["XDG_DATA_HOME"]).expanduser() / "chainwatch"
    return Path.home() / ".local" / "share" / "chainwatch"


@dataclass(frozen=True)
class NodeConfig:
    """One monitored node.

    Attributes:
        name: Unique display name.
        host: Metrics endpoint host.
        port: Metrics endpoint port.
        role: Relay or block producer.
        network: Network label shown alongside the node.
        node_port: P2P port used to pick the node's peer connections.
        timeout_seconds: Per-node fetch timeout; None uses the engine default.
    """

    name: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_METRICS_PORT
    role: NodeRole = NodeRole.RELAY
    network: str = DEFAULT_NETWORK
    node_port: int = DEFAULT_NODE_PORT
    timeout_seconds: float | None = None

    @property
    def metrics_url(self) -> str:
        return f"http://{self.host}:{self.port}/metrics"


@dataclass(frozen=True)
class EngineSettings:
    """Engine-wide settings shared by every node session."""

    poll_interval_seconds: float = 2.0
    fetch_timeout_seconds: float = 3.0
    history_capacity: int = 60
    max_metrics: int = 10_000
    offline_after_failures: int = 3
    stall_window_seconds: float = 300.0
    recent_alerts: int = 50
    data_dir: Path = field(default_factory=default_data_dir)
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    discovery_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        for name in (
            "poll_interval_seconds",
            "fetch_timeout_seconds",
            "stall_window_seconds",
            "discovery_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        for name in (
            "history_capacity",
            "max_metrics",
            "offline_after_failures",
            "recent_alerts",
        ):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")

    def timeout_for(self, node: NodeConfig) -> float:
        """Fetch timeout that applies to ``node``."""
        if node.timeout_seconds is not None:
            return node.timeout_seconds
        return self.fetch_timeout_seconds


@dataclass(frozen=True)
class MonitorConfig:
    """Validated node list plus engine settings."""

    nodes: tuple[NodeConfig, ...]
    settings: EngineSettings = field(default_factory=EngineSettings)


def parse_role(value: Any, node: str = "") -> NodeRole:
    if isinstance(value, NodeRole):
        return value
    role = _ROLE_ALIASES.get(str(value).strip().lower())
    if role is None:
        raise ConfigError(f"{node or 'node'}: unknown role {value!r}")
    return role


def _port(value: Any, label: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be an integer, got {value!r}") from exc
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"{label} must be an integer, got {value!r}")
    if not 1 <= port <= 65535:
        raise ConfigError(f"{label} must be between 1 and 65535, got {port}")
    return port


def _positive(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{label} must be positive, got {value!r}")
    return number


def load_nodes(
    entries: Sequence[Mapping[str, Any]],
    defaults: Mapping[str, Any] | None = None,
) -> tuple[NodeConfig, ...]:
    """Validate raw node entries into ``NodeConfig`` objects.

    Args:
        entries: One mapping per node (``name`` required).
        defaults: Values applied to entries that omit them, e.g. ``network``.

    Raises:
        ConfigError: On an empty list, a missing or duplicate name, an invalid
            port, an unknown role or a non-positive timeout.
    """
    if not entries:
        raise ConfigError("no nodes configured")
    base = dict(defaults or {})
    nodes: list[NodeConfig] = []
    seen: set[str] = set()

    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, Mapping):
            raise ConfigError(f"node #{index} must be a table, got {entry!r}")
        raw = {**base, **entry}
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ConfigError(f"node #{index} has no name")
        if name in seen:
            raise ConfigError(f"duplicate node name {name!r}")
        seen.add(name)

        timeout = raw.get("timeout_seconds", raw.get("timeout"))
        nodes.append(
            NodeConfig(
                name=name,
                host=str(raw.get("host") or DEFAULT_HOST),
                port=_port(raw.get("port", DEFAULT_METRICS_PORT), f"{name}: port"),
                role=parse_role(raw.get("role", NodeRole.RELAY), name),
                network=str(raw.get("network") or DEFAULT_NETWORK),
                node_port=_port(
                    raw.get("node_port", DEFAULT_NODE_PORT), f"{name}: node_port"
                ),
                timeout_seconds=(
                    None if timeout is None else _positive(timeout, f"{name}: timeout")
                ),
            )
        )
    return tuple(nodes)


def _env_number(env: Mapping[str, str], name: str, default: float) -> float:
    if not env.get(name):
        return default
    return _positive(env[name], name)


def config_from_env(environ: Mapping[str, str] | None = None) -> MonitorConfig:
    """Build a single-node configuration from environment variables.

    Reads ``NODE_NAME``, ``NODE_ROLE``, ``PROM_HOST``, ``PROM_PORT``,
    ``PROM_TIMEOUT``, ``NODE_PORT``, ``REFRESH_INTERVAL``, ``CARDANO_NETWORK``
    (or ``NETWORK``), ``HISTORY_LENGTH`` and ``CHAINWATCH_DATA_DIR``.
    """
    env = os.environ if environ is None else environ
    entry: dict[str, Any] = {
        "name": env.get("NODE_NAME") or DEFAULT_NODE_NAME,
        "host": env.get("PROM_HOST") or DEFAULT_HOST,
        "port": env.get("PROM_PORT") or DEFAULT_METRICS_PORT,
        "role": env.get("NODE_ROLE") or NodeRole.RELAY,
        "network": env.get("CARDANO_NETWORK") or env.get("NETWORK") or DEFAULT_NETWORK,
        "node_port": env.get("NODE_PORT") or DEFAULT_NODE_PORT,
    }
    settings = EngineSettings(
        poll_interval_seconds=_env_number(env, "REFRESH_INTERVAL", 2.0),
        fetch_timeout_seconds=_env_number(env, "PROM_TIMEOUT", 3.0),
        history_capacity=int(_env_number(env, "HISTORY_LENGTH", 60)),
        data_dir=default_data_dir(env),
    )
    return MonitorConfig(nodes=load_nodes([entry]), settings=settings)


def load_config_file(
    path: str | Path, environ: Mapping[str, str] | None = None
) -> MonitorConfig:
    """Load a TOML file with a ``[global]`` table and ``[[node]]`` entries.

    ``[global]`` may set ``network`` (applied to nodes that omit it) and the
    engine options ``refresh_interval``, ``timeout``, ``history_length`` and
    ``data_dir``.

    Raises:
        ConfigError: If the file cannot be read, is not valid TOML, or
            describes an invalid node list.
    """
    source = Path(path)
    try:
        document = tomllib.loads(source.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read {source}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{source}: {exc}") from exc

    global_table = document.get("global", {})
    if not isinstance(global_table, Mapping):
        raise ConfigError(f"{source}: [global] must be a table")
    entries = document.get("node", [])
    if not isinstance(entries, list):
        raise ConfigError(f"{source}: [[node]] must be an array of tables")

    defaults = {"network": global_table.get("network") or DEFAULT_NETWORK}
    data_dir = global_table.get("data_dir")
    settings = EngineSettings(
        poll_interval_seconds=_positive(
            global_table.get("refresh_interval", 2.0), "refresh_interval"
        ),
        fetch_timeout_seconds=_positive(global_table.get("timeout", 3.0), "timeout"),
        history_capacity=int(
            _positive(global_table.get("history_length", 60), "history_length")
        ),
        data_dir=(
            Path(data_dir).expanduser() if data_dir else default_data_dir(environ)
        ),
    )
    return MonitorConfig(nodes=load_nodes(entries, defaults), settings=settings)
