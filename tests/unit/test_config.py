"""Tests for node and engine configuration loading."""

from pathlib import Path

import pytest

from chainwatch.config import (
    DEFAULT_NODE_NAME,
    EngineSettings,
    NodeConfig,
    config_from_env,
    default_data_dir,
    load_config_file,
    load_nodes,
    parse_role,
)
from chainwatch.core.errors import ConfigError
from chainwatch.core.models import NodeRole

pytestmark = [pytest.mark.core, pytest.mark.tier(0)]

CONFIG_TOML = """\
[global]
network = "preprod"
refresh_interval = 5
timeout = 2.5
history_length = 120
data_dir = "{data_dir}"

[[node]]
name = "Relay 1"
host = "10.0.0.10"
port = 12798
role = "relay"

[[node]]
name = "Producer"
host = "10.0.0.20"
role = "bp"
network = "mainnet"
node_port = 6000
timeout = 1
"""


class TestNodeConfig:
    def test_defaults(self) -> None:
        node = NodeConfig(name="n")

        assert node.metrics_url == "http://127.0.0.1:12798/metrics"
        assert node.role is NodeRole.RELAY

    def test_timeout_override(self) -> None:
        settings = EngineSettings(fetch_timeout_seconds=3.0)

        assert settings.timeout_for(NodeConfig(name="a")) == 3.0
        assert settings.timeout_for(NodeConfig(name="b", timeout_seconds=1.0)) == 1.0


class TestEngineSettings:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"poll_interval_seconds": 0},
            {"fetch_timeout_seconds": -1},
            {"history_capacity": 0},
            {"offline_after_failures": 0},
        ],
    )
    def test_invalid_values_raise(self, kwargs: dict) -> None:
        with pytest.raises(ConfigError):
            EngineSettings(**kwargs)


class TestParseRole:
    @pytest.mark.parametrize(
        ("value", "role"),
        [
            ("relay", NodeRole.RELAY),
            ("Block-Producer", NodeRole.BLOCK_PRODUCER),
            ("bp", NodeRole.BLOCK_PRODUCER),
            (NodeRole.RELAY, NodeRole.RELAY),
        ],
    )
    def test_aliases(self, value: object, role: NodeRole) -> None:
        assert parse_role(value) is role

    def test_unknown_role(self) -> None:
        with pytest.raises(ConfigError, match="unknown role"):
            parse_role("archive", "n1")


class TestLoadNodes:
    def test_empty_list_is_rejected(self) -> None:
        with pytest.raises(ConfigError, match="no nodes"):
            load_nodes([])

    def test_missing_name(self) -> None:
        with pytest.raises(ConfigError, match="has no name"):
            load_nodes([{"host": "a"}])

    def test_duplicate_names(self) -> None:
        with pytest.raises(ConfigError, match="duplicate"):
            load_nodes([{"name": "a"}, {"name": "a"}])

    @pytest.mark.parametrize("port", [0, 70000, "abc", 1.5])
    def test_invalid_port(self, port: object) -> None:
        with pytest.raises(ConfigError, match="port"):
            load_nodes([{"name": "a", "port": port}])

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ConfigError, match="timeout"):
            load_nodes([{"name": "a", "timeout": 0}])

    def test_defaults_apply_to_entries_without_values(self) -> None:
        nodes = load_nodes(
            [{"name": "a"}, {"name": "b", "network": "preview"}],
            defaults={"network": "preprod"},
        )

        assert [n.network for n in nodes] == ["preprod", "preview"]


class TestConfigFromEnv:
    def test_defaults(self, tmp_path: Path) -> None:
        config = config_from_env({"CHAINWATCH_DATA_DIR": str(tmp_path)})

        (node,) = config.nodes
        assert node.name == DEFAULT_NODE_NAME
        assert node.port == 12798
        assert config.settings.poll_interval_seconds == 2.0
        assert config.settings.data_dir == tmp_path

    def test_reads_environment(self) -> None:
        config = config_from_env(
            {
                "NODE_NAME": "BP",
                "NODE_ROLE": "producer",
                "PROM_HOST": "10.1.1.1",
                "PROM_PORT": "12799",
                "PROM_TIMEOUT": "4",
                "REFRESH_INTERVAL": "10",
                "CARDANO_NETWORK": "preview",
                "HISTORY_LENGTH": "30",
            }
        )

        (node,) = config.nodes
        assert node.role is NodeRole.BLOCK_PRODUCER
        assert node.metrics_url == "http://10.1.1.1:12799/metrics"
        assert node.network == "preview"
        assert config.settings.fetch_timeout_seconds == 4.0
        assert config.settings.poll_interval_seconds == 10.0
        assert config.settings.history_capacity == 30

    def test_invalid_port_is_config_error(self) -> None:
        with pytest.raises(ConfigError):
            config_from_env({"PROM_PORT": "not-a-port"})


class TestLoadConfigFile:
    def test_loads_global_and_nodes(self, tmp_path: Path) -> None:
        path = tmp_path / "chainwatch.toml"
        path.write_text(CONFIG_TOML.format(data_dir=tmp_path / "data"))

        config = load_config_file(path)

        relay, producer = config.nodes
        assert relay.network == "preprod"
        assert producer.network == "mainnet"
        assert producer.role is NodeRole.BLOCK_PRODUCER
        assert producer.node_port == 6000
        assert producer.timeout_seconds == 1.0
        assert config.settings.poll_interval_seconds == 5.0
        assert config.settings.fetch_timeout_seconds == 2.5
        assert config.settings.history_capacity == 120
        assert config.settings.data_dir == tmp_path / "data"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="cannot read"):
            load_config_file(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text("[[node]\nname = ")

        with pytest.raises(ConfigError):
            load_config_file(path)

    def test_no_nodes(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.toml"
        path.write_text('[global]\nnetwork = "mainnet"\n')

        with pytest.raises(ConfigError, match="no nodes"):
            load_config_file(path)


class TestDefaultDataDir:
    def test_explicit_directory_wins(self) -> None:
        env = {"CHAINWATCH_DATA_DIR": "/srv/cw", "XDG_DATA_HOME": "/x"}

        assert default_data_dir(env) == Path("/srv/cw")

    def test_xdg_data_home(self) -> None:
        assert default_data_dir({"XDG_DATA_HOME": "/x"}) == Path("/x/chainwatch")
