"""Shared test fixtures for all test modules."""

from pathlib import Path

import pytest

from chainwatch.adapters.geoip import LocationCache
from chainwatch.config import EngineSettings, NodeConfig
from chainwatch.core.models import NodeRole, RetentionPolicy
from tests.fakes import FakeClock, ScriptedSource, StaticInspector


@pytest.fixture
def snapshot_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for snapshot storage tests."""
    return str(tmp_path / "history" / "relay-1.db")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Engine settings writing under a temporary data directory."""
    return EngineSettings(
        poll_interval_seconds=0.05,
        fetch_timeout_seconds=0.5,
        data_dir=tmp_path,
        retention=RetentionPolicy(sample_interval_seconds=0),
    )


@pytest.fixture
def relay() -> NodeConfig:
    return NodeConfig(name="relay-1", node_port=3001)


@pytest.fixture
def producer() -> NodeConfig:
    return NodeConfig(
        name="Block Producer", port=12799, role=NodeRole.BLOCK_PRODUCER
    )


@pytest.fixture
def source() -> ScriptedSource:
    return ScriptedSource()


@pytest.fixture
def inspector() -> StaticInspector:
    return StaticInspector()


@pytest.fixture
def location_cache() -> LocationCache:
    """Fresh location cache so tests never share the process-global one."""
    return LocationCache()
