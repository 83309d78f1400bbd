"""chainwatch: telemetry, health and alerting for Cardano nodes."""

from chainwatch.config import EngineSettings, NodeConfig
from chainwatch.core.models import HealthLevel, NodeSnapshot, NormalizedMetrics
from chainwatch.runtime.orchestrator import MonitorRuntime

__version__ = "0.1.0"

__all__ = [
    "EngineSettings",
    "HealthLevel",
    "MonitorRuntime",
    "NodeConfig",
    "NodeSnapshot",
    "NormalizedMetrics",
]
