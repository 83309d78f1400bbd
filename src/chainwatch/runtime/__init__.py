"""Scheduling: per-node sessions and the runtime that drives them."""

from chainwatch.runtime.orchestrator import MonitorRuntime
from chainwatch.runtime.session import NodeSession

__all__ = ["MonitorRuntime", "NodeSession"]
