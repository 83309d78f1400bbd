"""Error taxonomy for the monitoring engine.

Only ``ConfigError`` is fatal. Everything else is contained inside a node's
polling cycle and surfaces as a status or health change.
"""

from dataclasses import dataclass


class ChainwatchError(Exception):
    """Base class for all engine errors."""


class FetchError(ChainwatchError):
    """The metrics endpoint could not be reached or returned an error.

    Args:
        node: Name of the node that failed.
        reason: Short description suitable for display.
    """

    def __init__(self, node: str, reason: str) -> None:
        super().__init__(f"{node}: {reason}")
        self.node = node
        self.reason = reason


class DiscoveryUnavailable(ChainwatchError):
    """Socket inspection is not possible (tool missing or failed)."""


class ConfigError(ChainwatchError):
    """The node configuration is invalid."""


class StorageError(ChainwatchError):
    """Persisting a snapshot failed."""


@dataclass(frozen=True)
class ParseWarning:
    """A metric line or value that was skipped.

    Attributes:
        line_number: 1-based line in the exposition text, 0 if not line-bound.
        key: Metric key or semantic field the warning refers to.
        reason: Why it was skipped.
    """

    line_number: int
    key: str
    reason: str
