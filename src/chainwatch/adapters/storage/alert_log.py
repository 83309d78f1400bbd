"""Append-only, human-readable alert log, one file per node."""

import logging
from collections.abc import Iterable
from pathlib import Path

from chainwatch.core.alerts import format_alert_line
from chainwatch.core.models import Alert

logger = logging.getLogger(__name__)


def sanitize_node_name(name: str) -> str:
    """Map a node name to a safe, lower-case file stem."""
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in name).lower()


class AlertLogFile:
    """AlertSinkPort implementation writing ``<dir>/<node>.log``.

    The file is opened in append mode for each write and never read back.
    Failures are logged and otherwise ignored: losing an audit line must not
    disturb the polling cycle.

    Args:
        directory: Directory holding the per-node log files.
        node_name: Node the alerts belong to.
    """

    def __init__(self, directory: str | Path, node_name: str) -> None:
        self.path = Path(directory) / f"{sanitize_node_name(node_name)}.log"

    def write(self, alerts: Iterable[Alert]) -> None:
        lines = [format_alert_line(alert) + "\n" for alert in alerts]
        if not lines:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.writelines(lines)
        except OSError:
            logger.warning("Could not append to alert log %s", self.path, exc_info=True)
