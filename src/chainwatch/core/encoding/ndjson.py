"""NDJSON encoder for engine log entries."""

import json
from collections.abc import Iterable

from chainwatch.core.models import LogEntry


def encode_logs(entries: Iterable[LogEntry]) -> str:
    """Encode log entries to newline-delimited JSON.

    Args:
        entries: An iterable of LogEntry objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no entries.
    """
    lines = [
        json.dumps(
            {
                "timestamp": entry.timestamp,
                "level": entry.level,
                "message": entry.message,
                "attributes": entry.attributes,
            },
            default=str,
        )
        for entry in entries
    ]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
