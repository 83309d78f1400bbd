"""Bridge from the standard library logging module into engine log storage.

Records emitted under the ``chainwatch`` logger hierarchy are converted to
``LogEntry`` objects and kept in a bounded buffer that the presentation API
serves as NDJSON.
"""

import logging
import traceback

from chainwatch.core.models import LogEntry
from chainwatch.core.ports import LogStoragePort

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

_DEFAULT_INCLUDE_ATTRS = ("logger", "funcName", "lineno")


class LogBufferHandler(logging.Handler):
    """Logging handler that writes records to a LogStoragePort.

    Example:
        ```python
        storage = RingBufferLogStorage(max_size=500)
        logging.getLogger("chainwatch").addHandler(LogBufferHandler(storage))
        ```
    """

    def __init__(
        self,
        storage: LogStoragePort,
        include_attrs: tuple[str, ...] | list[str] | None = None,
        level: int = logging.NOTSET,
    ) -> None:
        """Initialize the handler with a log storage backend.

        Args:
            storage: Storage adapter implementing LogStoragePort.
            include_attrs: LogRecord attributes to copy into the entry.
                Defaults to ("logger", "funcName", "lineno").
            level: Minimum level handled.
        """
        super().__init__(level)
        self._storage = storage
        self._include_attrs = (
            _DEFAULT_INCLUDE_ATTRS if include_attrs is None else tuple(include_attrs)
        )

    def to_entry(self, record: logging.LogRecord) -> LogEntry:
        """Convert a LogRecord into a LogEntry."""
        attr_mapping: dict[str, str | int | float | bool] = {
            "logger": record.name,
            "funcName": record.funcName or "",
            "lineno": record.lineno,
            "pathname": record.pathname,
        }
        attributes: dict[str, str | int | float | bool] = {
            key: attr_mapping[key] for key in self._include_attrs if key in attr_mapping
        }

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOGRECORD_ATTRS and isinstance(
                value, (str, int, float, bool)
            ):
                attributes[key] = value

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                attributes["exc_type"] = exc_type.__name__
            if exc_value is not None:
                attributes["exc_message"] = str(exc_value)
            if exc_tb is not None:
                attributes["exc_traceback"] = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )

        return LogEntry(
            timestamp=record.created,
            level=record.levelname,
            message=record.getMessage(),
            attributes=attributes,
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._storage.write(self.to_entry(record))
        except Exception:
            self.handleError(record)


def install_log_buffer(
    storage: LogStoragePort,
    level: int = logging.INFO,
    logger_name: str = "chainwatch",
) -> LogBufferHandler:
    """Attach a LogBufferHandler to ``logger_name``.

    The logger's own level is lowered to ``level`` if it would otherwise
    filter records before they reach the handler.

    Returns:
        The installed handler, so callers can remove it again.
    """
    handler = LogBufferHandler(storage, level=level)
    target = logging.getLogger(logger_name)
    target.addHandler(handler)
    if target.level == logging.NOTSET or target.level > level:
        target.setLevel(level)
    return handler
