"""Parser for the Prometheus text exposition format.

Turns a scrape body into a bounded ``RawMetricSet``. Partial success is the
normal case: malformed lines are skipped and reported as ``ParseWarning``s,
never raised.
"""

import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

from chainwatch.core.errors import ParseWarning

logger = logging.getLogger(__name__)

DEFAULT_MAX_METRICS = 10_000

_NAME = r"[a-zA-Z_:][a-zA-Z0-9_:]*"
_LINE_RE = re.compile(
    rf"^(?P<name>{_NAME})"
    r"(?:\{(?P<labels>.*)\})?"
    r"\s+(?P<value>\S+)"
    r"(?:\s+(?P<ts>-?\d+))?\s*$"
)
_LABEL_RE = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*,?')

_SPECIAL_VALUES = {
    "NaN": float("nan"),
    "+Inf": float("inf"),
    "Inf": float("inf"),
    "-Inf": float("-inf"),
}


class RawMetricSet(Mapping[str, float]):
    """Read-only mapping of series key to value, capped at ``max_size`` keys.

    Keys are kept in first-seen order. Once the cap is reached, further
    distinct keys are counted in ``dropped`` and discarded, so truncation
    is deterministic for a given input.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_METRICS) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._values: dict[str, float] = {}
        self._max_size = max_size
        self._rejected: set[str] = set()
        self.dropped = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def truncated(self) -> bool:
        return self.dropped > 0

    def seen(self, key: str) -> bool:
        """Whether ``key`` was already kept or rejected by the cap."""
        return key in self._values or key in self._rejected

    def _add(self, key: str, value: float) -> bool:
        """Insert a new key. Returns False if the cap rejected it."""
        if len(self._values) >= self._max_size:
            self._rejected.add(key)
            self.dropped = len(self._rejected)
            return False
        self._values[key] = value
        return True

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"RawMetricSet(size={len(self)}, dropped={self.dropped})"


@dataclass
class ParseResult:
    """Outcome of parsing one exposition body."""

    metrics: RawMetricSet
    warnings: list[ParseWarning] = field(default_factory=list)


def series_key(name: str, labels: Mapping[str, str] | None = None) -> str:
    """Build the canonical key for a series.

    Unlabelled series use the bare metric name. Labelled series append the
    labels sorted by name, e.g. ``peers{state="hot"}``.
    """
    if not labels:
        return name
    rendered = ",".join(f'{k}="{labels[k]}"' for k in sorted(labels))
    return f"{name}{{{rendered}}}"


def _parse_labels(text: str) -> dict[str, str] | None:
    labels: dict[str, str] = {}
    pos = 0
    text = text.strip()
    while pos < len(text):
        match = _LABEL_RE.match(text, pos)
        if match is None:
            return None
        labels[match.group(1)] = match.group(2)
        pos = match.end()
    return labels


def _parse_value(text: str) -> float | None:
    if text in _SPECIAL_VALUES:
        return _SPECIAL_VALUES[text]
    try:
        return float(text)
    except ValueError:
        return None


def parse_exposition(text: str, max_metrics: int = DEFAULT_MAX_METRICS) -> ParseResult:
    """Parse exposition text into a ``RawMetricSet``.

    Args:
        text: Scrape body.
        max_metrics: Maximum number of distinct series to keep.

    Returns:
        ParseResult with the metric set and any warnings. A truncation
        warning is included when the cap dropped series.
    """
    result = ParseResult(metrics=RawMetricSet(max_metrics))
    metrics = result.metrics

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        match = _LINE_RE.match(line)
        if match is None:
            result.warnings.append(
                ParseWarning(line_number, line[:80], "unrecognized line")
            )
            continue

        name = match.group("name")
        labels: dict[str, str] | None = None
        if match.group("labels") is not None:
            labels = _parse_labels(match.group("labels"))
            if labels is None:
                result.warnings.append(
                    ParseWarning(line_number, name, "malformed labels")
                )
                continue

        value = _parse_value(match.group("value"))
        if value is None:
            result.warnings.append(
                ParseWarning(
                    line_number, name, f"invalid value {match.group('value')!r}"
                )
            )
            continue

        key = series_key(name, labels)
        if metrics.seen(key):
            result.warnings.append(ParseWarning(line_number, key, "duplicate series"))
            continue
        metrics._add(key, value)

    if metrics.truncated:
        result.warnings.append(
            ParseWarning(
                0,
                "*",
                f"metric cap of {metrics.max_size} reached, "
                f"dropped {metrics.dropped} series",
            )
        )
        logger.warning(
            "Metric cap reached: kept %d series, dropped %d",
            len(metrics),
            metrics.dropped,
        )

    for warning in result.warnings:
        logger.debug(
            "Skipped metric line %d (%s): %s",
            warning.line_number,
            warning.key,
            warning.reason,
        )

    return result
