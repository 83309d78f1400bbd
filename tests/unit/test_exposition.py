"""Tests for the exposition text parser."""

import math

import pytest

from chainwatch.core.encoding.exposition import (
    RawMetricSet,
    parse_exposition,
    series_key,
)

pytestmark = [pytest.mark.core, pytest.mark.tier(0)]


class TestSeriesKey:
    def test_unlabelled_series_uses_bare_name(self) -> None:
        assert series_key("up") == "up"

    def test_labels_are_sorted_by_name(self) -> None:
        key = series_key("peers", {"state": "hot", "kind": "a"})

        assert key == 'peers{kind="a",state="hot"}'


class TestParseExposition:
    """Tests for parse_exposition."""

    def test_parses_plain_samples(self) -> None:
        result = parse_exposition("a_total 3\nb_gauge 1.5\n")

        assert dict(result.metrics) == {"a_total": 3.0, "b_gauge": 1.5}
        assert result.warnings == []

    def test_skips_comments_and_blank_lines_silently(self) -> None:
        text = "# HELP a help\n# TYPE a gauge\n\n   \na 1\n"

        result = parse_exposition(text)

        assert dict(result.metrics) == {"a": 1.0}
        assert result.warnings == []

    def test_labelled_series_are_keyed_with_sorted_labels(self) -> None:
        text = 'peers{state="warm",kind="x"} 7\n'

        result = parse_exposition(text)

        assert result.metrics['peers{kind="x",state="warm"}'] == 7.0

    def test_trailing_timestamp_is_ignored(self) -> None:
        result = parse_exposition("a 5 1700000000000\n")

        assert result.metrics["a"] == 5.0

    def test_malformed_line_is_skipped_with_warning(self) -> None:
        text = "a 1\nthis is not a metric line at all\nb 2\n"

        result = parse_exposition(text)

        assert dict(result.metrics) == {"a": 1.0, "b": 2.0}
        assert len(result.warnings) == 1
        assert result.warnings[0].line_number == 2

    def test_invalid_value_is_skipped_with_warning(self) -> None:
        result = parse_exposition("a abc\nb 2\n")

        assert "a" not in result.metrics
        assert result.warnings[0].key == "a"
        assert "invalid value" in result.warnings[0].reason

    def test_malformed_labels_are_skipped(self) -> None:
        result = parse_exposition("a{state=hot} 1\n")

        assert len(result.metrics) == 0
        assert result.warnings[0].reason == "malformed labels"

    def test_special_float_values_are_parsed(self) -> None:
        result = parse_exposition("a NaN\nb +Inf\nc -Inf\n")

        assert math.isnan(result.metrics["a"])
        assert result.metrics["b"] == float("inf")
        assert result.metrics["c"] == float("-inf")

    def test_duplicate_series_keeps_first_value(self) -> None:
        result = parse_exposition("a 1\na 2\n")

        assert result.metrics["a"] == 1.0
        assert result.warnings[0].reason == "duplicate series"

    def test_empty_input_yields_empty_set(self) -> None:
        result = parse_exposition("")

        assert len(result.metrics) == 0
        assert result.warnings == []


class TestMetricCap:
    """The parser bounds the number of distinct series it keeps."""

    def test_fifteen_thousand_names_are_capped_with_warning(self) -> None:
        text = "\n".join(f"metric_{i} {i}" for i in range(15_000))

        result = parse_exposition(text, max_metrics=10_000)

        assert len(result.metrics) == 10_000
        assert result.metrics.truncated
        assert result.metrics.dropped == 5_000
        assert any("metric cap" in w.reason for w in result.warnings)

    def test_truncation_keeps_first_names_in_input_order(self) -> None:
        text = "\n".join(f"m{i} {i}" for i in range(5))

        result = parse_exposition(text, max_metrics=3)

        assert list(result.metrics) == ["m0", "m1", "m2"]

    def test_repeat_of_dropped_series_is_counted_once(self) -> None:
        result = parse_exposition("a 1\nb 2\nb 3\n", max_metrics=1)

        assert list(result.metrics) == ["a"]
        assert result.metrics.dropped == 1
        assert any(w.reason == "duplicate series" for w in result.warnings)
        assert any("dropped 1 series" in w.reason for w in result.warnings)

    def test_no_truncation_warning_below_cap(self) -> None:
        result = parse_exposition("a 1\nb 2\n", max_metrics=2)

        assert not result.metrics.truncated
        assert result.warnings == []

    def test_cap_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            RawMetricSet(0)
