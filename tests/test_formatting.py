"""Tests for formatting utilities."""

import time

import pytest

from shredstream_monitor.formatting import (
    format_age,
    format_clock,
    format_count,
    format_duration,
    format_rate,
    truncate_signature,
)


class TestFormatRate:
    """Tests for format_rate (compact per-second rates)."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0.0, "0.0"),
            (7.46, "7.5"),
            (842.4, "842"),
            (12_345.0, "12.3K"),
            (4_100_000.0, "4.1M"),
        ],
    )
    def test_ranges(self, value, expected):
        assert format_rate(value) == expected


class TestFormatDuration:
    """Tests for format_duration (uptime display)."""

    def test_under_an_hour(self):
        assert format_duration(307) == "00:05:07"

    def test_hours(self):
        assert format_duration(3 * 3600 + 61.9) == "03:01:01"

    def test_days(self):
        assert format_duration(86400 + 2 * 3600 + 3 * 60 + 4) == "1d 02:03:04"

    def test_negative_is_zero(self):
        assert format_duration(-5) == "00:00:00"


class TestFormatAge:
    """Tests for format_age (relative time in list views)."""

    def test_seconds(self):
        assert format_age(1000.0, now=1000.4) == "0.4s ago"

    def test_minutes(self):
        assert format_age(1000.0, now=1000.0 + 180) == "3m ago"

    def test_hours(self):
        assert format_age(1000.0, now=1000.0 + 7200) == "2h ago"

    def test_without_now(self):
        """Uses current time if now not provided."""
        result = format_age(time.time() - 5)
        assert result.endswith("s ago")
        assert 4 <= float(result[:-5]) <= 6


def test_format_count():
    assert format_count(0) == "0"
    assert format_count(1_234_567) == "1,234,567"


def test_format_clock():
    timestamp = time.mktime((2024, 1, 2, 13, 4, 5, 0, 0, -1))
    assert format_clock(timestamp) == "13:04:05"


class TestTruncateSignature:
    """Tests for truncate_signature."""

    def test_short_signature_unchanged(self):
        assert truncate_signature("abc", width=10) == "abc"

    def test_long_signature_keeps_head_and_tail(self):
        signature = "5" * 40 + "XYZ"
        result = truncate_signature(signature, width=12)
        assert len(result) == 12
        assert result.startswith("55555")
        assert result.endswith("XYZ")
        assert "..." in result
