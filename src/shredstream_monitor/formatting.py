"""Formatting utilities for consistent output across CLI and TUI."""

import time


def format_count(value: int) -> str:
    """Format a counter with thousands separators.

    Returns:
        e.g. "1,234,567"
    """
    return f"{value:,}"


def format_rate(per_second: float) -> str:
    """Format a per-second rate compactly.

    Returns:
        Formatted rate string:
        - Below 10: one decimal ("7.5")
        - Below 1000: whole number ("842")
        - Thousands and up: suffixed ("12.3K", "4.1M")
    """
    if per_second < 10:
        return f"{per_second:.1f}"
    if per_second < 1000:
        return f"{per_second:.0f}"
    if per_second < 1_000_000:
        return f"{per_second / 1000:.1f}K"
    return f"{per_second / 1_000_000:.1f}M"


def format_duration(seconds: float) -> str:
    """Format an elapsed duration as HH:MM:SS.

    Args:
        seconds: Duration in seconds; negative values are treated as 0

    Returns:
        e.g. "00:05:07", or "1d 02:03:04" past a day
    """
    total = int(max(0.0, seconds))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    clock = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{days}d {clock}" if days else clock


def format_age(timestamp: float, *, now: float | None = None) -> str:
    """Format how long ago a timestamp was, for list views.

    Returns:
        "0.4s ago" under a minute, "3m ago" under an hour, "2h ago" beyond.
    """
    if now is None:
        now = time.time()
    age = max(0.0, now - timestamp)
    if age < 60:
        return f"{age:.1f}s ago"
    if age < 3600:
        return f"{age / 60:.0f}m ago"
    return f"{age / 3600:.0f}h ago"


def format_clock(timestamp: float) -> str:
    """Format a timestamp as local wall-clock time (HH:MM:SS)."""
    return time.strftime("%H:%M:%S", time.localtime(timestamp))


def truncate_signature(signature: str, width: int = 24) -> str:
    """Shorten a transaction signature to ``head...tail`` if it exceeds width."""
    if len(signature) <= width or width < 5:
        return signature
    keep = width - 3
    head = (keep + 1) // 2
    tail = keep - head
    return f"{signature[:head]}...{signature[-tail:]}"
