"""Human-readable labels for durations and shares."""
from __future__ import annotations


def format_duration(ms: float | None) -> str:
    """
    45_000 -> "45s", 125_000 -> "2m 05s", 3_900_000 -> "1h 5m".
    Zero, None or NaN -> "" (callers show their own placeholder).
    """
    if not ms or ms != ms:
        return ""
    total_seconds = max(0, int(ms / 1000 + 0.5))
    minutes, seconds = divmod(total_seconds, 60)
    if minutes == 0:
        return f"{seconds}s"
    if minutes >= 60:
        hours, rem_minutes = divmod(minutes, 60)
        return f"{hours}h {rem_minutes}m"
    return f"{minutes}m {seconds:02d}s"


def format_share(value: float, total: float) -> str:
    """Percentage of total, clamped to 0-100, e.g. "42%"."""
    if not total or total <= 0:
        return "0%"
    ratio = max(0.0, min(1.0, value / total))
    return f"{int(ratio * 100 + 0.5)}%"
