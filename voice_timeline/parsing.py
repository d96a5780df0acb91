"""
Lenient value parsing for transport payloads.

Every helper returns None for anything it cannot read; callers decide whether
that means "use now" or "drop the event".
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

# JSON numbers are unbounded; anything outside a 64-bit range is not a time or a count.
MAX_ABS_INT = 2**63


def _in_range(number: float) -> bool:
    return math.isfinite(number) and abs(number) < MAX_ABS_INT


def parse_number(value: Any) -> float | None:
    """Finite int/float, or a numeric string. bool, NaN/inf and values past 64 bits are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return float(value) if abs(value) < MAX_ABS_INT else None
    if isinstance(value, float):
        return value if _in_range(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if _in_range(number) else None
    return None


def parse_timestamp(value: Any) -> int | None:
    """
    Epoch milliseconds from a number, a numeric string, or an ISO-8601 string.

    Naive ISO strings are read as UTC.
    """
    number = parse_number(value)
    if number is not None:
        return int(number)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_count(value: Any) -> int | None:
    """Non-negative rounded integer, or None."""
    number = parse_number(value)
    if number is None:
        return None
    # Half rounds up, as the transport's own display does
    return max(0, int(math.floor(number + 0.5)))
