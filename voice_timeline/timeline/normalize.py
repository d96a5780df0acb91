"""Normalization of listener samples and the anonymous slot from transport payloads."""
from __future__ import annotations

from typing import Any, Mapping

from voice_timeline.parsing import parse_count, parse_number
from voice_timeline.timeline.models import AnonymousSlot, ListenerSample


def normalize_listener_entry(raw: Any) -> ListenerSample | None:
    """{timestamp|time|ts, count} -> ListenerSample, or None when either is unreadable."""
    if not isinstance(raw, Mapping):
        return None
    ts_raw = raw.get("timestamp")
    if ts_raw is None:
        ts_raw = raw.get("time", raw.get("ts"))
    timestamp = parse_number(ts_raw)
    count = parse_count(raw.get("count"))
    if timestamp is None or count is None:
        return None
    return ListenerSample(timestamp=int(timestamp), count=count)


def normalize_listener_history(history: Any) -> list[ListenerSample]:
    """Readable entries only, sorted by timestamp (stable)."""
    if not isinstance(history, (list, tuple)):
        return []
    entries = [e for e in (normalize_listener_entry(item) for item in history) if e is not None]
    entries.sort(key=lambda e: e.timestamp)
    return entries


def normalize_anonymous_slot(raw: Any) -> AnonymousSlot:
    if not isinstance(raw, Mapping):
        return AnonymousSlot()

    def _text(key: str) -> str | None:
        value = raw.get(key)
        return value if isinstance(value, str) and value else None

    def _ms(key: str) -> int | None:
        number = parse_number(raw.get(key))
        return None if number is None else int(number)

    return AnonymousSlot(
        occupied=bool(raw.get("occupied")),
        alias=_text("alias"),
        claimed_at=_ms("claimedAt"),
        expires_at=_ms("expiresAt"),
        remaining_ms=_ms("remainingMs"),
        connection_pending=bool(raw.get("connectionPending")),
        message=_text("message"),
    )
