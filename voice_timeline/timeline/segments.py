"""
Segment store operations.

Every function takes a sequence of segments and returns a new tuple; inputs are
never mutated. They are meant to be chained on each event:

    trim -> ensure_open / close -> trim -> sort_segments

which keeps the collection small and ordered without an index. Expected size is
tens of concurrent speakers and one bounded day of history, so linear scans are fine.

Invariants kept by ensure_open/close:
- at most one open segment (end is None) per participant id;
- a closed segment always has end >= start.
"""
from __future__ import annotations

import math
import time
from dataclasses import replace
from typing import Any, Iterable, Mapping, Sequence

from voice_timeline.config import get_settings
from voice_timeline.parsing import MAX_ABS_INT
from voice_timeline.timeline.models import Profile, Segment
from voice_timeline.timeline.profile import merge_profiles, sanitize_profile


def unix_ms() -> int:
    return int(time.time() * 1000)


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are finite and fit in 64 bits. bool is rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, int):
        return abs(value) < MAX_ABS_INT
    return math.isfinite(value) and abs(value) < MAX_ABS_INT


def ensure_open(
    segments: Sequence[Segment],
    participant_id: str,
    start_time: Any,
    profile: Profile | Mapping[str, Any] | None = None,
) -> tuple[Segment, ...]:
    """
    Open a segment for participant_id, or widen the one already open.

    A duplicate start (replay after reconnect, snapshot after an incremental start)
    keeps the earliest known start instead of creating a second interval.
    """
    safe_start = int(start_time) if is_finite_number(start_time) else unix_ms()
    incoming = sanitize_profile(profile)
    found = False
    out: list[Segment] = []
    for segment in segments:
        if not found and segment.id == participant_id and segment.is_open:
            found = True
            segment = replace(
                segment,
                start=min(segment.start, safe_start),
                profile=merge_profiles(segment.profile, incoming),
            )
        out.append(segment)
    if not found:
        out.append(Segment(id=participant_id, start=safe_start, end=None, profile=incoming))
    return tuple(out)


def close(
    segments: Sequence[Segment],
    participant_id: str,
    end_time: Any,
    profile: Profile | Mapping[str, Any] | None = None,
    create_if_missing: bool = False,
    fallback_ms: int | None = None,
) -> tuple[Segment, ...]:
    """
    Close participant_id's open segment at max(end_time, start).

    Without an open segment: when create_if_missing, synthesize
    [max(0, end_time - fallback_ms), end_time] (the start was missed, e.g. before
    this client connected); otherwise the call is a no-op.
    """
    safe_end = int(end_time) if is_finite_number(end_time) else unix_ms()
    incoming = sanitize_profile(profile)
    closed = False
    out: list[Segment] = []
    for segment in segments:
        if not closed and segment.id == participant_id and segment.is_open:
            closed = True
            # Late events with clock skew may end before start: clamp, never reject.
            segment = replace(
                segment,
                end=max(safe_end, segment.start),
                profile=merge_profiles(segment.profile, incoming),
            )
        out.append(segment)

    if not closed and create_if_missing:
        if fallback_ms is None:
            fallback_ms = get_settings().FALLBACK_SEGMENT_DURATION_MS
        fallback_start = max(0, safe_end - fallback_ms)
        out.append(
            Segment(
                id=participant_id,
                start=min(fallback_start, safe_end),
                end=safe_end,
                profile=incoming,
            )
        )
    return tuple(out)


def trim(
    segments: Iterable[Segment],
    now: int,
    retention_ms: int | None = None,
) -> tuple[Segment, ...]:
    """Drop segments whose effective end (end, or now while open) is older than now - retention."""
    if retention_ms is None:
        retention_ms = get_settings().RETENTION_WINDOW_MS
    threshold = now - retention_ms
    return tuple(s for s in segments if s.effective_end(now) >= threshold)


def sort_segments(segments: Iterable[Segment]) -> tuple[Segment, ...]:
    """Stable sort ascending by start."""
    return tuple(sorted(segments, key=lambda s: s.start))


def open_ids(segments: Iterable[Segment]) -> frozenset[str]:
    """Ids that currently have an open segment."""
    return frozenset(s.id for s in segments if s.is_open)
