"""Speaking timeline: value types, profile merging, segment store and event applier."""
from __future__ import annotations

from voice_timeline.timeline.models import (
    AnonymousSlot,
    ListenerSample,
    Participant,
    Profile,
    Segment,
)
from voice_timeline.timeline.profile import merge_profiles, sanitize_profile
from voice_timeline.timeline.segments import close, ensure_open, open_ids, sort_segments, trim
from voice_timeline.timeline.store import SegmentStore
from voice_timeline.timeline.listeners import ListenerHistory
from voice_timeline.timeline.applier import EventApplier, normalize_history_segment

__all__ = [
    "AnonymousSlot",
    "EventApplier",
    "ListenerHistory",
    "ListenerSample",
    "Participant",
    "Profile",
    "Segment",
    "SegmentStore",
    "close",
    "ensure_open",
    "merge_profiles",
    "normalize_history_segment",
    "open_ids",
    "sanitize_profile",
    "sort_segments",
    "trim",
]
