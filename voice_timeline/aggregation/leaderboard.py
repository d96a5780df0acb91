"""
Rolling talk-time leaderboard.

Clips every segment to the trailing window [now - W, now], sums per participant
and ranks by duration. Profiles are merged in segment order so the most recent
non-empty identity wins. Ties keep segment-iteration order, which carries no meaning.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from voice_timeline.aggregation.formatting import format_duration, format_share
from voice_timeline.config import get_settings
from voice_timeline.timeline.models import Participant, Profile, Segment
from voice_timeline.timeline.profile import merge_profiles

MINUTE_MS = 60 * 1000


@dataclass
class LeaderboardItem:
    id: str
    label: str
    avatar: str | None
    duration: int
    share: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "avatar": self.avatar,
            "duration": self.duration,
            "durationLabel": format_duration(self.duration),
            "share": self.share,
        }


@dataclass
class Leaderboard:
    window_ms: int
    items: list[LeaderboardItem] = field(default_factory=list)
    total_duration: int = 0
    max_duration: int = 0

    @property
    def top(self) -> LeaderboardItem | None:
        return self.items[0] if self.items else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "windowMs": self.window_ms,
            "windowMinutes": self.window_ms // MINUTE_MS,
            "items": [
                {**item.to_dict(), "shareLabel": format_share(item.duration, self.total_duration)}
                for item in self.items
            ],
            "totalDuration": self.total_duration,
            "totalLabel": format_duration(self.total_duration) or "0s",
            "maxDuration": self.max_duration,
            "activeCount": len(self.items),
        }


def normalize_window_minutes(minutes: Any, options: list[int] | None = None) -> int:
    """Requested window if it is one of the options, else the configured default."""
    settings = get_settings()
    options = options if options is not None else settings.TALK_WINDOW_OPTIONS
    if minutes in options:
        return int(minutes)
    if settings.DEFAULT_WINDOW_MINUTES in options:
        return settings.DEFAULT_WINDOW_MINUTES
    return options[0]


def _covered_duration(spans: list[tuple[int, int]]) -> int:
    """Length of the union of [start, end) spans; a backfilled copy of a live turn counts once."""
    total = 0
    current_start: int | None = None
    current_end = 0
    for start, end in sorted(spans):
        if current_start is None or start > current_end:
            if current_start is not None:
                total += current_end - current_start
            current_start, current_end = start, end
        else:
            current_end = max(current_end, end)
    if current_start is not None:
        total += current_end - current_start
    return total


def build_talk_leaderboard(
    segments: Iterable[Segment],
    window_ms: int,
    now: int,
    roster: Mapping[str, Participant] | None = None,
) -> Leaderboard:
    cutoff = now - window_ms
    intervals: dict[str, list[tuple[int, int]]] = {}
    profiles: dict[str, Profile] = {}

    for segment in segments:
        end = segment.effective_end(now)
        if end <= cutoff:
            continue
        effective_start = max(segment.start, cutoff)
        effective_end = min(end, now)
        if effective_end <= effective_start:
            continue
        intervals.setdefault(segment.id, []).append((effective_start, effective_end))
        profiles[segment.id] = merge_profiles(profiles.get(segment.id), segment.profile)

    items: list[LeaderboardItem] = []
    for participant_id, spans in intervals.items():
        duration = _covered_duration(spans)
        profile = profiles[participant_id]
        known = roster.get(participant_id) if roster else None
        if known is not None:
            profile = merge_profiles(known.profile, profile)
        items.append(
            LeaderboardItem(
                id=participant_id,
                label=profile.label(participant_id),
                avatar=profile.avatar,
                duration=duration,
            )
        )

    items.sort(key=lambda item: item.duration, reverse=True)
    total = sum(item.duration for item in items)
    for item in items:
        item.share = max(0.0, min(1.0, item.duration / total)) if total > 0 else 0.0

    return Leaderboard(
        window_ms=window_ms,
        items=items,
        total_duration=total,
        max_duration=max((item.duration for item in items), default=0),
    )
