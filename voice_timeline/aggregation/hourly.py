"""
Daily talk-time histogram.

Projects segments onto 24 one-hour bins covering local midnight to midnight of
`now`'s day. Open segments count up to `now`. Each segment is clipped to the day,
then to each bin's half-open range [start, end), so time on a bin boundary is
counted exactly once.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from voice_timeline.aggregation.formatting import format_duration
from voice_timeline.config import get_settings
from voice_timeline.timeline.models import Segment


@dataclass
class HourlyBin:
    index: int
    start: int
    end: int
    duration: int = 0
    label: str = ""
    is_current: bool = False
    is_past: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
            "durationLabel": format_duration(self.duration) or "0s",
            "label": self.label,
            "isCurrent": self.is_current,
            "isPast": self.is_past,
        }


@dataclass
class DailyActivity:
    day_start: int
    day_end: int
    bins: list[HourlyBin] = field(default_factory=list)
    total_duration: int = 0
    max_duration: int = 0
    peak_bin: HourlyBin | None = None

    @property
    def has_data(self) -> bool:
        return self.max_duration > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dayStart": self.day_start,
            "dayEnd": self.day_end,
            "bins": [b.to_dict() for b in self.bins],
            "totalDuration": self.total_duration,
            "totalLabel": format_duration(self.total_duration) or "0s",
            "maxDuration": self.max_duration,
            "peakBin": self.peak_bin.index if self.peak_bin else None,
            "hasData": self.has_data,
        }


def resolve_timezone(tz: tzinfo | str | None = None) -> tzinfo | None:
    """
    tzinfo, IANA name, or None (TIMEZONE setting). None means the machine's local
    zone, whose offset is looked up per timestamp so DST changes are honoured.
    """
    if isinstance(tz, tzinfo):
        return tz
    name = tz if tz is not None else get_settings().TIMEZONE
    if name:
        return ZoneInfo(name)
    return None


def _local_datetime(ms: int, zone: tzinfo | None) -> datetime:
    # Naive local time when zone is None; timestamp() maps it back with the right offset
    if zone is None:
        return datetime.fromtimestamp(ms / 1000)
    return datetime.fromtimestamp(ms / 1000, zone)


def local_day_start(now: int, tz: tzinfo | str | None = None) -> int:
    """Epoch ms of midnight, in tz, of the day containing now."""
    zone = resolve_timezone(tz)
    moment = _local_datetime(now, zone)
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def build_daily_activity(
    segments: Iterable[Segment],
    now: int,
    tz: tzinfo | str | None = None,
) -> DailyActivity:
    settings = get_settings()
    zone = resolve_timezone(tz)
    hour_ms = settings.HOUR_MS
    day_start = local_day_start(now, zone)
    day_end = day_start + settings.HOURS_IN_DAY * hour_ms

    bins = [
        HourlyBin(index=i, start=day_start + i * hour_ms, end=day_start + (i + 1) * hour_ms)
        for i in range(settings.HOURS_IN_DAY)
    ]

    for segment in segments:
        raw_start = segment.start
        safe_end = max(segment.effective_end(now), raw_start)
        start = max(raw_start, day_start)
        end = min(safe_end, day_end)
        if end <= start:
            continue
        for b in bins:
            if b.start >= end:
                break
            if b.end <= start:
                continue
            overlap = min(end, b.end) - max(start, b.start)
            if overlap > 0:
                b.duration += overlap

    peak: HourlyBin | None = None
    for b in bins:
        b.label = f"{_local_datetime(b.start, zone).hour:02d}h"
        b.is_current = b.start <= now < b.end
        b.is_past = now >= b.end
        if b.duration > 0 and (peak is None or b.duration > peak.duration):
            peak = b

    return DailyActivity(
        day_start=day_start,
        day_end=day_end,
        bins=bins,
        total_duration=sum(b.duration for b in bins),
        max_duration=max((b.duration for b in bins), default=0),
        peak_bin=peak,
    )
