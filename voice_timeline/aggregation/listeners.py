"""
Listener trend line.

build_listener_chart() maps listener samples to chart geometry for a short
display window (default 6h). When that window is empty (connectivity gap) it
falls back to the most recent samples so the chart is never blank while any
history exists. Pure: no state beyond its arguments.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

from voice_timeline.config import get_settings
from voice_timeline.timeline.models import ListenerSample


@dataclass(frozen=True)
class ChartPoint:
    x: int
    y: int
    timestamp: int
    count: int

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "timestamp": self.timestamp, "count": self.count}


@dataclass(frozen=True)
class ListenerChart:
    """Trend line geometry in a top-down coordinate system (higher count -> smaller y)."""

    points: list[ChartPoint] = field(default_factory=list)
    width: int = 800
    height: int = 220
    min_count: int = 0
    max_count: int = 0
    average: float = 0.0
    start: int = 0
    end: int = 0
    first_entry: ListenerSample | None = None
    last_entry: ListenerSample | None = None

    @property
    def polyline(self) -> str:
        return " ".join(f"{p.x},{p.y}" for p in self.points)

    @property
    def area_path(self) -> str:
        if not self.points:
            return ""
        parts = [f"M 0 {self.height}"]
        parts.extend(f"L {p.x} {p.y}" for p in self.points)
        parts.append(f"L {self.width} {self.height}")
        parts.append("Z")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "points": [p.to_dict() for p in self.points],
            "polyline": self.polyline,
            "areaPath": self.area_path,
            "width": self.width,
            "height": self.height,
            "minCount": self.min_count,
            "maxCount": self.max_count,
            "average": self.average,
            "start": self.start,
            "end": self.end,
            "firstEntry": self.first_entry.to_dict() if self.first_entry else None,
            "lastEntry": self.last_entry.to_dict() if self.last_entry else None,
        }


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5).astype(np.int64)


def select_display_window(
    samples: Sequence[ListenerSample],
    now: int,
    window_ms: int,
    fallback_samples: int,
) -> list[ListenerSample]:
    """Samples with timestamp >= now - window; the last `fallback_samples` when none qualify."""
    ordered = sorted(samples, key=lambda s: s.timestamp)
    cutoff = now - window_ms
    selected = [s for s in ordered if s.timestamp >= cutoff]
    if not selected and ordered:
        selected = ordered[-min(fallback_samples, len(ordered)):]
    return selected


def build_listener_chart(
    samples: Sequence[ListenerSample],
    now: int,
    current_count: int = 0,
    window_ms: int | None = None,
    fallback_samples: int | None = None,
    width: int | None = None,
    height: int | None = None,
) -> ListenerChart:
    settings = get_settings()
    window_ms = settings.LISTENER_DISPLAY_WINDOW_MS if window_ms is None else window_ms
    fallback_samples = settings.LISTENER_FALLBACK_SAMPLES if fallback_samples is None else fallback_samples
    width = settings.LISTENER_CHART_WIDTH if width is None else width
    height = settings.LISTENER_CHART_HEIGHT if height is None else height

    selected = select_display_window(samples, now, window_ms, fallback_samples)
    if not selected:
        return ListenerChart(
            width=width,
            height=height,
            min_count=current_count,
            max_count=current_count,
            average=float(current_count),
            start=now,
            end=now,
        )

    # A line needs two points.
    if len(selected) == 1:
        only = selected[0]
        selected = [only, ListenerSample(timestamp=only.timestamp + 1, count=only.count)]

    timestamps = np.array([s.timestamp for s in selected], dtype=np.int64)
    counts = np.array([s.count for s in selected], dtype=np.float64)
    first_ts = int(timestamps[0])
    span = int(timestamps[-1]) - first_ts
    max_count = int(counts.max())

    if span > 0:
        ratios = (timestamps - first_ts) / span
    else:
        ratios = np.arange(len(selected), dtype=np.float64) / (len(selected) - 1)
    xs = _round_half_up(ratios * width)
    if max_count > 0:
        ys = _round_half_up(height - (counts / max_count) * height)
    else:
        ys = np.full(len(selected), height, dtype=np.int64)

    points = [
        ChartPoint(x=int(x), y=int(y), timestamp=s.timestamp, count=s.count)
        for x, y, s in zip(xs, ys, selected)
    ]
    return ListenerChart(
        points=points,
        width=width,
        height=height,
        min_count=int(counts.min()),
        max_count=max_count,
        average=float(counts.mean()),
        start=selected[0].timestamp,
        end=selected[-1].timestamp,
        first_entry=selected[0],
        last_entry=selected[-1],
    )
