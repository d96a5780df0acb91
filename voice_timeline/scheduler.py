"""
ViewScheduler: the read-side clock.

A single periodic asyncio task advances "now" every VIEW_TICK_INTERVAL_MS,
recomputes the aggregated views from the applier's current snapshots and
publishes them to registered observers. It never writes to the SegmentStore;
the write side is driven only by transport events.

Callers that poll instead of subscribing use current_view(now), which is the
same pure computation.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Awaitable, Callable, Union

from voice_timeline.aggregation.hourly import DailyActivity, build_daily_activity
from voice_timeline.aggregation.leaderboard import (
    MINUTE_MS,
    Leaderboard,
    build_talk_leaderboard,
    normalize_window_minutes,
)
from voice_timeline.aggregation.listeners import ListenerChart, build_listener_chart
from voice_timeline.config import get_settings
from voice_timeline.timeline.applier import EventApplier
from voice_timeline.timeline.segments import unix_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineView:
    """Everything a live page renders for one tick."""

    now: int
    daily: DailyActivity
    leaderboard: Leaderboard
    listeners: ListenerChart
    listener_count: int
    speaking_ids: frozenset[str]
    last_update: int | None
    is_history_loading: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "now": self.now,
            "daily": self.daily.to_dict(),
            "leaderboard": self.leaderboard.to_dict(),
            "listeners": {**self.listeners.to_dict(), "count": self.listener_count},
            "speaking": sorted(self.speaking_ids),
            "lastUpdate": self.last_update,
            "historyLoading": self.is_history_loading,
        }


def build_view(
    applier: EventApplier,
    now: int,
    window_minutes: int,
    tz: tzinfo | str | None = None,
) -> TimelineView:
    """Pure projection of the applier's current snapshots at `now`."""
    segments = applier.segments
    listener_count = applier.listener_history.count
    return TimelineView(
        now=now,
        daily=build_daily_activity(segments, now, tz),
        leaderboard=build_talk_leaderboard(
            segments, window_minutes * MINUTE_MS, now, roster=applier.roster
        ),
        listeners=build_listener_chart(
            applier.listener_history.history, now, current_count=listener_count
        ),
        listener_count=listener_count,
        speaking_ids=applier.speaking_ids(),
        last_update=applier.last_update,
        is_history_loading=applier.is_history_loading,
    )


ViewObserver = Callable[[TimelineView], Union[Awaitable[None], None]]


class ViewScheduler:
    """
    Periodic recompute-and-publish loop.

    Usage
    -----
    >>> scheduler = ViewScheduler(applier)
    >>> unsub = scheduler.subscribe(on_view)
    >>> scheduler.start()
    >>> ...
    >>> await scheduler.stop()
    """

    def __init__(
        self,
        applier: EventApplier,
        interval_ms: int | None = None,
        window_minutes: int | None = None,
        tz: tzinfo | str | None = None,
        clock: Callable[[], int] = unix_ms,
    ) -> None:
        settings = get_settings()
        self._applier = applier
        self._interval_sec = (interval_ms if interval_ms is not None else settings.VIEW_TICK_INTERVAL_MS) / 1000.0
        self._window_minutes = normalize_window_minutes(window_minutes)
        self._tz = tz
        self._clock = clock
        self._observers: list[ViewObserver] = []
        self._task: asyncio.Task[None] | None = None
        self.last_view: TimelineView | None = None

    @property
    def window_minutes(self) -> int:
        return self._window_minutes

    def set_window(self, minutes: Any) -> int:
        """Select the leaderboard window; values outside the options fall back to the default."""
        self._window_minutes = normalize_window_minutes(minutes)
        return self._window_minutes

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, observer: ViewObserver) -> Callable[[], None]:
        """Register a sync or async observer. Returns a callable that removes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass  # already removed

        return _unsubscribe

    def current_view(self, now: int | None = None, window_minutes: int | None = None) -> TimelineView:
        now = self._clock() if now is None else now
        minutes = self._window_minutes if window_minutes is None else normalize_window_minutes(window_minutes)
        return build_view(self._applier, now, minutes, self._tz)

    async def tick(self, now: int | None = None) -> TimelineView:
        """Recompute once and publish to every observer. Observer failures are logged."""
        view = self.current_view(now)
        self.last_view = view
        await self._publish(view)
        return view

    async def _publish(self, view: TimelineView) -> None:
        observers = list(self._observers)
        if not observers:
            return
        results = await asyncio.gather(
            *(self._call(observer, view) for observer in observers),
            return_exceptions=True,
        )
        for observer, result in zip(observers, results):
            if isinstance(result, Exception):
                logger.error("View observer %r failed: %s", observer, result, exc_info=result)

    @staticmethod
    async def _call(observer: ViewObserver, view: TimelineView) -> None:
        result = observer(view)
        if inspect.isawaitable(result):
            await result

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("View tick failed")
            await asyncio.sleep(self._interval_sec)

    def start(self) -> None:
        """Start the periodic task on the running loop. No-op when already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
