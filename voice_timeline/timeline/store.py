"""
SegmentStore: the single owner of the current speaking timeline.

Holds an immutable tuple snapshot. Writers build a new tuple with the pure
functions in segments.py and hand it to replace(); readers get the tuple and can
keep it as long as they like. Every replace() is published to subscribers.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from voice_timeline.timeline.models import Segment

logger = logging.getLogger(__name__)

SegmentsHandler = Callable[[tuple[Segment, ...]], None]


class SegmentStore:
    """Owned, replace-on-write segment collection with synchronous publish/subscribe."""

    def __init__(self, segments: Iterable[Segment] = ()) -> None:
        self._segments: tuple[Segment, ...] = tuple(segments)
        self._subscribers: list[SegmentsHandler] = []

    @property
    def snapshot(self) -> tuple[Segment, ...]:
        return self._segments

    def __len__(self) -> int:
        return len(self._segments)

    def replace(self, segments: Iterable[Segment]) -> tuple[Segment, ...]:
        """Swap in a new snapshot and publish it. Returns the stored tuple."""
        self._segments = tuple(segments)
        self._publish(self._segments)
        return self._segments

    def subscribe(self, handler: SegmentsHandler) -> Callable[[], None]:
        """Register handler for every new snapshot. Returns a callable that removes it."""
        self._subscribers.append(handler)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(handler)
            except ValueError:
                pass  # already removed

        return _unsubscribe

    def _publish(self, snapshot: tuple[Segment, ...]) -> None:
        for handler in list(self._subscribers):
            try:
                handler(snapshot)
            except Exception:
                logger.exception("Segment subscriber %r failed", handler)
