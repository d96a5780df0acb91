"""
ListenerHistory: current listener count and its long-retention sample history.

Fed by `listeners` events. The transport either appends a new sample
(`inserted=True`) or corrects the one it just sent (amend-last). The stored
history stays sorted, holds one sample per timestamp and is trimmed to
LISTENER_HISTORY_RETENTION_MS, independently of the segment retention window.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from voice_timeline.config import get_settings
from voice_timeline.parsing import parse_count
from voice_timeline.timeline.models import ListenerSample
from voice_timeline.timeline.normalize import normalize_listener_entry, normalize_listener_history
from voice_timeline.timeline.segments import unix_ms

logger = logging.getLogger(__name__)


def trim_listener_history(
    samples: Iterable[ListenerSample],
    now: int,
    retention_ms: int | None = None,
) -> tuple[ListenerSample, ...]:
    """Keep samples with timestamp >= now - retention."""
    if retention_ms is None:
        retention_ms = get_settings().LISTENER_HISTORY_RETENTION_MS
    cutoff = now - retention_ms
    return tuple(s for s in samples if s.timestamp >= cutoff)


def dedupe_listener_history(samples: Iterable[ListenerSample]) -> tuple[ListenerSample, ...]:
    """Sort by timestamp; for repeated timestamps the last written sample wins."""
    by_ts: dict[int, ListenerSample] = {}
    for sample in samples:
        by_ts[sample.timestamp] = sample
    return tuple(by_ts[ts] for ts in sorted(by_ts))


class ListenerHistory:
    """Current listener count plus its bounded, sorted history."""

    def __init__(self, retention_ms: int | None = None) -> None:
        self._retention_ms = (
            retention_ms if retention_ms is not None else get_settings().LISTENER_HISTORY_RETENTION_MS
        )
        self._count = 0
        self._history: tuple[ListenerSample, ...] = ()

    @property
    def count(self) -> int:
        return self._count

    @property
    def history(self) -> tuple[ListenerSample, ...]:
        return self._history

    def _store(self, samples: Iterable[ListenerSample], now: int) -> None:
        self._history = trim_listener_history(
            dedupe_listener_history(samples), now, self._retention_ms
        )

    def replace(self, history: Any, count: Any, now: int | None = None) -> None:
        """Reset from a full snapshot (`state.listeners`)."""
        now = unix_ms() if now is None else now
        self._count = parse_count(count) or 0
        self._store(normalize_listener_history(history), now)

    def record(
        self,
        entry: Any,
        count: Any = None,
        inserted: bool = False,
        now: int | None = None,
    ) -> ListenerSample | None:
        """
        Apply one update. inserted=True appends; otherwise the last sample is
        replaced (or the entry appended when history is empty).

        An unreadable entry leaves history untouched; the count still updates.
        Returns the stored sample, or None.
        """
        now = unix_ms() if now is None else now
        safe_count = parse_count(count)
        if safe_count is not None:
            self._count = safe_count

        sample = normalize_listener_entry(entry)
        if sample is None:
            logger.debug("Ignoring unreadable listener entry: %r", entry)
            self._store(self._history, now)
            return None

        if inserted or not self._history:
            samples = [*self._history, sample]
        else:
            samples = [*self._history[:-1], sample]
        self._store(samples, now)
        return sample
