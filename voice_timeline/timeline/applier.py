"""
EventApplier: turns transport events into SegmentStore updates.

Each participant moves through a two-state machine, NOT_SPEAKING -> SPEAKING ->
NOT_SPEAKING. Incremental `speaking` events drive single transitions; a `state`
snapshot is applied as a diff against the ids previously known to be speaking,
so reconnect drift is reconciled by rebuilding rather than patching.

Every mutation runs the same pipeline before publishing:

    trim(now) -> mutate -> trim(now) -> sort

History backfill goes through that pipeline too, so a backfill response and a
live event commute.

Malformed input is dropped and logged; no public method raises on bad payloads.
"""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from voice_timeline.config import get_settings
from voice_timeline.errors import MalformedEventError
from voice_timeline.schemas.events import HistorySegment, SpeakingEvent, StateEvent, UserPayload
from voice_timeline.timeline.listeners import ListenerHistory
from voice_timeline.timeline.models import AnonymousSlot, Participant, Segment
from voice_timeline.timeline.normalize import normalize_anonymous_slot
from voice_timeline.timeline.profile import merge_profiles, sanitize_profile
from voice_timeline.timeline.segments import (
    close,
    ensure_open,
    open_ids,
    sort_segments,
    trim,
    unix_ms,
)
from voice_timeline.timeline.store import SegmentStore

logger = logging.getLogger(__name__)

Mutation = Callable[[tuple[Segment, ...]], Iterable[Segment]]


def _validate(model: type[BaseModel], payload: Any, kind: str) -> Any:
    if not isinstance(payload, Mapping):
        raise MalformedEventError(f"{kind} payload is not an object", {"payload": payload})
    try:
        return model.model_validate(dict(payload))
    except ValidationError as e:
        raise MalformedEventError(f"{kind} payload failed validation", {"errors": e.errors()}) from e


def _participant_from(user: UserPayload) -> Participant:
    return Participant(
        id=user.id or "",
        is_speaking=user.is_speaking,
        started_at=user.started_at,
        last_spoke_at=user.last_spoke_at,
        profile=sanitize_profile(user.profile_fields()),
        voice_state=user.voice_state or {},
    )


def normalize_history_segment(raw: Any) -> Segment | None:
    """One backfill row -> closed Segment, or None when it has no id, no start, or no positive span."""
    if not isinstance(raw, Mapping):
        return None
    try:
        row = HistorySegment.model_validate(dict(raw))
    except ValidationError:
        return None
    if not row.user_id or row.started_at is None:
        return None
    end = row.resolved_end()
    if end is None or end <= row.started_at:
        return None
    return Segment(
        id=row.user_id,
        start=row.started_at,
        end=end,
        profile=sanitize_profile(row.profile),
    )


class EventApplier:
    """
    Owns the roster and feeds the SegmentStore and ListenerHistory.

    `now` arguments default to the wall clock; tests pass them explicitly.
    """

    def __init__(
        self,
        store: SegmentStore | None = None,
        listener_history: ListenerHistory | None = None,
        retention_ms: int | None = None,
        fallback_ms: int | None = None,
        clock: Callable[[], int] = unix_ms,
    ) -> None:
        settings = get_settings()
        self.store = store if store is not None else SegmentStore()
        self.listener_history = listener_history if listener_history is not None else ListenerHistory()
        self._retention_ms = retention_ms if retention_ms is not None else settings.RETENTION_WINDOW_MS
        self._fallback_ms = fallback_ms if fallback_ms is not None else settings.FALLBACK_SEGMENT_DURATION_MS
        self._clock = clock
        self._roster: Mapping[str, Participant] = MappingProxyType({})
        self.anonymous_slot = AnonymousSlot()
        self.last_update: int | None = None
        self.is_history_loading = True

    @property
    def roster(self) -> Mapping[str, Participant]:
        """Read-only view of the last known participants; replaced, never mutated."""
        return self._roster

    @property
    def segments(self) -> tuple[Segment, ...]:
        return self.store.snapshot

    def speaking_ids(self) -> frozenset[str]:
        return frozenset(pid for pid, p in self._roster.items() if p.is_speaking)

    def _now(self, now: int | None) -> int:
        return self._clock() if now is None else now

    def _commit(self, now: int, mutate: Mutation) -> tuple[Segment, ...]:
        segments = trim(self.store.snapshot, now, self._retention_ms)
        segments = tuple(mutate(segments))
        return self.store.replace(sort_segments(trim(segments, now, self._retention_ms)))

    def _set_roster(self, roster: dict[str, Participant]) -> None:
        self._roster = MappingProxyType(roster)

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    def apply_state(self, payload: Any, now: int | None = None) -> bool:
        """Apply a full snapshot. Returns False when the payload was dropped."""
        now = self._now(now)
        try:
            event: StateEvent = _validate(StateEvent, payload, "state")
        except MalformedEventError as e:
            logger.warning("Dropping state event: %s", e.message)
            return False

        if event.listeners is not None:
            self.listener_history.replace(
                event.listeners.get("history"), event.listeners.get("count"), now=now
            )

        if event.speakers is not None:
            self._reconcile(event.speakers, now)

        if "anonymousSlot" in payload:
            self.anonymous_slot = normalize_anonymous_slot(event.anonymous_slot)
        return True

    def _reconcile(self, speakers: list[Any], now: int) -> None:
        previous = self._roster
        roster: dict[str, Participant] = {}
        for raw in speakers:
            try:
                user: UserPayload = _validate(UserPayload, raw, "state speaker")
            except MalformedEventError as e:
                logger.warning("Skipping snapshot speaker: %s", e.message)
                continue
            if not user.id:
                continue
            roster[user.id] = _participant_from(user)

        speaking = {pid: p for pid, p in roster.items() if p.is_speaking}

        def mutate(segments: tuple[Segment, ...]) -> tuple[Segment, ...]:
            # SPEAKING before this snapshot: roster ids plus anything still open in the store
            was_speaking = {pid for pid, p in previous.items() if p.is_speaking} | open_ids(segments)
            for pid in sorted(was_speaking - set(speaking)):
                known = previous.get(pid) or roster.get(pid)
                segments = close(segments, pid, now, known.profile if known else None)
            for pid, participant in speaking.items():
                start = participant.started_at if participant.started_at is not None else now
                segments = ensure_open(segments, pid, start, participant.profile)
            return segments

        self._commit(now, mutate)
        self._set_roster(roster)
        self.is_history_loading = False
        self.last_update = now

    # ------------------------------------------------------------------
    # speaking
    # ------------------------------------------------------------------

    def apply_speaking(self, payload: Any, now: int | None = None) -> bool:
        """Apply one start/end event. Returns False when the payload was dropped."""
        now = self._now(now)
        try:
            event: SpeakingEvent = _validate(SpeakingEvent, payload, "speaking")
        except MalformedEventError as e:
            logger.warning("Dropping speaking event: %s", e.message)
            return False

        participant_id = event.target_id
        if not participant_id or (event.type == "start" and (event.user is None or not event.user.id)):
            logger.warning("Dropping speaking %s event without participant id", event.type)
            return False

        if event.type == "start":
            self._on_start(participant_id, event.user, now)
        else:
            self._on_end(participant_id, event.user, now)
        self.is_history_loading = False
        self.last_update = now
        return True

    def _on_start(self, participant_id: str, user: UserPayload, now: int) -> None:
        start = user.started_at if user.started_at is not None else now
        profile = user.profile_fields()

        roster = dict(self._roster)
        existing = roster.get(participant_id) or Participant(id=participant_id)
        roster[participant_id] = replace(
            existing,
            is_speaking=True,
            started_at=start,
            profile=merge_profiles(existing.profile, profile),
            voice_state=user.voice_state if user.voice_state is not None else existing.voice_state,
        )
        self._set_roster(roster)
        self._commit(now, lambda segments: ensure_open(segments, participant_id, start, profile))

    def _on_end(self, participant_id: str, user: UserPayload | None, now: int) -> None:
        last_spoke = user.last_spoke_at if user is not None else None
        end = last_spoke if last_spoke is not None else now
        profile = user.profile_fields() if user is not None else None

        existing = self._roster.get(participant_id)
        if existing is not None:
            roster = dict(self._roster)
            roster[participant_id] = replace(
                existing,
                is_speaking=False,
                last_spoke_at=end,
                profile=merge_profiles(existing.profile, profile),
                voice_state=(
                    user.voice_state
                    if user is not None and user.voice_state is not None
                    else existing.voice_state
                ),
            )
            self._set_roster(roster)
        # An end without a known start is valid: the turn may predate this client.
        self._commit(
            now,
            lambda segments: close(
                segments,
                participant_id,
                end,
                profile,
                create_if_missing=True,
                fallback_ms=self._fallback_ms,
            ),
        )

    # ------------------------------------------------------------------
    # listeners / anonymous slot
    # ------------------------------------------------------------------

    def apply_listeners(self, payload: Any, now: int | None = None) -> bool:
        now = self._now(now)
        if not isinstance(payload, Mapping):
            logger.warning("Dropping listeners event: payload is not an object")
            return False
        entry = payload.get("entry") or {
            "timestamp": payload.get("timestamp"),
            "count": payload.get("count"),
        }
        self.listener_history.record(
            entry,
            count=payload.get("count"),
            inserted=bool(payload.get("inserted")),
            now=now,
        )
        return True

    def apply_anonymous_slot(self, payload: Any, now: int | None = None) -> bool:
        self.anonymous_slot = normalize_anonymous_slot(payload)
        return True

    # ------------------------------------------------------------------
    # backfill
    # ------------------------------------------------------------------

    def apply_backfill(self, raw_segments: Any, now: int | None = None) -> int:
        """
        Merge history rows into the store. Rows already present (same id, start
        and end) are skipped so a repeated backfill is a no-op. Returns the number
        of new segments that survived retention trimming.
        """
        now = self._now(now)
        if not isinstance(raw_segments, (list, tuple)):
            logger.warning("Dropping backfill: segments is not a list")
            return 0
        normalized = [s for s in (normalize_history_segment(r) for r in raw_segments) if s is not None]
        skipped = len(raw_segments) - len(normalized)
        if skipped:
            logger.debug("Backfill: skipped %d unreadable rows", skipped)
        if not normalized:
            return 0

        new_keys: set[tuple[str, int, int | None]] = set()

        def mutate(segments: tuple[Segment, ...]) -> list[Segment]:
            known = {(s.id, s.start, s.end) for s in segments}
            merged = list(segments)
            for segment in normalized:
                key = (segment.id, segment.start, segment.end)
                if key in known:
                    continue
                known.add(key)
                new_keys.add(key)
                merged.append(segment)
            return merged

        committed = self._commit(now, mutate)
        # Rows older than the retention window are trimmed again on commit
        return sum(1 for s in committed if (s.id, s.start, s.end) in new_keys)

    # ------------------------------------------------------------------
    # routing
    # ------------------------------------------------------------------

    def dispatch(self, event_name: str, payload: Any, now: int | None = None) -> bool:
        """Route a transport event by name. Unknown names are logged and ignored."""
        handlers: dict[str, Callable[[Any, int | None], bool]] = {
            "state": self.apply_state,
            "speaking": self.apply_speaking,
            "listeners": self.apply_listeners,
            "anonymous-slot": self.apply_anonymous_slot,
        }
        handler = handlers.get(event_name)
        if handler is None:
            logger.warning("Ignoring unknown event %r", event_name)
            return False
        return handler(payload, now)

    def dispatch_json(self, event_name: str, data: str | bytes, now: int | None = None) -> bool:
        """dispatch() for a raw JSON body as framed by the transport."""
        try:
            payload = json.loads(data)
        except (TypeError, ValueError, RecursionError) as e:
            logger.warning("%s event parse error: %s", event_name, type(e).__name__)
            return False
        return self.dispatch(event_name, payload, now)
