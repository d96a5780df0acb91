"""Pydantic schemas for inbound transport events and history backfill rows."""
from voice_timeline.schemas.events import (
    HistorySegment,
    SpeakingEvent,
    StateEvent,
    UserPayload,
)

__all__ = [
    "HistorySegment",
    "SpeakingEvent",
    "StateEvent",
    "UserPayload",
]
