"""
Value types of the speaking timeline.

All types are frozen: the store replaces a Segment (dataclasses.replace) instead
of mutating it, so a snapshot handed to a consumer never changes under it.

Times are integer epoch milliseconds. Segment.end is None while the participant
is still speaking ("open" segment).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Fallback label prefix for participants without a display name or username.
SPEAKER_PREFIX = "Speaker "


@dataclass(frozen=True)
class Profile:
    """Display identity of a participant. Every field is a stripped non-empty string or None."""

    display_name: str | None = None
    username: str | None = None
    avatar: str | None = None

    def label(self, participant_id: str) -> str:
        """Display name, else username, else "Speaker 0042" built from the id's last 4 chars."""
        if self.display_name:
            return self.display_name
        if self.username:
            return self.username
        return f"{SPEAKER_PREFIX}{str(participant_id)[-4:].rjust(4, '0')}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "username": self.username,
            "avatar": self.avatar,
        }


EMPTY_PROFILE = Profile()


@dataclass(frozen=True)
class Segment:
    """One continuous speaking interval for one participant."""

    id: str
    start: int
    end: int | None = None
    profile: Profile = EMPTY_PROFILE

    @property
    def is_open(self) -> bool:
        return self.end is None

    def effective_end(self, now: int) -> int:
        """End time, or `now` while still open."""
        return now if self.end is None else self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "profile": self.profile.to_dict(),
        }


@dataclass(frozen=True)
class Participant:
    """Roster entry as last reported by the transport."""

    id: str
    is_speaking: bool = False
    started_at: int | None = None
    last_spoke_at: int | None = None
    profile: Profile = EMPTY_PROFILE
    voice_state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ListenerSample:
    """Listener count at a point in time. count is a non-negative integer."""

    timestamp: int
    count: int

    def to_dict(self) -> dict[str, int]:
        return {"timestamp": self.timestamp, "count": self.count}


@dataclass(frozen=True)
class AnonymousSlot:
    """State of the anonymous speaking slot, passed through from snapshots."""

    occupied: bool = False
    alias: str | None = None
    claimed_at: int | None = None
    expires_at: int | None = None
    remaining_ms: int | None = None
    connection_pending: bool = False
    message: str | None = None
