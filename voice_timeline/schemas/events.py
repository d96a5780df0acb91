"""
Schemas for inbound transport events and history backfill rows.

Shape checks only: identity fields stay raw (sanitized later by the profile
merger) and timestamps that are absent or unreadable become None so the applier
can fall back to "now". A ValidationError means the event is malformed and is dropped.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from voice_timeline.parsing import parse_number, parse_timestamp


def _coerce_id(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("id must be a string or number")
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError("id must be a string or number")
    value = value.strip()
    return value or None


class UserPayload(BaseModel):
    """One participant as sent in `state.speakers[]` and `speaking.user`."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = Field(None, description="Participant id; entries without one are skipped")
    is_speaking: bool = Field(False, alias="isSpeaking")
    started_at: int | None = Field(None, alias="startedAt", description="Epoch ms the current turn began")
    last_spoke_at: int | None = Field(None, alias="lastSpokeAt", description="Epoch ms the last turn ended")
    voice_state: dict[str, Any] | None = Field(None, alias="voiceState")
    display_name: Any = Field(None, alias="displayName")
    username: Any = None
    avatar: Any = None

    @field_validator("id", mode="before")
    @classmethod
    def _validate_id(cls, v: Any) -> str | None:
        return _coerce_id(v)

    @field_validator("is_speaking", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("started_at", "last_spoke_at", mode="before")
    @classmethod
    def _timestamp(cls, v: Any) -> int | None:
        # Transport sends epoch ms numbers; anything else means "unknown".
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return parse_timestamp(v)

    @field_validator("voice_state", mode="before")
    @classmethod
    def _voice_state(cls, v: Any) -> dict[str, Any] | None:
        return v if isinstance(v, dict) else None

    def profile_fields(self) -> dict[str, Any]:
        return {"displayName": self.display_name, "username": self.username, "avatar": self.avatar}


class SpeakingEvent(BaseModel):
    """`speaking` event: a participant started or stopped talking."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: Literal["start", "end"]
    user: UserPayload | None = None
    user_id: str | None = Field(None, alias="userId")

    @field_validator("user_id", mode="before")
    @classmethod
    def _validate_user_id(cls, v: Any) -> str | None:
        return _coerce_id(v)

    @field_validator("user", mode="before")
    @classmethod
    def _validate_user(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @property
    def target_id(self) -> str | None:
        if self.user is not None and self.user.id:
            return self.user.id
        return self.user_id


class StateEvent(BaseModel):
    """`state` event: authoritative full roster, optionally with listener stats."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    speakers: list[Any] | None = None
    listeners: dict[str, Any] | None = None
    anonymous_slot: Any = Field(None, alias="anonymousSlot")

    @field_validator("speakers", mode="before")
    @classmethod
    def _speakers(cls, v: Any) -> list[Any] | None:
        return v if isinstance(v, list) else None

    @field_validator("listeners", mode="before")
    @classmethod
    def _listeners(cls, v: Any) -> dict[str, Any] | None:
        return v if isinstance(v, dict) else None


class HistorySegment(BaseModel):
    """One row of `GET /history`. Millisecond fields take precedence over ISO ones."""

    model_config = ConfigDict(extra="ignore")

    user_id: str | None = None
    started_at: int | None = Field(None, validation_alias=AliasChoices("startedAtMs", "startedAt"))
    ended_at: int | None = Field(None, validation_alias=AliasChoices("endedAtMs", "endedAt"))
    duration_ms: int | None = Field(None, validation_alias="durationMs")
    profile: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _pick_user_id(cls, data: Any) -> Any:
        # A blank or non-string userId falls back to id
        if isinstance(data, dict):
            user_id = data.get("userId")
            if not (isinstance(user_id, str) and user_id.strip()):
                user_id = data.get("id")
            data = {**data, "user_id": user_id}
        return data

    @field_validator("user_id", mode="before")
    @classmethod
    def _validate_user_id(cls, v: Any) -> str | None:
        return _coerce_id(v)

    @field_validator("started_at", "ended_at", mode="before")
    @classmethod
    def _timestamp(cls, v: Any) -> int | None:
        return parse_timestamp(v)

    @field_validator("duration_ms", mode="before")
    @classmethod
    def _duration(cls, v: Any) -> int | None:
        number = parse_number(v)
        return None if number is None else max(int(number), 0)

    @field_validator("profile", mode="before")
    @classmethod
    def _profile(cls, v: Any) -> dict[str, Any] | None:
        return v if isinstance(v, dict) else None

    def resolved_end(self) -> int | None:
        """endedAt, else startedAt + durationMs, else None."""
        if self.ended_at is not None:
            return self.ended_at
        if self.started_at is not None and self.duration_ms is not None:
            return self.started_at + self.duration_ms
        return None
