"""
Profile merging.

Partial updates (e.g. an "end" event with no avatar) must never erase identity
fields learned earlier, so merging is right-biased per field: the incoming value
wins only when it is a non-empty string.
"""
from __future__ import annotations

from typing import Any, Mapping

from voice_timeline.timeline.models import EMPTY_PROFILE, Profile

# Transport payloads use camelCase; internal callers may pass snake_case.
_FIELD_KEYS = {
    "display_name": ("displayName", "display_name"),
    "username": ("username",),
    "avatar": ("avatar",),
}


def _clean(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        if value:
            return value
    return None


def sanitize_profile(raw: Profile | Mapping[str, Any] | None) -> Profile:
    """Normalize a Profile, a payload mapping or None to a Profile. Never raises."""
    if isinstance(raw, Profile):
        return Profile(
            display_name=_clean(raw.display_name),
            username=_clean(raw.username),
            avatar=_clean(raw.avatar),
        )
    if not isinstance(raw, Mapping):
        return EMPTY_PROFILE
    values: dict[str, str | None] = {}
    for attr, keys in _FIELD_KEYS.items():
        values[attr] = None
        for key in keys:
            cleaned = _clean(raw.get(key))
            if cleaned is not None:
                values[attr] = cleaned
                break
    return Profile(**values)


def merge_profiles(
    base: Profile | Mapping[str, Any] | None,
    incoming: Profile | Mapping[str, Any] | None,
) -> Profile:
    """Field-wise merge: incoming if non-empty, else base, else None."""
    new = sanitize_profile(incoming)
    old = sanitize_profile(base)
    return Profile(
        display_name=new.display_name or old.display_name,
        username=new.username or old.username,
        avatar=new.avatar or old.avatar,
    )
