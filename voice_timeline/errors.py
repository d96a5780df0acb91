"""Exceptions raised inside the engine. None of them escape the event applier."""
from __future__ import annotations

from typing import Any


class TimelineError(Exception):
    """Base exception for timeline engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class MalformedEventError(TimelineError):
    """Inbound payload failed shape checks (missing id, non-numeric timestamp, ...)."""


class BackfillError(TimelineError):
    """History endpoint unreachable, returned non-2xx, or sent an unreadable body."""
