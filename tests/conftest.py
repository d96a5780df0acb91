"""Shared fixtures: fresh engine objects on a fixed clock."""
import pytest

from voice_timeline.timeline.applier import EventApplier
from voice_timeline.timeline.listeners import ListenerHistory
from voice_timeline.timeline.store import SegmentStore

NOW = 1_000_000_000


@pytest.fixture
def store():
    """Return an empty SegmentStore for each test."""
    return SegmentStore()


@pytest.fixture
def applier(store):
    """EventApplier whose clock is frozen at NOW; fallback segment length 2s."""
    return EventApplier(
        store=store,
        listener_history=ListenerHistory(),
        fallback_ms=2000,
        clock=lambda: NOW,
    )
