"""Tests for the EventApplier: snapshots, incremental events, backfill and routing."""
import json

from voice_timeline.timeline.applier import EventApplier, normalize_history_segment
from voice_timeline.timeline.listeners import ListenerHistory
from voice_timeline.timeline.models import Segment

NOW = 1_000_000_000
# Valid JSON integer literal, far past anything a float can hold
HUGE = int("9" * 400)


def _speaker(pid, speaking=True, **extra):
    return {"id": pid, "isSpeaking": speaking, **extra}


def test_snapshot_opens_segments_for_speakers(applier):
    applier.apply_state(
        {"speakers": [_speaker("u1", startedAt=NOW - 5_000, displayName="Ana"), _speaker("u2", False)]},
        now=NOW,
    )
    assert [(s.id, s.start, s.end) for s in applier.segments] == [("u1", NOW - 5_000, None)]
    assert applier.speaking_ids() == frozenset({"u1"})
    assert set(applier.roster) == {"u1", "u2"}
    assert applier.last_update == NOW
    assert applier.is_history_loading is False


def test_snapshot_widens_existing_open_start(applier):
    applier.apply_speaking({"type": "start", "user": {"id": "u1", "startedAt": 999_999_000}}, now=NOW)
    applier.apply_state({"speakers": [_speaker("u1", startedAt=999_998_000)]}, now=NOW)

    assert len(applier.segments) == 1
    assert applier.segments[0].start == 999_998_000
    assert applier.segments[0].is_open


def test_snapshot_closes_speakers_that_stopped(applier):
    applier.apply_state({"speakers": [_speaker("u1", startedAt=NOW - 10_000, displayName="Ana")]}, now=NOW - 5_000)
    applier.apply_state({"speakers": [_speaker("u1", False)]}, now=NOW)

    (segment,) = applier.segments
    assert segment.end == NOW
    assert segment.profile.display_name == "Ana"
    assert applier.speaking_ids() == frozenset()


def test_snapshot_closes_speakers_missing_from_roster(applier):
    applier.apply_speaking({"type": "start", "user": {"id": "u9", "startedAt": NOW - 3_000}}, now=NOW - 3_000)
    applier.apply_state({"speakers": []}, now=NOW)

    assert applier.segments == (Segment(id="u9", start=NOW - 3_000, end=NOW, profile=applier.segments[0].profile),)
    assert applier.roster == {}


def test_snapshot_skips_speakers_without_id(applier):
    assert applier.apply_state({"speakers": [{"isSpeaking": True}, "junk", _speaker("u1")]}, now=NOW)
    assert [s.id for s in applier.segments] == ["u1"]


def test_snapshot_listeners_and_anonymous_slot(applier):
    applier.apply_state(
        {
            "speakers": [],
            "listeners": {"count": 12, "history": [{"timestamp": NOW - 2_000, "count": 10}, {"timestamp": NOW - 1_000, "count": 12}]},
            "anonymousSlot": {"occupied": True, "alias": "Guest", "expiresAt": NOW + 60_000},
        },
        now=NOW,
    )
    assert applier.listener_history.count == 12
    assert [s.count for s in applier.listener_history.history] == [10, 12]
    assert applier.anonymous_slot.occupied is True
    assert applier.anonymous_slot.alias == "Guest"
    assert applier.anonymous_slot.expires_at == NOW + 60_000


def test_start_then_end(applier):
    applier.apply_speaking(
        {"type": "start", "user": {"id": "u1", "startedAt": 999_999_000, "displayName": "Ana"}}, now=999_999_000
    )
    assert applier.speaking_ids() == frozenset({"u1"})

    applier.apply_speaking({"type": "end", "user": {"id": "u1", "lastSpokeAt": 999_999_500}}, now=NOW)

    (segment,) = applier.segments
    assert (segment.start, segment.end) == (999_999_000, 999_999_500)
    assert segment.profile.display_name == "Ana"
    participant = applier.roster["u1"]
    assert participant.is_speaking is False
    assert participant.last_spoke_at == 999_999_500
    assert participant.profile.display_name == "Ana"


def test_end_without_start_synthesizes_interval(applier):
    assert applier.apply_speaking({"type": "end", "userId": "u2"}, now=999_999_900)
    assert applier.segments == (Segment(id="u2", start=999_997_900, end=999_999_900),)
    assert "u2" not in applier.roster


def test_start_without_timestamp_uses_now(applier):
    applier.apply_speaking({"type": "start", "user": {"id": "u1"}}, now=NOW)
    assert applier.segments[0].start == NOW


def test_malformed_events_are_dropped(applier, caplog):
    assert applier.apply_speaking("nope", now=NOW) is False
    assert applier.apply_speaking({"type": "pause", "user": {"id": "u1"}}, now=NOW) is False
    assert applier.apply_speaking({"type": "start", "user": {}}, now=NOW) is False
    assert applier.apply_speaking({"type": "start", "userId": "u1"}, now=NOW) is False
    assert applier.apply_speaking({"type": "end"}, now=NOW) is False
    assert applier.apply_state(["not", "a", "dict"], now=NOW) is False
    assert applier.apply_listeners(None, now=NOW) is False

    assert applier.segments == ()
    assert applier.last_update is None
    assert "Dropping" in caplog.text


def test_listener_events_amend_or_append(applier):
    applier.apply_listeners({"count": 3, "entry": {"timestamp": NOW - 2_000, "count": 3}, "inserted": True}, now=NOW)
    applier.apply_listeners({"count": 4, "entry": {"timestamp": NOW - 2_000, "count": 4}}, now=NOW)
    applier.apply_listeners({"count": 6, "timestamp": NOW - 1_000, "inserted": True}, now=NOW)

    assert [(s.timestamp, s.count) for s in applier.listener_history.history] == [
        (NOW - 2_000, 4),
        (NOW - 1_000, 6),
    ]
    assert applier.listener_history.count == 6


def test_backfill_merges_rows_and_skips_bad_ones(applier):
    rows = [
        {"userId": "u1", "startedAtMs": NOW - 60_000, "endedAtMs": NOW - 50_000, "profile": {"displayName": "Ana"}},
        {"id": "u2", "startedAt": "1970-01-12T13:46:10Z", "durationMs": 2_000},
        {"userId": "u3", "startedAtMs": NOW - 10_000},
        {"userId": "u4", "startedAtMs": NOW - 10_000, "endedAtMs": NOW - 10_000},
        {"startedAtMs": NOW - 10_000, "endedAtMs": NOW - 5_000},
        "garbage",
    ]
    added = applier.apply_backfill(rows, now=NOW)

    assert added == 2
    assert [(s.id, s.start, s.end) for s in applier.segments] == [
        ("u1", NOW - 60_000, NOW - 50_000),
        ("u2", 999_970_000, 999_972_000),
    ]
    assert applier.segments[0].profile.display_name == "Ana"


def test_repeated_backfill_is_noop(applier):
    rows = [{"userId": "u1", "startedAtMs": NOW - 60_000, "endedAtMs": NOW - 50_000}]
    assert applier.apply_backfill(rows, now=NOW) == 1
    assert applier.apply_backfill(rows, now=NOW) == 0
    assert len(applier.segments) == 1


def _fresh_applier():
    return EventApplier(listener_history=ListenerHistory(), fallback_ms=2000, clock=lambda: NOW)


def _live_turn(applier):
    applier.apply_speaking({"type": "start", "user": {"id": "u1", "startedAt": NOW - 10_000}}, now=NOW - 10_000)
    applier.apply_speaking({"type": "end", "user": {"id": "u1", "lastSpokeAt": NOW - 5_000}}, now=NOW - 5_000)


def _history(applier):
    applier.apply_backfill(
        [
            {"userId": "u1", "startedAtMs": NOW - 12_000, "endedAtMs": NOW - 6_000},
            {"userId": "u1", "startedAtMs": NOW - 10_000, "endedAtMs": NOW - 5_000},
        ],
        now=NOW,
    )


def test_backfill_and_live_event_commute():
    live_first = _fresh_applier()
    _live_turn(live_first)
    _history(live_first)

    history_first = _fresh_applier()
    _history(history_first)
    _live_turn(history_first)

    expected = {("u1", NOW - 12_000, NOW - 6_000), ("u1", NOW - 10_000, NOW - 5_000)}
    assert {(s.id, s.start, s.end) for s in live_first.segments} == expected
    assert {(s.id, s.start, s.end) for s in history_first.segments} == expected
    assert not any(s.is_open for s in history_first.segments)


def test_backfill_keeps_live_open_segment(applier):
    applier.apply_speaking({"type": "start", "user": {"id": "u1", "startedAt": NOW - 1_000}}, now=NOW)
    applier.apply_backfill([{"userId": "u2", "startedAtMs": NOW - 90_000, "endedAtMs": NOW - 80_000}], now=NOW)

    assert [s.id for s in applier.segments] == ["u2", "u1"]
    assert applier.segments[1].is_open


def test_backfill_rows_outside_retention_are_trimmed(applier):
    day = 24 * 60 * 60 * 1000
    added = applier.apply_backfill(
        [{"userId": "u1", "startedAtMs": NOW - 3 * day, "endedAtMs": NOW - 2 * day}], now=NOW
    )
    assert added == 0
    assert applier.segments == ()


def test_normalize_history_segment_prefers_ms_fields():
    segment = normalize_history_segment(
        {"userId": "u1", "startedAtMs": 1_000, "startedAt": "2020-01-01T00:00:00Z", "endedAtMs": 3_000}
    )
    assert (segment.start, segment.end) == (1_000, 3_000)
    assert normalize_history_segment({"id": "u1", "startedAt": "1000", "endedAt": "900"}) is None


def test_dispatch_routes_by_event_name(applier, caplog):
    assert applier.dispatch("speaking", {"type": "start", "user": {"id": "u1"}}, now=NOW)
    assert applier.dispatch("anonymous-slot", {"occupied": True, "message": "Taken"}, now=NOW)
    assert applier.dispatch("mystery", {}, now=NOW) is False

    assert applier.speaking_ids() == frozenset({"u1"})
    assert applier.anonymous_slot.message == "Taken"
    assert "unknown event" in caplog.text


def test_dispatch_json(applier):
    body = json.dumps({"speakers": [_speaker("u1", startedAt=NOW - 100)]})
    assert applier.dispatch_json("state", body, now=NOW)
    assert applier.dispatch_json("state", "{not json", now=NOW) is False
    assert [s.id for s in applier.segments] == ["u1"]


def test_dispatch_json_drops_deeply_nested_body(applier, caplog):
    body = "[" * 100_000 + "]" * 100_000
    assert applier.dispatch_json("state", body, now=NOW) is False
    assert applier.segments == ()
    assert "parse error" in caplog.text


def test_oversized_speaking_timestamp_falls_back_to_now(applier):
    assert applier.apply_speaking({"type": "start", "user": {"id": "u1", "startedAt": HUGE}}, now=NOW)
    assert applier.segments[0].start == NOW

    assert applier.apply_speaking({"type": "end", "user": {"id": "u1", "lastSpokeAt": HUGE}}, now=NOW + 500)
    assert applier.segments[0].end == NOW + 500


def test_oversized_state_values_are_ignored(applier):
    assert applier.apply_state(
        {
            "speakers": [_speaker("u1", startedAt=HUGE)],
            "listeners": {"count": HUGE, "history": [{"timestamp": HUGE, "count": 3}, {"timestamp": NOW, "count": HUGE}]},
            "anonymousSlot": {"occupied": True, "expiresAt": HUGE},
        },
        now=NOW,
    )
    assert applier.segments[0].start == NOW
    assert applier.listener_history.count == 0
    assert applier.listener_history.history == ()
    assert applier.anonymous_slot.expires_at is None


def test_oversized_listener_event_keeps_previous_state(applier):
    applier.apply_listeners({"count": 3, "entry": {"timestamp": NOW - 1_000, "count": 3}, "inserted": True}, now=NOW)
    assert applier.apply_listeners({"count": HUGE, "timestamp": HUGE, "inserted": True}, now=NOW)
    assert applier.apply_listeners({"count": float("1e300"), "entry": {"timestamp": NOW, "count": 1e300}}, now=NOW)

    assert applier.listener_history.count == 3
    assert [(s.timestamp, s.count) for s in applier.listener_history.history] == [(NOW - 1_000, 3)]


def test_oversized_backfill_rows_are_dropped(applier):
    rows = [
        {"userId": "u1", "startedAtMs": HUGE, "endedAtMs": NOW},
        {"userId": "u2", "startedAtMs": NOW - 2_000, "durationMs": HUGE},
        {"userId": "u3", "startedAtMs": NOW - 2_000, "endedAtMs": NOW - 1_000},
    ]
    assert applier.apply_backfill(rows, now=NOW) == 1
    assert [s.id for s in applier.segments] == ["u3"]


def test_history_row_blank_user_id_falls_back_to_id():
    for user_id in (None, "", "   ", 42):
        segment = normalize_history_segment({"userId": user_id, "id": "u1", "startedAtMs": 1_000, "endedAtMs": 2_000})
        assert segment is not None
        assert segment.id == "u1"
    preferred = normalize_history_segment({"userId": "u9", "id": "u1", "startedAtMs": 1_000, "endedAtMs": 2_000})
    assert preferred.id == "u9"
