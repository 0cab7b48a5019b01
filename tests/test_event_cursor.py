from __future__ import annotations

from dm_engine.modules.presentation.cursor import EventCursor, compare_cursors, events_after_cursor


def test_cursor_encode_parse_keeps_fields() -> None:
    cursor = EventCursor(turn_index=3, event_id="evt-9", created_at="2024-01-01T00:00:00Z")
    parsed = EventCursor.parse(cursor.encode())
    assert parsed == cursor


def test_parse_rejects_garbage() -> None:
    assert EventCursor.parse(None) is None
    assert EventCursor.parse("") is None
    assert EventCursor.parse("nocolon") is None
    assert EventCursor.parse("x:evt") is None
    assert EventCursor.parse("2:evt").created_at == "na"


def test_ordering_is_turn_then_time_then_id() -> None:
    early = EventCursor(1, "b", "2024-01-01T00:00:05Z")
    later_same_turn = EventCursor(1, "a", "2024-01-01T00:00:06Z")
    next_turn = EventCursor(2, "a", "2020-01-01T00:00:00Z")
    untimed = EventCursor(1, "z", "na")
    assert compare_cursors(early, later_same_turn) == -1
    assert compare_cursors(later_same_turn, next_turn) == -1
    assert compare_cursors(untimed, early) == -1
    assert compare_cursors(early, early) == 0


def test_timezone_offsets_compare_by_instant() -> None:
    utc = EventCursor(1, "a", "2024-01-01T10:00:00Z")
    offset = EventCursor(1, "a", "2024-01-01T11:30:00+02:00")
    assert compare_cursors(offset, utc) == -1


def test_events_after_cursor_filters_already_narrated() -> None:
    events = [
        {"id": "e1", "turn_index": 1, "created_at": "2024-01-01T00:00:01Z"},
        {"id": "e2", "turn_index": 1, "created_at": "2024-01-01T00:00:02Z"},
        {"id": "e3", "turn_index": 2, "created_at": "2024-01-01T00:00:03Z"},
    ]
    assert [e["id"] for e in events_after_cursor(events, "1:e1:2024-01-01T00:00:01Z")] == ["e2", "e3"]
    assert [e["id"] for e in events_after_cursor(events, None)] == ["e1", "e2", "e3"]
    assert events_after_cursor(events, "2:e3:2024-01-01T00:00:03Z") == []
