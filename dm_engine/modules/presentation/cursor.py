from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

NO_TIMESTAMP = "na"


def _timestamp_key(created_at: str) -> tuple[int, float, str]:
    raw = str(created_at or "").strip()
    if not raw or raw == NO_TIMESTAMP:
        return (0, 0.0, "")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return (1, 0.0, raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return (2, parsed.timestamp(), raw)


@dataclass(frozen=True, slots=True)
class EventCursor:
    """Position of the last combat event already narrated.

    Ordering is by turn index, then creation time, then event id. Events without a
    timestamp sort before timestamped events of the same turn.
    """

    turn_index: int
    event_id: str
    created_at: str = NO_TIMESTAMP

    def sort_key(self) -> tuple:
        return (self.turn_index, _timestamp_key(self.created_at), self.event_id)

    def encode(self) -> str:
        return f"{self.turn_index}:{self.event_id}:{self.created_at or NO_TIMESTAMP}"

    @classmethod
    def parse(cls, raw: str | None) -> EventCursor | None:
        text = str(raw or "").strip()
        if not text:
            return None
        parts = text.split(":", 2)
        if len(parts) < 2:
            return None
        try:
            turn_index = int(parts[0])
        except ValueError:
            return None
        created_at = parts[2] if len(parts) == 3 and parts[2] else NO_TIMESTAMP
        return cls(turn_index=turn_index, event_id=parts[1], created_at=created_at)


def cursor_for_event(event: dict) -> EventCursor:
    return EventCursor(
        turn_index=int(event.get("turn_index") or 0),
        event_id=str(event.get("id") or "").replace(":", "-"),
        created_at=str(event.get("created_at") or NO_TIMESTAMP),
    )


def compare_cursors(left: EventCursor, right: EventCursor) -> int:
    left_key, right_key = left.sort_key(), right.sort_key()
    if left_key < right_key:
        return -1
    if left_key > right_key:
        return 1
    return 0


def events_after_cursor(events: list[dict], cursor: EventCursor | str | None) -> list[dict]:
    anchor = EventCursor.parse(cursor) if isinstance(cursor, str) or cursor is None else cursor
    if anchor is None:
        return list(events)
    return [event for event in events if compare_cursors(cursor_for_event(event), anchor) > 0]
