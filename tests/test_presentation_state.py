from __future__ import annotations

from dm_engine.modules.presentation.state import (
    MAX_RECENT_LINE_HASHES,
    PRESENTATION_KEY,
    PresentationDelta,
    PresentationState,
    merge_presentation_state,
    read_presentation_state,
    write_presentation_state,
)


def test_read_returns_defaults_for_missing_or_malformed_state() -> None:
    assert read_presentation_state(None) == PresentationState()
    assert read_presentation_state({PRESENTATION_KEY: "oops"}) == PresentationState()
    state = read_presentation_state({PRESENTATION_KEY: {"last_tone": "  ", "recent_line_hashes": ["a", 3, None, ""]}})
    assert state.last_tone is None
    assert state.recent_line_hashes == ["a", "3"]


def test_merge_appends_lists_and_keeps_tail() -> None:
    current = PresentationState(recent_line_hashes=[f"h{i}" for i in range(MAX_RECENT_LINE_HASHES)])
    merged = merge_presentation_state(current, PresentationDelta(recent_line_hashes=["new1", "new2"]))
    assert len(merged.recent_line_hashes) == MAX_RECENT_LINE_HASHES
    assert merged.recent_line_hashes[-2:] == ["new1", "new2"]
    assert merged.recent_line_hashes[0] == "h2"


def test_merge_scalars_are_last_wins_unless_unset() -> None:
    current = PresentationState(last_tone="mythic", last_board_opener_id="op-1", last_event_cursor="1:e1:na")
    merged = merge_presentation_state(current, PresentationDelta(last_tone="brutal"))
    assert merged.last_tone == "brutal"
    assert merged.last_board_opener_id == "op-1"
    assert merged.last_event_cursor == "1:e1:na"


def test_merge_with_no_delta_is_a_copy() -> None:
    current = PresentationState(last_verb_keys=["slash"])
    merged = merge_presentation_state(current, None)
    assert merged == current
    merged.last_verb_keys.append("stab")
    assert current.last_verb_keys == ["slash"]


def test_write_preserves_other_board_keys() -> None:
    board = {"rumors": ["x"], PRESENTATION_KEY: {"last_tone": "mythic"}}
    written = write_presentation_state(board, PresentationState(last_tone="tactical"))
    assert written["rumors"] == ["x"]
    assert written[PRESENTATION_KEY]["last_tone"] == "tactical"
    assert board[PRESENTATION_KEY] == {"last_tone": "mythic"}
    assert read_presentation_state(written).last_tone == "tactical"
