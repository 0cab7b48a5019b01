from __future__ import annotations

import copy

from pydantic import BaseModel, ConfigDict, Field

PRESENTATION_KEY = "presentation"
MAX_RECENT_LINE_HASHES = 16
MAX_LAST_VERB_KEYS = 12
MAX_LAST_TEMPLATE_IDS = 12


class PresentationState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    last_tone: str | None = None
    last_board_opener_id: str | None = None
    recent_line_hashes: list[str] = Field(default_factory=list)
    last_verb_keys: list[str] = Field(default_factory=list)
    last_template_ids: list[str] = Field(default_factory=list)
    last_event_cursor: str | None = None


class PresentationDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    last_tone: str | None = None
    last_board_opener_id: str | None = None
    recent_line_hashes: list[str] = Field(default_factory=list)
    last_verb_keys: list[str] = Field(default_factory=list)
    last_template_ids: list[str] = Field(default_factory=list)
    last_event_cursor: str | None = None


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int)) and str(item).strip()]


def _optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def read_presentation_state(board_state: dict | None) -> PresentationState:
    raw = (board_state or {}).get(PRESENTATION_KEY) if isinstance(board_state, dict) else None
    if not isinstance(raw, dict):
        return PresentationState()
    return PresentationState(
        last_tone=_optional_text(raw.get("last_tone")),
        last_board_opener_id=_optional_text(raw.get("last_board_opener_id")),
        recent_line_hashes=_string_list(raw.get("recent_line_hashes"))[-MAX_RECENT_LINE_HASHES:],
        last_verb_keys=_string_list(raw.get("last_verb_keys"))[-MAX_LAST_VERB_KEYS:],
        last_template_ids=_string_list(raw.get("last_template_ids"))[-MAX_LAST_TEMPLATE_IDS:],
        last_event_cursor=_optional_text(raw.get("last_event_cursor")),
    )


def merge_presentation_state(current: PresentationState, delta: PresentationDelta | None) -> PresentationState:
    """Append list fields and keep their tails; scalar fields are last-wins unless the delta is None."""
    if delta is None:
        return current.model_copy(deep=True)
    return PresentationState(
        last_tone=delta.last_tone if delta.last_tone is not None else current.last_tone,
        last_board_opener_id=(
            delta.last_board_opener_id if delta.last_board_opener_id is not None else current.last_board_opener_id
        ),
        recent_line_hashes=[*current.recent_line_hashes, *delta.recent_line_hashes][-MAX_RECENT_LINE_HASHES:],
        last_verb_keys=[*current.last_verb_keys, *delta.last_verb_keys][-MAX_LAST_VERB_KEYS:],
        last_template_ids=[*current.last_template_ids, *delta.last_template_ids][-MAX_LAST_TEMPLATE_IDS:],
        last_event_cursor=delta.last_event_cursor if delta.last_event_cursor is not None else current.last_event_cursor,
    )


def write_presentation_state(board_state: dict | None, state: PresentationState) -> dict:
    next_state = copy.deepcopy(board_state) if isinstance(board_state, dict) else {}
    next_state[PRESENTATION_KEY] = state.model_dump()
    return next_state
