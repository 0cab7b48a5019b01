from __future__ import annotations

from dataclasses import dataclass

from dm_engine.modules.presentation.deterministic import compact_text, pick_without_immediate_repeat
from dm_engine.modules.presentation.word_banks import BOARD_OPENERS, TOWN_SYLLABLE_A, TOWN_SYLLABLE_B


@dataclass(frozen=True, slots=True)
class BoardNarration:
    opener_id: str
    lines: list[str]

    @property
    def text(self) -> str:
        return " ".join(self.lines)


def town_tag(seed_key: str) -> str:
    first = pick_without_immediate_repeat(TOWN_SYLLABLE_A, seed_key, None, "town-tag-a")
    second = pick_without_immediate_repeat(TOWN_SYLLABLE_B, seed_key, None, "town-tag-b")
    return f"{first}{second}"


def _strip_period(text: str) -> str:
    return text.rstrip(". ")


def build_board_narration(
    *,
    seed_key: str,
    board_type: str,
    hooks: list[str],
    last_opener_id: str | None,
    region_name: str | None = None,
    faction_tension: str | None = None,
    time_pressure: str | None = None,
    resource_window: str | None = None,
) -> BoardNarration:
    opener = pick_without_immediate_repeat(BOARD_OPENERS, seed_key, last_opener_id, f"{board_type}:opener")
    clean_hooks = [_strip_period(compact_text(entry, 72)) for entry in hooks if str(entry or "").strip()][:2]
    lines = [opener]

    if board_type == "town":
        district = compact_text(region_name, 40) if str(region_name or "").strip() else town_tag(seed_key)
        if clean_hooks:
            lines.append(f"Lead: {clean_hooks[0]}.")
        elif faction_tension:
            lines.append(f"Faction pressure: {_strip_period(compact_text(faction_tension, 64))}.")
        elif time_pressure:
            lines.append(f"Clock: {_strip_period(compact_text(time_pressure, 52))}.")
        else:
            lines.append(f"District: {district}.")
    elif board_type == "travel":
        if clean_hooks:
            lines.append(f"Route lead: {clean_hooks[0]}.")
        elif time_pressure:
            lines.append(f"Clock: {_strip_period(compact_text(time_pressure, 52))}.")
        else:
            lines.append("The route window is open, briefly.")
    elif board_type == "dungeon":
        if clean_hooks:
            lines.append(f"Stone hook: {clean_hooks[0]}.")
        elif resource_window:
            lines.append(f"Resources: {_strip_period(compact_text(resource_window, 52))}.")
        else:
            lines.append("Every room keeps score.")

    return BoardNarration(opener_id=opener, lines=lines[:2])
