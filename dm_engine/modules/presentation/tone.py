from __future__ import annotations

from dataclasses import dataclass

from dm_engine.modules.presentation.deterministic import pick_deterministic, weighted_pick_without_immediate_repeat
from dm_engine.modules.presentation.word_banks import TONE_LINES

_BASE_WEIGHTS: dict[str, float] = {
    "tactical": 1.6,
    "mythic": 1.3,
    "whimsical": 0.8,
    "brutal": 0.9,
    "minimalist": 0.7,
}


@dataclass(frozen=True, slots=True)
class ToneSelection:
    tone: str
    reason: str


def select_tone(
    *,
    seed_key: str,
    last_tone: str | None,
    tension: float,
    boss_present: bool,
    player_hp_pct: float | None,
    region_theme: str,
) -> ToneSelection:
    hp_pct = 0.65 if player_hp_pct is None else max(0.0, min(1.0, float(player_hp_pct)))
    tension_value = max(0, min(100, int(tension or 0)))
    theme = str(region_theme or "").strip().lower()

    weights = dict(_BASE_WEIGHTS)
    if tension_value >= 65:
        weights["tactical"] += 0.7
        weights["brutal"] += 0.8
        weights["minimalist"] += 0.4
    if boss_present:
        weights["mythic"] += 1.2
        weights["brutal"] += 0.6
    if hp_pct <= 0.35:
        weights["brutal"] += 1.0
        weights["minimalist"] += 0.6
        weights["whimsical"] -= 0.2
    if any(token in theme for token in ("town", "market", "festival")):
        weights["whimsical"] += 0.8
        weights["tactical"] += 0.2
    if any(token in theme for token in ("dungeon", "crypt", "grave")):
        weights["brutal"] += 0.4
        weights["mythic"] += 0.5

    tone = weighted_pick_without_immediate_repeat(weights, seed_key, last_tone, "tone-mode")
    reason = f"{tone}:{tension_value}:{round(hp_pct * 100)}:{1 if boss_present else 0}"
    return ToneSelection(tone=tone, reason=reason)


def tone_seed_line(tone: str, seed_key: str) -> str:
    pool = TONE_LINES.get(tone) or TONE_LINES["tactical"]
    return pick_deterministic(pool, seed_key, f"tone-line:{tone}")
