from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dm_engine.modules.presentation.board_narration import build_board_narration
from dm_engine.modules.presentation.cursor import events_after_cursor
from dm_engine.modules.presentation.deterministic import hash_line, stable_int, word_count
from dm_engine.modules.presentation.middleware import build_narrative_lines
from dm_engine.modules.presentation.state import PresentationDelta, PresentationState
from dm_engine.modules.presentation.tone import select_tone, tone_seed_line
from dm_engine.modules.presentation.word_banks import GENERIC_CLOSERS, RECOVERY_CLOSERS
from dm_engine.modules.turn.actions import sanitize_actions
from dm_engine.modules.turn.board import BOARD_MODES, BoardSummary
from dm_engine.modules.turn.contract import MAX_UI_ACTIONS, MIN_UI_ACTIONS
from dm_engine.modules.turn.policy import strip_internal_lines
from dm_engine.modules.turn.schemas import NarratorOutput, RuntimeDelta

log = logging.getLogger(__name__)

_SPARE_ACTIONS: tuple[dict, ...] = (
    {"id": "spare-look", "label": "Look for what others missed", "intent": "dm_prompt", "prompt": "I look closely for details everyone else has missed."},
    {"id": "spare-regroup", "label": "Regroup with the party", "intent": "dm_prompt", "prompt": "I regroup with my party and ask what they noticed."},
)


@dataclass(slots=True)
class RecoveryInput:
    board: BoardSummary = field(default_factory=BoardSummary)
    presentation: PresentationState = field(default_factory=PresentationState)
    mode: str | None = None
    action_intent: str | None = None
    word_band: tuple[int, int] = (40, 140)
    reason: str = "unknown"
    attempts: int = 0
    combat_events: list[dict] = field(default_factory=list)
    state_hint: dict = field(default_factory=dict)


@dataclass(slots=True)
class RecoveryResult:
    output: NarratorOutput
    presentation_delta: PresentationDelta
    tone: str
    mode: str


def effective_mode(explicit: str | None, board: BoardSummary, fresh_events: list[dict]) -> str:
    mode = explicit if explicit in BOARD_MODES else board.mode
    if fresh_events:
        return "combat"
    return mode or "town"


def recovery_dead_ids(board: BoardSummary, state_hint: dict) -> set[str]:
    hinted = state_hint.get("dead_combatant_ids") if isinstance(state_hint, dict) else None
    extra = {str(entry).strip() for entry in hinted if str(entry).strip()} if isinstance(hinted, list) else set()
    return set(board.dead_combatant_ids) | extra


def _mode_actions(mode: str, board: BoardSummary) -> list[dict]:
    if mode == "combat":
        enemy = board.living_enemies[0] if board.living_enemies else None
        attack = {"id": "combat-press", "label": f"Press the attack on {enemy['name']}" if enemy else "Press the attack", "intent": "combat_action"}
        if enemy:
            attack["payload"] = {"target_combatant_id": enemy["id"]}
        return [
            attack,
            {"id": "combat-brace", "label": "Brace for the next hit", "intent": "combat_action", "prompt": "I brace behind my guard and wait for an opening."},
            {"id": "combat-skills", "label": "Open Skills", "intent": "open_panel", "payload": {"panel": "skills"}},
            {"id": "combat-read", "label": "Read the battlefield", "intent": "dm_prompt", "prompt": "I read the battlefield for openings and threats."},
        ]
    if mode == "travel":
        return [
            {"id": "travel-scout", "label": "Scout the route ahead", "intent": "quest_action", "prompt": "I scout the route ahead for tracks and landmarks."},
            {"id": "travel-push", "label": "Push toward the dungeon", "intent": "quest_action", "payload": {"boardTarget": "dungeon"}},
            {"id": "travel-hazard", "label": "Read the road hazards", "intent": "dm_prompt", "prompt": "I study the road for hazards and signs of ambush."},
            {"id": "travel-return", "label": "Return to town", "intent": "quest_action", "payload": {"boardTarget": "town"}},
        ]
    if mode == "dungeon":
        return [
            {"id": "dungeon-search", "label": "Search the room", "intent": "quest_action", "prompt": "I search the room for loot, levers and hidden doors."},
            {"id": "dungeon-traps", "label": "Check for traps", "intent": "dm_prompt", "prompt": "I check the floor and walls ahead for traps."},
            {"id": "dungeon-deeper", "label": "Push deeper", "intent": "quest_action", "prompt": "I push deeper into the dungeon with my guard up."},
            {"id": "dungeon-retreat", "label": "Retreat to town", "intent": "quest_action", "payload": {"boardTarget": "town"}},
        ]
    town = [
        {"id": "town-travel", "label": "Head out on the road", "intent": "quest_action", "payload": {"boardTarget": "travel"}},
        {"id": "town-rumor", "label": "Lean on the latest rumor", "intent": "dm_prompt", "prompt": f"I press the locals about {board.rumors[-1] if board.rumors else 'the latest rumor'}."},
        {"id": "town-quests", "label": "Open Quests", "intent": "open_panel", "payload": {"panel": "quests"}},
    ]
    if board.vendors:
        vendor = board.vendors[0]
        town.insert(0, {"id": "town-vendor", "label": f"Check {vendor['name']}", "intent": "shop_action", "payload": {"vendorId": vendor["id"]}})
    return town


def _companion_action(board: BoardSummary) -> dict | None:
    if not board.pending_checkins:
        return None
    checkin = board.pending_checkins[-1]
    companion_id = str(checkin.get("companion_id") or "").strip()
    if not companion_id:
        return None
    return {"id": "companion-checkin", "label": "", "intent": "companion_action", "payload": {"companion_id": companion_id}}


def build_fallback_actions(mode: str, board: BoardSummary) -> list:
    raw = _mode_actions(mode, board)
    companion = _companion_action(board)
    if companion:
        raw.insert(0, companion)
    actions = sanitize_actions(raw, mode, board)
    if len(actions) < MIN_UI_ACTIONS:
        actions = sanitize_actions([*raw, *_SPARE_ACTIONS], mode, board)
    return actions[:MAX_UI_ACTIONS]


def _ordered_pool(pool: tuple[str, ...], seed_key: str) -> list[str]:
    return sorted(pool, key=lambda line: stable_int(seed_key, line))


def _fit_word_band(lines: list[str], word_band: tuple[int, int], mode: str, seed_key: str, recent: set[str]) -> list[str]:
    min_words, max_words = word_band
    result = list(lines)
    pool = [*_ordered_pool(RECOVERY_CLOSERS.get(mode, ()), seed_key), *_ordered_pool(GENERIC_CLOSERS, seed_key)]
    fresh = [line for line in pool if hash_line(line) not in recent and line not in result]
    stale = [line for line in pool if line not in fresh and line not in result]
    for candidate in [*fresh, *stale]:
        if word_count(" ".join(result)) >= min_words:
            break
        result.append(candidate)
    while word_count(" ".join(result)) < min_words:
        result.append(GENERIC_CLOSERS[len(result) % len(GENERIC_CLOSERS)])

    while len(result) > 1 and word_count(" ".join(result)) > max_words and word_count(" ".join(result[:-1])) >= min_words:
        result.pop()
    if word_count(" ".join(result)) > max_words:
        words = " ".join(result).split()[:max_words]
        result = [" ".join(words).rstrip(",;:") + ("" if words[-1].endswith((".", "!", "?")) else ".")]
    return result


def synthesize_recovery(data: RecoveryInput) -> RecoveryResult:
    """Build a contract-valid turn from board state alone. Never calls the generator."""
    board = data.board
    presentation = data.presentation
    events = [*board.combat_events, *(event for event in data.combat_events if isinstance(event, dict))]
    fresh_events = events_after_cursor(events, presentation.last_event_cursor)
    mode = effective_mode(data.mode, board, fresh_events)
    intent = str(data.action_intent or "none")
    seed_key = f"{mode}:{intent}:{board.title or 'untitled'}"

    tone = select_tone(
        seed_key=seed_key,
        last_tone=presentation.last_tone,
        tension=board.tension,
        boss_present=board.boss_present,
        player_hp_pct=board.player_hp_pct,
        region_theme=board.region_name or board.title or mode,
    )
    recent = set(presentation.recent_line_hashes)
    opener_id: str | None = None
    verb_keys: list[str] = []
    template_ids: list[str] = []
    event_cursor: str | None = None

    if mode == "combat":
        narrative = build_narrative_lines(
            seed_key=seed_key,
            tone=tone.tone,
            events=fresh_events,
            recent_line_hashes=presentation.recent_line_hashes,
            recent_verb_keys=presentation.last_verb_keys,
            dead_combatant_ids=recovery_dead_ids(board, data.state_hint),
        )
        lines = list(narrative.lines)
        verb_keys = narrative.verb_keys
        template_ids = list(narrative.template_ids)
        event_cursor = narrative.last_event_cursor
    else:
        board_lines = build_board_narration(
            seed_key=seed_key,
            board_type=mode,
            hooks=board.hooks[::-1],
            last_opener_id=presentation.last_board_opener_id,
            region_name=board.region_name,
            faction_tension=board.faction_tension,
            time_pressure=board.time_pressure,
            resource_window=board.resource_window,
        )
        opener_id = board_lines.opener_id
        lines = list(board_lines.lines)
        template_ids = ["board_opener", f"board_{mode}_hook"]

    tone_line = tone_seed_line(tone.tone, seed_key)
    if hash_line(tone_line) not in recent:
        lines.append(tone_line)
        template_ids.append(f"tone_line:{tone.tone}")
    if board.pending_checkins:
        companion_line = str(board.pending_checkins[-1].get("line") or "").strip()
        if companion_line:
            lines.append(companion_line)
            template_ids.append("companion_checkin")

    lines = strip_internal_lines(lines)
    lines = _fit_word_band(lines, data.word_band, mode, seed_key, recent)
    narration = " ".join(lines)

    actions = build_fallback_actions(mode, board)
    runtime_delta = RuntimeDelta(
        discovery_log=[
            {"kind": "dm_recovery", "reason": data.reason, "mode": mode, "tone": tone.tone, "attempts": data.attempts}
        ]
    )
    scene = {"environment": mode, "mood": tone.tone, "focus": board.title or mode, "recovery": True}
    if mode == "combat" and board.living_enemies:
        scene["combat_focus"] = board.living_enemies[0]["name"]

    delta = PresentationDelta(
        last_tone=tone.tone,
        last_board_opener_id=opener_id,
        recent_line_hashes=[hash_line(line) for line in lines],
        last_verb_keys=verb_keys,
        last_template_ids=template_ids,
        last_event_cursor=event_cursor,
    )
    log.info("turn.recovery.synthesized", extra={"mode": mode, "tone": tone.tone, "reason": data.reason})
    return RecoveryResult(
        output=NarratorOutput(narration=narration, scene=scene, runtime_delta=runtime_delta, ui_actions=actions),
        presentation_delta=delta,
        tone=tone.tone,
        mode=mode,
    )
