from __future__ import annotations

import re
from dataclasses import replace

from pydantic import ValidationError

from dm_engine.modules.presentation.deterministic import compact_text, word_count
from dm_engine.modules.turn.board import PANELS, BoardSummary
from dm_engine.modules.turn.schemas import ACTION_INTENTS, MAX_ACTION_LABEL_LEN, MAX_ACTION_PROMPT_LEN, Action

MAX_SANITIZED_ACTIONS = 6

IDENTITY_FIELDS: tuple[str, ...] = (
    "vendorId",
    "panel",
    "target_combatant_id",
    "boardTarget",
    "companion_id",
    "quest_id",
    "rumor_id",
)
_PAYLOAD_ALIASES: dict[str, str] = {
    "vendor_id": "vendorId",
    "board_target": "boardTarget",
    "target_id": "target_combatant_id",
    "combatant_id": "target_combatant_id",
}

INTENT_ALIASES: dict[str, str] = {
    "quest": "quest_action",
    "objective": "quest_action",
    "explore": "quest_action",
    "investigate": "quest_action",
    "town": "quest_action",
    "travel": "quest_action",
    "dungeon": "quest_action",
    "return_town": "quest_action",
    "enter_dungeon": "quest_action",
    "transition": "quest_action",
    "board_transition": "quest_action",
    "board_transition_town": "quest_action",
    "board_transition_travel": "quest_action",
    "board_transition_dungeon": "quest_action",
    "combat": "combat_start",
    "battle": "combat_start",
    "fight": "combat_start",
    "engage": "combat_start",
    "combat_begin": "combat_start",
    "attack": "combat_action",
    "skill": "combat_action",
    "focus_target": "combat_action",
    "shop": "shop_action",
    "vendor": "shop_action",
    "trade": "shop_action",
    "buy": "shop_action",
    "panel": "open_panel",
    "open_menu": "open_panel",
    "companion": "companion_action",
    "companion_checkin": "companion_action",
    "ally": "companion_action",
    "prompt": "dm_prompt",
    "narrate": "dm_prompt",
    "freeform": "dm_prompt",
    "dm": "dm_prompt",
}
_TRANSITION_TARGETS: dict[str, str] = {
    "town": "town",
    "return_town": "town",
    "board_transition_town": "town",
    "travel": "travel",
    "transition": "travel",
    "board_transition": "travel",
    "board_transition_travel": "travel",
    "dungeon": "dungeon",
    "enter_dungeon": "dungeon",
    "board_transition_dungeon": "dungeon",
}
_BOARD_TARGET_LABELS: dict[str, str] = {
    "town": "Return to town",
    "travel": "Head out on the road",
    "dungeon": "Push into the dungeon",
    "combat": "Engage the threat",
}

GENERIC_LABEL_RE = re.compile(
    r"^(action\s*\d+|narrative\s+update|continue|option\s*\d+|choice\s*\d+|next|ok|okay|do\s+it|go)$",
    re.IGNORECASE,
)
GENERIC_PROMPT_RE = re.compile(
    r"^(continue|go on|next|what now|what next|narrate|tell me more|keep going|do something)[.!?]*$",
    re.IGNORECASE,
)
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_LOW_SIGNAL_INTENTS = {"dm_prompt", "refresh"}


def canonical_intent(value: object) -> str | None:
    key = str(value or "").strip().lower()
    if not key:
        return None
    if key in ACTION_INTENTS:
        return key
    return INTENT_ALIASES.get(key)


def slugify(text: str, max_len: int = 48) -> str:
    return _SLUG_RE.sub("_", str(text or "").strip().lower()).strip("_")[:max_len] or "action"


def normalize_label(text: str) -> str:
    return " ".join(re.sub(r"[^\w\s]", " ", str(text or "").lower()).split())


def is_generic_label(label: str | None) -> bool:
    text = str(label or "").strip()
    return not text or bool(GENERIC_LABEL_RE.match(text))


def _payload_from(raw: dict) -> dict:
    payload = dict(raw.get("payload")) if isinstance(raw.get("payload"), dict) else {}
    for source_key in ("boardTarget", "board_target", "panel", "vendorId", "vendor_id", "target_combatant_id", "companion_id"):
        if source_key in raw and raw[source_key] not in (None, ""):
            payload.setdefault(source_key, raw[source_key])
    for alias, canonical in _PAYLOAD_ALIASES.items():
        if alias in payload:
            value = payload.pop(alias)
            payload.setdefault(canonical, value)
    for key in IDENTITY_FIELDS:
        if key in payload:
            value = payload[key]
            if isinstance(value, (str, int)) and str(value).strip():
                payload[key] = str(value).strip()
            else:
                payload.pop(key)
    return payload


def identity_value(payload: dict) -> str | None:
    for key in IDENTITY_FIELDS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _apply_board_rules(intent: str, payload: dict, board: BoardSummary) -> str:
    mode = board.mode
    if intent == "combat_start" and mode == "combat":
        return "dm_prompt"
    if intent == "combat_action" and mode != "combat":
        return "dm_prompt"
    if intent == "shop_action" and not board.vendors:
        return "dm_prompt"
    if intent == "open_panel" and payload.get("panel") not in PANELS:
        payload["panel"] = "quests"
    return intent


def _target_name(payload: dict, board: BoardSummary) -> str | None:
    target_id = payload.get("target_combatant_id")
    for enemy in board.enemies:
        if enemy["id"] == target_id:
            return enemy["name"]
    return None


def _companion_name(payload: dict, board: BoardSummary) -> str | None:
    companion_id = payload.get("companion_id")
    for companion in board.companions:
        if companion.get("companion_id") == companion_id:
            return companion.get("name") or None
    return None


def repair_label(intent: str, payload: dict, board: BoardSummary) -> str:
    if intent == "shop_action":
        vendor = board.vendor_by_id(str(payload.get("vendorId") or ""))
        return f"Visit {vendor['name']}" if vendor else "Browse the market stalls"
    if intent == "open_panel":
        return f"Open {str(payload.get('panel') or 'quests').title()}"
    if intent == "combat_action":
        name = _target_name(payload, board)
        return f"Strike {name}" if name else "Press the attack"
    if intent == "combat_start":
        return "Start the fight"
    if intent == "companion_action":
        name = _companion_name(payload, board)
        return f"Check in with {name}" if name else "Check in with the party"
    if intent == "quest_action":
        target = payload.get("boardTarget")
        if target in _BOARD_TARGET_LABELS:
            return _BOARD_TARGET_LABELS[target]
        if board.objectives:
            return compact_text(f"Pursue {board.objectives[-1]}", MAX_ACTION_LABEL_LEN - 3)
        return "Follow the strongest lead"
    if intent == "refresh":
        return "Refresh the board"
    return "Ask what stands out here"


def synthesize_prompt(intent: str, label: str, payload: dict, board: BoardSummary) -> str:
    if intent == "shop_action":
        vendor = board.vendor_by_id(str(payload.get("vendorId") or ""))
        name = vendor["name"] if vendor else "the nearest vendor"
        return f"I visit {name} and check what they have for sale."
    if intent == "open_panel":
        return f"I open my {payload.get('panel') or 'quests'} panel and review it."
    if intent == "combat_action":
        name = _target_name(payload, board) or "the closest enemy"
        return f"I attack {name} with everything I have."
    if intent == "companion_action":
        name = _companion_name(payload, board) or "my companion"
        return f"I check in with {name} and hear them out."
    text = label.strip().rstrip(".!?")
    if not text:
        return "I look around and take stock of the situation."
    return f"I {text[0].lower()}{text[1:]}."


def _hint_key(intent: str, raw_hint: object, payload: dict, label: str) -> str:
    hint = str(raw_hint or "").strip()
    if hint:
        return hint[:120]
    identity = identity_value(payload)
    return f"{intent}:{identity or slugify(label)}"[:120]


def _is_low_signal(action: Action) -> bool:
    if action.intent not in _LOW_SIGNAL_INTENTS:
        return False
    prompt = str(action.prompt or "").strip()
    return not prompt or word_count(prompt) < 3 or bool(GENERIC_PROMPT_RE.match(prompt))


def sanitize_actions(actions: list, board_mode: str | None, board: BoardSummary | None) -> list[Action]:
    """Normalize untrusted action suggestions into at most six distinct actions."""
    summary = board or BoardSummary(board_type=board_mode or "town")
    if board_mode and board_mode != summary.board_type:
        summary = replace(summary, board_type=board_mode)

    staged: list[Action] = []
    seen_hints: set[tuple[str, str]] = set()
    seen_labels: set[tuple[str, str, str]] = set()
    used_ids: set[str] = set()
    for raw in actions if isinstance(actions, list) else []:
        if isinstance(raw, Action):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            continue
        raw_intent = str(raw.get("intent") or "").strip().lower()
        payload = _payload_from(raw)
        if raw_intent in _TRANSITION_TARGETS:
            payload.setdefault("boardTarget", _TRANSITION_TARGETS[raw_intent])
        intent = canonical_intent(raw_intent) or "dm_prompt"
        intent = _apply_board_rules(intent, payload, summary)

        label = str(raw.get("label") or "").strip()
        if is_generic_label(label):
            label = repair_label(intent, payload, summary)
        label = compact_text(label, MAX_ACTION_LABEL_LEN - 3)

        prompt = str(raw.get("prompt") or "").strip()
        if not prompt:
            prompt = synthesize_prompt(intent, label, payload, summary)
        prompt = prompt[:MAX_ACTION_PROMPT_LEN]

        hint_key = _hint_key(intent, raw.get("hint_key"), payload, label)
        hint_identity = (intent, hint_key)
        label_identity = (intent, identity_value(payload) or "", normalize_label(label))
        if hint_identity in seen_hints or label_identity in seen_labels:
            continue

        action_id = str(raw.get("id") or "").strip()[:80]
        if not action_id or action_id in used_ids:
            action_id = f"{intent}-{len(staged) + 1}"
            while action_id in used_ids:
                action_id = f"{action_id}x"
        try:
            action = Action(id=action_id, label=label, intent=intent, hint_key=hint_key, prompt=prompt, payload=payload)
        except ValidationError:
            continue
        seen_hints.add(hint_identity)
        seen_labels.add(label_identity)
        used_ids.add(action_id)
        staged.append(action)

    filtered = [action for action in staged if not _is_low_signal(action)]
    if len(filtered) >= 2:
        staged = filtered
    return staged[:MAX_SANITIZED_ACTIONS]


