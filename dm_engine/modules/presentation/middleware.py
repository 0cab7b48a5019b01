from __future__ import annotations

from dataclasses import dataclass, field

from dm_engine.modules.presentation.cursor import EventCursor, cursor_for_event
from dm_engine.modules.presentation.deterministic import dedupe_keep_order, hash_line, pick_deterministic
from dm_engine.modules.presentation.word_banks import COMBAT_FALLBACK_LINE, COMBAT_TONE_PREFIX, NARRATION_VERBS


@dataclass(slots=True)
class CombatEvent:
    id: str
    turn_index: int
    event_type: str
    actor_id: str | None
    actor_name: str
    target_id: str | None
    target_name: str
    amount: int | None
    status_id: str | None
    created_at: str
    to: tuple[int, int] | None
    actor_alive: bool
    skill_name: str | None
    payload: dict = field(default_factory=dict)


@dataclass(slots=True)
class NarrativeLines:
    lines: list[str]
    line_hashes: list[str]
    verb_keys: list[str]
    template_ids: list[str]
    last_event_cursor: str | None


def _as_dict(value: object) -> dict:
    return value if isinstance(value, dict) else {}


def _to_int(value: object) -> int | None:
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _name(value: object, fallback: str) -> str:
    text = str(value).strip() if isinstance(value, str) else ""
    return text or fallback


def normalize_event(event: dict, index: int) -> CombatEvent:
    payload = _as_dict(event.get("payload"))
    actor_id = None
    for candidate in (payload.get("source_combatant_id"), payload.get("actor_combatant_id"), event.get("actor_combatant_id")):
        if isinstance(candidate, str) and candidate:
            actor_id = candidate
            break
    target_id = payload.get("target_combatant_id") if isinstance(payload.get("target_combatant_id"), str) else None
    status = _as_dict(payload.get("status"))
    status_id = _name(status.get("id") or payload.get("status_id"), "")
    to_raw = _as_dict(payload.get("to"))
    to_x, to_y = _to_int(to_raw.get("x")), _to_int(to_raw.get("y"))
    skill = payload.get("skill_name") or payload.get("skill_id")
    event_type = str(event.get("event_type") or "").strip().lower()
    return CombatEvent(
        id=str(event.get("id") or f"{event_type}-{index}").replace(":", "-"),
        turn_index=int(_to_int(event.get("turn_index")) or 0),
        event_type=event_type,
        actor_id=actor_id,
        actor_name=_name(payload.get("source_name") or payload.get("actor_name"), f"Unit {actor_id[:4]}" if actor_id else "Unknown"),
        target_id=target_id,
        target_name=_name(payload.get("target_name"), f"Unit {target_id[:4]}" if target_id else "target"),
        amount=_to_int(payload.get("damage_to_hp", payload.get("amount", payload.get("final_damage")))),
        status_id=status_id or None,
        created_at=str(event.get("created_at") or ""),
        to=(to_x, to_y) if to_x is not None and to_y is not None else None,
        actor_alive=payload.get("actor_alive") is not False and payload.get("source_alive") is not False,
        skill_name=str(skill).strip() if isinstance(skill, str) and skill.strip() else None,
        payload=payload,
    )


def _signature(event: CombatEvent) -> str:
    to = f"{event.to[0]},{event.to[1]}" if event.to else "na"
    return "|".join(
        str(part)
        for part in (
            event.turn_index,
            event.event_type,
            event.actor_id or "na",
            event.target_id or "na",
            "na" if event.amount is None else event.amount,
            event.status_id or "na",
            to,
        )
    )


def _sort_key(event: CombatEvent) -> tuple:
    return EventCursor(event.turn_index, event.id, event.created_at or "na").sort_key()


def _third_person(verb: str) -> str:
    if verb.endswith(("s", "sh", "ch", "x", "z")):
        return f"{verb}es"
    return f"{verb}s"


def _choose_verb(seed_key: str, used: set[str]) -> str:
    available = [verb for verb in NARRATION_VERBS if verb not in used]
    if not available:
        return pick_deterministic(NARRATION_VERBS, seed_key, "verb-fallback")
    return pick_deterministic(available, seed_key, "verb")


def _status_label(status_id: str) -> str:
    return status_id.replace("_", " ").strip()


def build_narrative_lines(
    *,
    seed_key: str,
    tone: str,
    events: list[dict],
    recent_line_hashes: list[str] | None = None,
    recent_verb_keys: list[str] | None = None,
    dead_combatant_ids: set[str] | None = None,
    max_lines: int = 4,
) -> NarrativeLines:
    max_lines = max(1, min(8, int(max_lines)))
    by_signature: dict[str, CombatEvent] = {}
    for index, raw in enumerate(events):
        if not isinstance(raw, dict):
            continue
        event = normalize_event(raw, index)
        if not event.event_type:
            continue
        by_signature.setdefault(_signature(event), event)
    ordered = sorted(by_signature.values(), key=_sort_key)

    dead = set(dead_combatant_ids or set())
    used_verbs = {str(v).strip().lower() for v in (recent_verb_keys or []) if str(v).strip()}
    new_verbs: list[str] = []
    lines: list[str] = []
    template_by_line: dict[str, str] = {}

    def push(text: str, template_id: str) -> None:
        clean = " ".join(text.split())
        if not clean:
            return
        lines.append(clean)
        template_by_line.setdefault(clean, template_id)

    damage_groups: dict[str, dict] = {}
    status_groups: dict[str, dict] = {}
    passthrough: list[CombatEvent] = []
    for event in ordered:
        if event.event_type != "death":
            if not event.actor_alive:
                continue
            if event.actor_id and event.actor_id in dead:
                continue
        if event.event_type == "death":
            if event.target_id:
                dead.add(event.target_id)
            passthrough.append(event)
            continue
        group_key = f"{event.turn_index}|{event.actor_id or 'na'}|{event.target_id or 'na'}"
        if event.event_type == "damage":
            row = damage_groups.setdefault(group_key, {"event": event, "hits": 0, "total": 0})
            row["hits"] += 1
            row["total"] += max(0, event.amount or 0)
            continue
        if event.event_type == "status_applied":
            row = status_groups.setdefault(group_key, {"event": event, "statuses": []})
            if event.status_id and event.status_id not in row["statuses"]:
                row["statuses"].append(event.status_id)
            continue
        passthrough.append(event)

    prefix = COMBAT_TONE_PREFIX.get(tone, "")
    lead = f"{prefix} " if prefix else ""
    for row in damage_groups.values():
        event = row["event"]
        verb = _choose_verb(f"{seed_key}:{event.id}:damage", used_verbs)
        used_verbs.add(verb)
        new_verbs.append(verb)
        if row["hits"] > 1:
            push(
                f"{lead}{event.actor_name} {_third_person(verb)} {event.target_name} {row['hits']} times, {row['total']} total damage.",
                "damage_grouped_multi",
            )
        else:
            push(f"{lead}{event.actor_name} {_third_person(verb)} {event.target_name} for {row['total']}.", "damage_grouped_single")

    for row in status_groups.values():
        event = row["event"]
        labels = [_status_label(s) for s in row["statuses"] if _status_label(s)][:3]
        if labels:
            push(f"{event.actor_name} braces, {', '.join(labels)} locked on {event.target_name}.", "status_merge")

    for event in passthrough:
        amount = max(0, event.amount or 0)
        kind = event.event_type
        if kind == "moved" and event.to:
            push(f"{event.actor_name} shifts to ({event.to[0]}, {event.to[1]}).", "moved")
        elif kind == "miss":
            roll, required = _to_int(event.payload.get("roll_d20")), _to_int(event.payload.get("required_roll"))
            if roll is not None and required is not None:
                push(f"{event.actor_name} misses {event.target_name} ({roll} vs {required}).", "miss_roll")
            else:
                push(f"{event.actor_name} misses {event.target_name}.", "miss")
        elif kind == "healed":
            push(f"{event.actor_name} restores {amount} to {event.target_name}.", "healed")
        elif kind == "power_gain":
            push(f"{event.actor_name} recovers {amount} MP.", "power_gain")
        elif kind == "power_drain":
            push(f"{event.actor_name} drains {amount} MP from {event.target_name}.", "power_drain")
        elif kind == "status_tick":
            label = _status_label(event.status_id) if event.status_id else "status"
            push(f"{event.target_name} takes {amount} from {label}.", "status_tick")
        elif kind == "status_expired":
            label = _status_label(event.status_id) if event.status_id else "effect"
            push(f"{event.target_name}'s {label} fades.", "status_expired")
        elif kind == "armor_shred":
            push(f"{event.actor_name} shreds {amount} armor from {event.target_name}.", "armor_shred")
        elif kind == "death":
            push(f"{event.target_name} drops and is out.", "death")
        elif kind == "skill_used" and event.skill_name:
            push(f"{event.actor_name} unleashes {event.skill_name} on {event.target_name}.", "skill_used")

    recent = {h.strip() for h in (recent_line_hashes or []) if str(h).strip()}
    kept: list[str] = []
    template_ids: list[str] = []
    for line in dedupe_keep_order(lines)[: max_lines * 2]:
        if hash_line(line) in recent:
            continue
        kept.append(line)
        template_ids.append(template_by_line.get(line, "generic_line"))
        if len(kept) >= max_lines:
            break

    if not kept:
        kept = [COMBAT_FALLBACK_LINE]
        template_ids = ["fallback_combat_line"]

    last_cursor = cursor_for_event({"turn_index": ordered[-1].turn_index, "id": ordered[-1].id, "created_at": ordered[-1].created_at}) if ordered else None
    return NarrativeLines(
        lines=kept,
        line_hashes=[hash_line(line) for line in kept],
        verb_keys=new_verbs[-8:],
        template_ids=template_ids[-8:],
        last_event_cursor=last_cursor.encode() if last_cursor else None,
    )
