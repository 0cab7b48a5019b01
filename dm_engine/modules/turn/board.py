from __future__ import annotations

from dataclasses import dataclass, field

from dm_engine.modules.presentation.deterministic import compact_text

BOARD_MODES: tuple[str, ...] = ("town", "travel", "dungeon", "combat")
PANELS: tuple[str, ...] = ("character", "gear", "skills", "loadouts", "progression", "quests", "commands", "settings")
MAX_VENDORS = 6


def _as_dict(value: object) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: object) -> list:
    return value if isinstance(value, list) else []


def _text(value: object) -> str:
    return str(value).strip() if isinstance(value, (str, int, float)) else ""


def entry_text(entry: object) -> str:
    if isinstance(entry, str):
        return entry.strip()
    if isinstance(entry, dict):
        for key in ("title", "text", "line", "summary", "name"):
            text = _text(entry.get(key))
            if text:
                return text
    return ""


@dataclass(slots=True)
class BoardSummary:
    board_type: str = "town"
    board_id: str | None = None
    title: str = ""
    region_name: str | None = None
    vendors: list[dict] = field(default_factory=list)
    rumors: list[str] = field(default_factory=list)
    objectives: list[str] = field(default_factory=list)
    enemies: list[dict] = field(default_factory=list)
    dead_combatant_ids: set[str] = field(default_factory=set)
    combat_events: list[dict] = field(default_factory=list)
    companions: list[dict] = field(default_factory=list)
    pending_checkins: list[dict] = field(default_factory=list)
    tension: int = 0
    boss_present: bool = False
    player_hp_pct: float | None = None
    time_pressure: str | None = None
    faction_tension: str | None = None
    resource_window: str | None = None
    travel_goal: str | None = None

    @property
    def mode(self) -> str:
        return self.board_type if self.board_type in BOARD_MODES else "town"

    @property
    def vendor_ids(self) -> set[str]:
        return {vendor["id"] for vendor in self.vendors}

    @property
    def living_enemies(self) -> list[dict]:
        return [enemy for enemy in self.enemies if enemy.get("alive", True) and enemy["id"] not in self.dead_combatant_ids]

    @property
    def hooks(self) -> list[str]:
        return [*self.objectives, *self.rumors]

    def vendor_by_id(self, vendor_id: str) -> dict | None:
        for vendor in self.vendors:
            if vendor["id"] == vendor_id:
                return vendor
        return None

    def to_prompt_dict(self) -> dict:
        return {
            "board_type": self.mode,
            "title": self.title or None,
            "region_name": self.region_name,
            "vendors": [{"id": v["id"], "name": v["name"], "services": v.get("services", [])} for v in self.vendors],
            "rumors": self.rumors[-6:],
            "objectives": self.objectives[-6:],
            "enemies": [{"id": e["id"], "name": e["name"], "hp": e.get("hp")} for e in self.living_enemies],
            "companions": [{"companion_id": c["companion_id"], "name": c["name"], "mood": c.get("mood")} for c in self.companions],
            "pending_companion_checkins": self.pending_checkins[-2:],
            "tension": self.tension,
            "boss_present": self.boss_present,
            "travel_goal": self.travel_goal,
        }


def _vendors(raw: dict) -> list[dict]:
    vendors: list[dict] = []
    for index, entry in enumerate(_as_list(raw.get("vendors"))[:MAX_VENDORS]):
        if isinstance(entry, str) and entry.strip():
            vendors.append({"id": f"vendor_{index + 1}", "name": entry.strip()[:64], "services": []})
            continue
        if not isinstance(entry, dict):
            continue
        vendor_id = _text(entry.get("id")) or f"vendor_{index + 1}"
        name = _text(entry.get("name")) or f"Vendor {index + 1}"
        services = [svc for svc in _as_list(entry.get("services")) if isinstance(svc, str)][:4]
        vendors.append({"id": vendor_id, "name": name, "services": services})
    return vendors


def _enemies(raw: dict) -> tuple[list[dict], bool]:
    enemies: list[dict] = []
    boss = False
    for entry in _as_list(raw.get("combatants")):
        if not isinstance(entry, dict):
            continue
        if str(entry.get("side") or entry.get("entity_type") or "enemy").lower() not in {"enemy", "npc", "hostile"}:
            continue
        enemy_id = _text(entry.get("id"))
        if not enemy_id:
            continue
        hp = entry.get("hp")
        alive = entry.get("is_alive", entry.get("alive", True)) is not False and not (isinstance(hp, (int, float)) and hp <= 0)
        is_boss = bool(entry.get("is_boss"))
        boss = boss or (is_boss and alive)
        enemies.append({"id": enemy_id, "name": _text(entry.get("name")) or "Enemy", "hp": hp, "alive": alive, "is_boss": is_boss})
    return enemies, boss


def summarize_board_state(
    board_type: str | None,
    state_json: dict | None,
    *,
    board_id: object = None,
    heat: int | None = None,
    character: dict | None = None,
    companions: list[dict] | None = None,
) -> BoardSummary:
    raw = _as_dict(state_json)
    world_seed = _as_dict(raw.get("world_seed"))
    enemies, boss_present = _enemies(raw)
    dead_ids = {str(entry) for entry in _as_list(raw.get("dead_combatant_ids")) if _text(entry)}
    dead_ids.update(enemy["id"] for enemy in enemies if not enemy["alive"])

    player_hp_pct = None
    if character:
        hp_max = character.get("hp_max") or 0
        if isinstance(hp_max, (int, float)) and hp_max > 0:
            player_hp_pct = max(0.0, min(1.0, float(character.get("hp") or 0) / float(hp_max)))

    tension = raw.get("tension", heat if heat is not None else 0)
    checkins = [entry for entry in _as_list(raw.get("companion_checkins")) if isinstance(entry, dict)]

    return BoardSummary(
        board_type=str(board_type or "town").strip().lower(),
        board_id=str(board_id) if board_id else None,
        title=_text(world_seed.get("title")) or _text(raw.get("title")),
        region_name=_text(raw.get("region_name")) or None,
        vendors=_vendors(raw),
        rumors=[text for text in (compact_text(entry_text(e), 140) for e in _as_list(raw.get("rumors"))) if text],
        objectives=[text for text in (compact_text(entry_text(e), 140) for e in _as_list(raw.get("objectives"))) if text],
        enemies=enemies,
        dead_combatant_ids=dead_ids,
        combat_events=[entry for entry in _as_list(raw.get("combat_events")) if isinstance(entry, dict)],
        companions=[dict(entry) for entry in (companions or [])],
        pending_checkins=[entry for entry in checkins if not entry.get("resolved")],
        tension=max(0, min(100, int(tension))) if isinstance(tension, (int, float)) else 0,
        boss_present=boss_present or bool(raw.get("boss_present")),
        player_hp_pct=player_hp_pct,
        time_pressure=_text(raw.get("time_pressure")) or None,
        faction_tension=_text(raw.get("faction_tension")) or None,
        resource_window=_text(raw.get("resource_window")) or None,
        travel_goal=_text(raw.get("travel_goal")) or None,
    )
