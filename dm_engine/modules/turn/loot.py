from __future__ import annotations

from dataclasses import dataclass, field

from dm_engine.modules.turn.seed import rng_int, rng_pick, weighted_pick

LOOT_RARITIES: tuple[str, ...] = ("common", "magical", "unique", "legendary", "mythic", "unhinged")
RARITY_BUDGETS: dict[str, int] = {
    "common": 8,
    "magical": 16,
    "unique": 24,
    "legendary": 40,
    "mythic": 60,
    "unhinged": 70,
}

NAME_PREFIXES: tuple[str, ...] = ("Spark", "Moon", "Storm", "Lantern", "Star", "Frost", "Ember", "Clover", "Sun", "Rainbow")
NAME_SUFFIXES: tuple[str, ...] = ("Burst", "Ward", "Lance", "Nova", "Bloom", "Breaker", "Halo", "Howl", "Glint", "Arc")
SLOT_POOL: tuple[str, ...] = ("weapon", "armor", "helm", "gloves", "boots", "belt", "amulet", "ring", "trinket")
STAT_KEYS: tuple[str, ...] = ("offense", "defense", "control", "support", "mobility", "utility")
_ARMOR_SLOTS = {"armor", "helm", "gloves", "boots", "belt"}
_JEWELRY_SLOTS = {"ring", "trinket", "amulet"}


@dataclass(slots=True)
class LootRoll:
    name: str
    rarity: str
    slot: str
    item_power: int
    stat_mods: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "rarity": self.rarity,
            "slot": self.slot,
            "item_power": self.item_power,
            "stat_mods": dict(self.stat_mods),
        }


def rarity_budget(rarity: str) -> int:
    return RARITY_BUDGETS.get(rarity, RARITY_BUDGETS["common"])


def pick_loot_rarity(seed: int | str, label: str, level: int) -> str:
    late = max(0, level - 25)
    return weighted_pick(
        seed,
        label,
        [
            ("common", max(5, 65 - late)),
            ("magical", max(10, 26 + int(late * 0.3))),
            ("unique", max(6, 8 + int(late * 0.25))),
            ("legendary", max(2, level // 12)),
            ("mythic", max(1, level // 20)),
            ("unhinged", 1 if level >= 70 else 0),
        ],
    )


def _slot_weight(slot: str, class_role: str) -> int:
    if class_role in {"tank", "support"} and slot in {"armor", "helm", "belt"}:
        return 8
    if class_role in {"dps", "skirmisher"} and slot in {"weapon", "ring", "trinket"}:
        return 8
    if class_role == "controller" and slot in {"weapon", "amulet", "trinket"}:
        return 7
    return 4


def roll_loot_item(seed: int | str, label: str, *, level: int, class_role: str = "") -> LootRoll:
    """Pure loot roll: the same seed, label and level always produce the same item."""
    level = max(1, int(level))
    rarity = pick_loot_rarity(seed, f"{label}:rarity", level)
    budget = rarity_budget(rarity)
    slot = weighted_pick(seed, f"{label}:slot", [(slot, _slot_weight(slot, class_role)) for slot in SLOT_POOL])

    stat_mods: dict[str, int] = {}
    stat_count = max(1, min(4, budget // 16 + 1))
    for index in range(stat_count):
        key = rng_pick(seed, f"{label}:stat:{index}", STAT_KEYS)
        stat_mods[key] = stat_mods.get(key, 0) + rng_int(seed, f"{label}:roll:{key}:{index}", 1, max(2, budget // 3))

    if slot == "weapon":
        stat_mods["weapon_power"] = rng_int(seed, f"{label}:weapon_power", 2, max(5, level // 2 + budget // 5))
    elif slot in _ARMOR_SLOTS:
        stat_mods["armor_power"] = rng_int(seed, f"{label}:armor_power", 1, max(4, level // 3 + budget // 6))
        stat_mods["resist"] = rng_int(seed, f"{label}:resist", 0, max(3, budget // 8))
    elif slot in _JEWELRY_SLOTS:
        stat_mods["power_max"] = rng_int(seed, f"{label}:power_max", 5, max(15, level // 2 + budget))

    name = f"{rng_pick(seed, f'{label}:prefix', NAME_PREFIXES)} {rng_pick(seed, f'{label}:suffix', NAME_SUFFIXES)}"
    return LootRoll(
        name=name,
        rarity=rarity,
        slot=slot,
        item_power=max(1, int(level * (1 + budget / 40))),
        stat_mods=stat_mods,
    )
