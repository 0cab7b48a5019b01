from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dm_engine.config import settings
from dm_engine.db.models import Character, Item, TurnRewardGrant
from dm_engine.modules.turn.loot import LootRoll, roll_loot_item
from dm_engine.modules.turn.schemas import RuntimeDelta
from dm_engine.modules.turn.seed import TurnPRNG, TurnSeed

log = logging.getLogger(__name__)

XP_JITTER_MAX = 6


@dataclass(slots=True)
class RewardGrantResult:
    guard_id: uuid.UUID | None = None
    duplicate: bool = False


@dataclass(slots=True)
class RewardPlan:
    reward_key: str
    xp: int = 0
    loot: LootRoll | None = None

    @property
    def is_empty(self) -> bool:
        return self.xp <= 0 and self.loot is None


def xp_to_next_level(level: int) -> int:
    return 140 + max(1, int(level)) * 110


def hinted_xp(runtime_delta: RuntimeDelta) -> int:
    total = 0
    for hint in runtime_delta.reward_hints:
        value = hint.get("xp")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        total += int(value)
    return max(0, min(settings.reward_xp_cap, total))


def plan_story_reward(
    prng: TurnPRNG,
    seed: TurnSeed | int,
    runtime_delta: RuntimeDelta,
    *,
    level: int,
    class_role: str = "",
    boss_present: bool = False,
    reward_key: str | None = None,
) -> RewardPlan:
    """Pre-roll XP and loot from the turn's PRNG. Both draws always happen so the roll log has a fixed shape."""
    key = str(reward_key or settings.reward_key_default)
    base_xp = hinted_xp(runtime_delta)
    jitter = prng.next_int("story_reward:xp_jitter", 0, XP_JITTER_MAX, {"base_xp": base_xp})
    xp = min(settings.reward_xp_cap, base_xp + jitter) if base_xp > 0 else 0

    chance = settings.reward_loot_chance + (settings.reward_loot_boss_bonus if boss_present else 0.0)
    draw = prng.next01("story_reward:loot_chance", {"chance": round(chance, 4), "boss": bool(boss_present)})
    loot = None
    if draw < chance:
        seed_value = seed.value if isinstance(seed, TurnSeed) else int(seed)
        loot = roll_loot_item(seed_value, f"story_reward:loot:{key}", level=level, class_role=class_role)
    return RewardPlan(reward_key=key, xp=xp, loot=loot)


class RewardGuard:
    """At-most-once ledger over ``(turn_id, character_id, reward_key)``. First writer wins."""

    def grant(
        self,
        db: Session,
        *,
        turn_id: uuid.UUID,
        campaign_id: uuid.UUID,
        character_id: uuid.UUID,
        reward_key: str,
        payload: dict | None = None,
    ) -> RewardGrantResult:
        row = TurnRewardGrant(
            turn_id=turn_id,
            campaign_id=campaign_id,
            character_id=character_id,
            reward_key=reward_key,
            payload=payload or {},
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            log.info("turn.reward.duplicate", extra={"turn_id": str(turn_id), "reward_key": reward_key})
            return RewardGrantResult(duplicate=True)
        return RewardGrantResult(guard_id=row.id)

    def release(self, db: Session, guard_id: uuid.UUID) -> None:
        db.execute(delete(TurnRewardGrant).where(TurnRewardGrant.id == guard_id))
        db.commit()


def apply_xp(character: Character, amount: int) -> int:
    level_ups = 0
    character.xp = int(character.xp or 0) + max(0, int(amount))
    threshold = int(character.xp_to_next or xp_to_next_level(character.level))
    while character.xp >= threshold:
        character.xp -= threshold
        character.level = int(character.level or 1) + 1
        threshold = xp_to_next_level(character.level)
        level_ups += 1
    character.xp_to_next = threshold
    return level_ups


def apply_story_reward(
    db: Session,
    *,
    turn_id: uuid.UUID,
    campaign_id: uuid.UUID,
    character_id: uuid.UUID | None,
    plan: RewardPlan,
    guard: RewardGuard | None = None,
) -> dict:
    summary: dict = {"reward_key": plan.reward_key, "granted": False, "duplicate": False, "xp": 0, "loot": None}
    if character_id is None:
        summary["reason"] = "no_character"
        return summary
    if plan.is_empty:
        summary["reason"] = "no_reward"
        return summary

    guard = guard or RewardGuard()
    try:
        result = guard.grant(
            db,
            turn_id=turn_id,
            campaign_id=campaign_id,
            character_id=character_id,
            reward_key=plan.reward_key,
            payload={"planned_xp": plan.xp, "planned_loot": plan.loot.to_dict() if plan.loot else None},
        )
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        log.warning("turn.reward.failed", extra={"turn_id": str(turn_id), "stage": "guard", "error": type(exc).__name__})
        summary["reason"] = f"reward_guard_failed:{type(exc).__name__}"
        return summary
    if result.duplicate:
        summary["duplicate"] = True
        summary["reason"] = "duplicate"
        return summary

    try:
        character = db.get(Character, character_id)
        if character is None:
            raise LookupError("character_missing")
        level_ups = apply_xp(character, plan.xp)

        loot_item_id = None
        if plan.loot is not None:
            item = Item(
                campaign_id=campaign_id,
                owner_character_id=character.id,
                name=plan.loot.name,
                rarity=plan.loot.rarity,
                slot=plan.loot.slot,
                item_power=plan.loot.item_power,
                stat_mods=plan.loot.stat_mods,
                source="story_reward",
            )
            db.add(item)
            db.flush()
            loot_item_id = item.id

        grant = db.get(TurnRewardGrant, result.guard_id)
        if grant is None:
            raise LookupError("reward_guard_missing")
        grant.xp_amount = plan.xp
        grant.loot_item_id = loot_item_id
        grant.payload = {
            "xp": plan.xp,
            "level_ups": level_ups,
            "loot": plan.loot.to_dict() if plan.loot else None,
        }
        db.commit()
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        try:
            guard.release(db, result.guard_id)
        except Exception:  # noqa: BLE001
            db.rollback()
            log.exception("turn.reward.release_failed", extra={"turn_id": str(turn_id)})
        log.warning("turn.reward.failed", extra={"turn_id": str(turn_id), "stage": "apply", "error": type(exc).__name__})
        summary["reason"] = f"reward_apply_failed:{type(exc).__name__}"
        return summary

    summary.update(
        {
            "granted": True,
            "xp": plan.xp,
            "level_ups": level_ups,
            "loot": plan.loot.to_dict() if plan.loot else None,
        }
    )
    return summary
