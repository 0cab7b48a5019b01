from __future__ import annotations

import threading
import uuid

from sqlalchemy import func, select

from dm_engine.config import settings
from dm_engine.db import session as db_session
from dm_engine.db.models import Character, Item, TurnRewardGrant
from dm_engine.modules.turn.commit import TurnCommitRequest, commit_turn
from dm_engine.modules.turn.loot import LOOT_RARITIES, RARITY_BUDGETS, rarity_budget, roll_loot_item
from dm_engine.modules.turn.rewards import (
    RewardGuard,
    RewardPlan,
    apply_story_reward,
    apply_xp,
    hinted_xp,
    plan_story_reward,
    xp_to_next_level,
)
from dm_engine.modules.turn.schemas import RuntimeDelta
from dm_engine.modules.turn.seed import TurnPRNG, TurnSeed
from tests.support.world import SeededWorld, seed_world


def _commit_first_turn(world: SeededWorld) -> uuid.UUID:
    with db_session.SessionLocal() as db:
        result = commit_turn(
            db,
            TurnCommitRequest(
                campaign_id=world.campaign_id,
                player_id=world.player_id,
                board_id=world.board_id,
                board_type="town",
                expected_turn_index=0,
                turn_seed=42,
            ),
        )
    return result.turn_id


def _grant_count(turn_id: uuid.UUID) -> int:
    with db_session.SessionLocal() as db:
        return int(
            db.execute(select(func.count()).select_from(TurnRewardGrant).where(TurnRewardGrant.turn_id == turn_id))
            .scalar_one()
        )


def test_loot_roll_is_pure() -> None:
    first = roll_loot_item(1234, "story_reward:loot:story_reward_v1", level=12, class_role="tank")
    second = roll_loot_item(1234, "story_reward:loot:story_reward_v1", level=12, class_role="tank")
    assert first == second
    assert first.rarity in LOOT_RARITIES
    assert first.stat_mods


def test_loot_item_power_follows_rarity_budget() -> None:
    for index in range(40):
        item = roll_loot_item(index, "loot", level=10)
        assert item.item_power == max(1, int(10 * (1 + RARITY_BUDGETS[item.rarity] / 40)))
        assert item.rarity != "unhinged"


def test_unknown_rarity_uses_common_budget() -> None:
    assert rarity_budget("cursed") == RARITY_BUDGETS["common"]


def test_reward_plan_always_draws_twice() -> None:
    seed = TurnSeed(99)
    empty = TurnPRNG(seed)
    plan = plan_story_reward(empty, seed, RuntimeDelta(), level=1)
    assert plan.xp == 0
    assert [entry["label"] for entry in empty.roll_log] == ["story_reward:xp_jitter", "story_reward:loot_chance"]

    hinted = TurnPRNG(seed)
    plan_story_reward(hinted, seed, RuntimeDelta(reward_hints=[{"xp": 15}]), level=1)
    assert len(hinted.roll_log) == 2


def test_hinted_xp_is_capped_and_ignores_junk() -> None:
    delta = RuntimeDelta(reward_hints=[{"xp": 500}, {"xp": True}, {"xp": "10"}, {"kind": "story"}])
    assert hinted_xp(delta) == settings.reward_xp_cap
    prng = TurnPRNG(TurnSeed(7))
    plan = plan_story_reward(prng, TurnSeed(7), delta, level=3)
    assert plan.xp == settings.reward_xp_cap


def test_loot_chance_gates_loot() -> None:
    settings.reward_loot_chance = 1.0
    plan = plan_story_reward(TurnPRNG(TurnSeed(5)), TurnSeed(5), RuntimeDelta(), level=4)
    assert plan.loot is not None
    assert plan.loot == roll_loot_item(5, "story_reward:loot:story_reward_v1", level=4)

    settings.reward_loot_chance = 0.0
    plan = plan_story_reward(TurnPRNG(TurnSeed(5)), TurnSeed(5), RuntimeDelta(), level=4)
    assert plan.loot is None
    assert plan.is_empty


def test_apply_xp_levels_up() -> None:
    character = Character(level=1, xp=0, xp_to_next=250)
    assert apply_xp(character, 300) == 1
    assert character.level == 2
    assert character.xp == 50
    assert character.xp_to_next == xp_to_next_level(2)


def test_reward_guard_is_at_most_once() -> None:
    world = seed_world()
    turn_id = _commit_first_turn(world)
    guard = RewardGuard()
    with db_session.SessionLocal() as db:
        first = guard.grant(
            db, turn_id=turn_id, campaign_id=world.campaign_id, character_id=world.character_id, reward_key="k"
        )
        second = guard.grant(
            db, turn_id=turn_id, campaign_id=world.campaign_id, character_id=world.character_id, reward_key="k"
        )
    assert first.guard_id is not None
    assert not first.duplicate
    assert second.duplicate
    assert _grant_count(turn_id) == 1


def test_reward_guard_concurrent_claims_have_one_winner() -> None:
    world = seed_world()
    turn_id = _commit_first_turn(world)
    barrier = threading.Barrier(4)
    results = []
    lock = threading.Lock()

    def claim() -> None:
        barrier.wait()
        with db_session.SessionLocal() as db:
            result = RewardGuard().grant(
                db,
                turn_id=turn_id,
                campaign_id=world.campaign_id,
                character_id=world.character_id,
                reward_key="story_reward_v1",
            )
        with lock:
            results.append(result)

    threads = [threading.Thread(target=claim) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 4
    assert sum(1 for result in results if not result.duplicate) == 1
    assert _grant_count(turn_id) == 1


def test_apply_story_reward_grants_once() -> None:
    world = seed_world()
    turn_id = _commit_first_turn(world)
    loot = roll_loot_item(11, "story_reward:loot:story_reward_v1", level=1)
    plan = RewardPlan(reward_key="story_reward_v1", xp=30, loot=loot)

    with db_session.SessionLocal() as db:
        summary = apply_story_reward(
            db, turn_id=turn_id, campaign_id=world.campaign_id, character_id=world.character_id, plan=plan
        )
        replay = apply_story_reward(
            db, turn_id=turn_id, campaign_id=world.campaign_id, character_id=world.character_id, plan=plan
        )

    assert summary["granted"] is True
    assert summary["xp"] == 30
    assert summary["loot"]["name"] == loot.name
    assert replay["granted"] is False
    assert replay["reason"] == "duplicate"

    with db_session.SessionLocal() as db:
        character = db.get(Character, world.character_id)
        assert character.xp == 30
        items = db.execute(select(Item).where(Item.owner_character_id == world.character_id)).scalars().all()
        assert [item.name for item in items] == [loot.name]
        grant = db.execute(select(TurnRewardGrant).where(TurnRewardGrant.turn_id == turn_id)).scalar_one()
        assert grant.xp_amount == 30
        assert grant.loot_item_id == items[0].id


def test_apply_story_reward_skips_without_character_or_reward() -> None:
    world = seed_world(with_character=False)
    turn_id = _commit_first_turn(world)
    with db_session.SessionLocal() as db:
        missing = apply_story_reward(
            db,
            turn_id=turn_id,
            campaign_id=world.campaign_id,
            character_id=None,
            plan=RewardPlan(reward_key="story_reward_v1", xp=10),
        )
        empty = apply_story_reward(
            db,
            turn_id=turn_id,
            campaign_id=world.campaign_id,
            character_id=uuid.uuid4(),
            plan=RewardPlan(reward_key="story_reward_v1"),
        )
    assert missing["reason"] == "no_character"
    assert empty["reason"] == "no_reward"
    assert _grant_count(turn_id) == 0
