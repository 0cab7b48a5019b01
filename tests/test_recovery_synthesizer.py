from __future__ import annotations

import pytest

from dm_engine.modules.presentation.deterministic import word_count
from dm_engine.modules.presentation.state import PresentationState, merge_presentation_state
from dm_engine.modules.turn.board import BoardSummary, summarize_board_state
from dm_engine.modules.turn.contract import ContractValidator
from dm_engine.modules.turn.policy import leaks_internal_vocabulary
from dm_engine.modules.turn.recovery import RecoveryInput, build_fallback_actions, synthesize_recovery
from tests.support.world import TOWN_STATE

GOBLIN_FIGHT = {
    "combatants": [
        {"id": "gob-1", "name": "Goblin Cutter", "side": "enemy", "hp": 9},
        {"id": "gob-2", "name": "Goblin Shaman", "side": "enemy", "hp": 0},
    ],
    "combat_events": [
        {
            "id": "e1",
            "turn_index": 3,
            "event_type": "damage",
            "created_at": "2024-01-01T00:00:01Z",
            "payload": {
                "source_combatant_id": "hero",
                "source_name": "Wren",
                "target_combatant_id": "gob-1",
                "target_name": "Goblin Cutter",
                "damage_to_hp": 4,
            },
        }
    ],
}

BOARDS = {
    "town": summarize_board_state("town", TOWN_STATE),
    "travel": summarize_board_state("travel", {"rumors": ["Wolves on the ridge."], "travel_goal": "Old Mill"}),
    "dungeon": summarize_board_state("dungeon", {"objectives": ["Find the lever."], "resource_window": "two torches"}),
    "combat": summarize_board_state("combat", GOBLIN_FIGHT),
    "empty": BoardSummary(),
}


def _assert_contract_valid(result, board: BoardSummary, word_band=(40, 140)) -> None:
    validator = ContractValidator(word_band=word_band, board_mode=result.mode, board_summary=board)
    outcome = validator.validate_payload(result.output.model_dump(mode="json"))
    assert outcome.ok, outcome.reasons


@pytest.mark.parametrize("name", sorted(BOARDS))
def test_recovery_is_contract_valid_for_every_board(name: str) -> None:
    board = BOARDS[name]
    result = synthesize_recovery(RecoveryInput(board=board, reason="invalid_json:missing_object", attempts=2))
    _assert_contract_valid(result, board)
    assert 2 <= len(result.output.ui_actions) <= 4
    assert 40 <= word_count(result.output.narration) <= 140
    assert result.output.scene["recovery"] is True
    log_entry = result.output.runtime_delta.discovery_log[0]
    assert log_entry == {
        "kind": "dm_recovery",
        "reason": "invalid_json:missing_object",
        "mode": result.mode,
        "tone": result.tone,
        "attempts": 2,
    }
    assert not leaks_internal_vocabulary(result.output.narration)


@pytest.mark.parametrize("band", [(10, 20), (60, 180), (120, 160)])
def test_recovery_respects_word_band(band: tuple[int, int]) -> None:
    result = synthesize_recovery(RecoveryInput(board=BOARDS["town"], word_band=band))
    assert band[0] <= word_count(result.output.narration) <= band[1]
    _assert_contract_valid(result, BOARDS["town"], word_band=band)


def test_recovery_is_deterministic() -> None:
    data = RecoveryInput(board=BOARDS["dungeon"], reason="exhausted")
    assert synthesize_recovery(data).output == synthesize_recovery(data).output


def test_fresh_combat_events_force_combat_mode_and_advance_cursor() -> None:
    board = summarize_board_state("dungeon", GOBLIN_FIGHT)
    result = synthesize_recovery(RecoveryInput(board=board, mode="dungeon"))
    assert result.mode == "combat"
    assert "Goblin Cutter" in result.output.narration
    assert result.presentation_delta.last_event_cursor == "3:e1:2024-01-01T00:00:01Z"
    assert result.output.scene["combat_focus"] == "Goblin Cutter"


def test_already_narrated_events_are_not_replayed() -> None:
    board = summarize_board_state("dungeon", GOBLIN_FIGHT)
    presentation = PresentationState(last_event_cursor="3:e1:2024-01-01T00:00:01Z")
    result = synthesize_recovery(RecoveryInput(board=board, presentation=presentation, mode="dungeon"))
    assert result.mode == "dungeon"
    assert result.presentation_delta.last_event_cursor is None


def test_follow_up_recovery_varies_tone_and_lines() -> None:
    board = BOARDS["town"]
    first = synthesize_recovery(RecoveryInput(board=board))
    presentation = merge_presentation_state(PresentationState(), first.presentation_delta)
    second = synthesize_recovery(RecoveryInput(board=board, presentation=presentation))
    assert second.tone != first.tone
    assert second.output.narration != first.output.narration
    assert second.presentation_delta.last_board_opener_id != first.presentation_delta.last_board_opener_id


def test_combat_fallback_actions_target_living_enemy() -> None:
    actions = build_fallback_actions("combat", BOARDS["combat"])
    strike = actions[0]
    assert strike.intent == "combat_action"
    assert strike.payload == {"target_combatant_id": "gob-1"}
    assert strike.label == "Press the attack on Goblin Cutter"


def test_town_fallback_offers_real_vendor_and_pending_companion() -> None:
    state = dict(TOWN_STATE, companion_checkins=[{"companion_id": "comp_ivy", "line": "Ivy: The fence is lying."}])
    board = summarize_board_state("town", state, companions=[{"companion_id": "comp_ivy", "name": "Ivy"}])
    actions = build_fallback_actions("town", board)
    assert actions[0].intent == "companion_action"
    assert actions[0].label == "Check in with Ivy"
    assert any(a.intent == "shop_action" and a.payload["vendorId"] == "vendor_smith" for a in actions)
    result = synthesize_recovery(RecoveryInput(board=board))
    assert "The fence is lying." in result.output.narration


def _hit(event_id: str, turn_index: int, actor: tuple[str, str], target: tuple[str, str], amount: int) -> dict:
    return {
        "id": event_id,
        "turn_index": turn_index,
        "event_type": "damage",
        "created_at": f"2024-01-01T00:00:{turn_index:02d}Z",
        "payload": {
            "source_combatant_id": actor[0],
            "source_name": actor[1],
            "target_combatant_id": target[0],
            "target_name": target[1],
            "damage_to_hp": amount,
        },
    }


def test_caller_event_batch_drives_recovery_and_skips_hinted_dead() -> None:
    board = BOARDS["town"]
    batch = [
        _hit("ogre-hit", 4, ("hero", "Wren"), ("ogre-1", "Cave Ogre"), 7),
        _hit("wolf-bite", 4, ("wolf-1", "Grey Wolf"), ("hero", "Wren"), 3),
    ]
    result = synthesize_recovery(
        RecoveryInput(board=board, combat_events=batch, state_hint={"dead_combatant_ids": ["wolf-1"]})
    )
    assert result.mode == "combat"
    assert result.output.scene["environment"] == "combat"
    assert "Cave Ogre" in result.output.narration
    assert "Grey Wolf" not in result.output.narration
    assert result.presentation_delta.last_event_cursor is not None

    presentation = merge_presentation_state(PresentationState(), result.presentation_delta)
    again = synthesize_recovery(RecoveryInput(board=board, presentation=presentation, combat_events=batch))
    assert again.mode == "town"
