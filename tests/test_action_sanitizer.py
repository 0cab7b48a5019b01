from __future__ import annotations

from dm_engine.modules.turn.actions import canonical_intent, is_generic_label, sanitize_actions
from dm_engine.modules.turn.board import summarize_board_state
from tests.support.world import TOWN_STATE

TOWN = summarize_board_state("town", TOWN_STATE)
COMBAT = summarize_board_state(
    "combat",
    {"combatants": [{"id": "gob-1", "name": "Goblin Cutter", "side": "enemy", "hp": 9}]},
)


def test_intent_aliases_resolve_to_canonical_set() -> None:
    assert canonical_intent("Shop") == "shop_action"
    assert canonical_intent("enter_dungeon") == "quest_action"
    assert canonical_intent("fight") == "combat_start"
    assert canonical_intent("quest_action") == "quest_action"
    assert canonical_intent("dance") is None
    assert canonical_intent(None) is None


def test_payload_aliases_and_label_repair() -> None:
    actions = sanitize_actions(
        [
            {"id": "s", "label": "Continue", "intent": "vendor", "vendor_id": "vendor_apothecary"},
            {"id": "q", "label": "Option 2", "intent": "quest"},
        ],
        "town",
        TOWN,
    )
    shop, quest = actions
    assert shop.intent == "shop_action"
    assert shop.payload == {"vendorId": "vendor_apothecary"}
    assert shop.label == "Visit The Green Vial"
    assert shop.hint_key == "shop_action:vendor_apothecary"
    assert shop.prompt == "I visit The Green Vial and check what they have for sale."
    assert quest.label.startswith("Pursue Find the missing caravan")


def test_unknown_intent_becomes_dm_prompt() -> None:
    actions = sanitize_actions(
        [
            {"label": "Sing a song for the crowd", "intent": "dance", "prompt": "I sing a rousing song for the crowd."},
            {"label": "Open the map", "intent": "panel", "payload": {"panel": "map"}},
        ],
        "town",
        TOWN,
    )
    assert [a.intent for a in actions] == ["dm_prompt", "open_panel"]
    assert actions[1].payload["panel"] == "quests"
    assert actions[0].id == "dm_prompt-1"


def test_board_rules_downgrade_out_of_mode_intents() -> None:
    town = sanitize_actions(
        [{"label": "Stab the goblin", "intent": "attack", "prompt": "I stab the nearest goblin hard."}],
        "town",
        TOWN,
    )
    assert town[0].intent == "dm_prompt"

    combat = sanitize_actions(
        [
            {"label": "Start a brawl", "intent": "combat_start", "prompt": "I start swinging at anyone near me."},
            {"label": "", "intent": "combat_action", "payload": {"target_id": "gob-1"}},
        ],
        "combat",
        COMBAT,
    )
    assert combat[0].intent == "dm_prompt"
    assert combat[1].intent == "combat_action"
    assert combat[1].label == "Strike Goblin Cutter"
    assert combat[1].payload == {"target_combatant_id": "gob-1"}


def test_shop_without_vendors_becomes_dm_prompt() -> None:
    travel = summarize_board_state("travel", {"rumors": ["Wolves on the ridge."]})
    actions = sanitize_actions(
        [{"label": "Buy supplies", "intent": "shop_action", "payload": {"vendorId": "vendor_smith"}}],
        "travel",
        travel,
    )
    assert actions[0].intent == "dm_prompt"


def test_transition_intents_set_board_target() -> None:
    actions = sanitize_actions([{"label": "Go", "intent": "enter_dungeon"}], "town", TOWN)
    assert actions[0].intent == "quest_action"
    assert actions[0].payload["boardTarget"] == "dungeon"
    assert actions[0].label == "Push into the dungeon"


def test_duplicates_are_dropped_and_ids_stay_unique() -> None:
    actions = sanitize_actions(
        [
            {"id": "x", "label": "Visit the forge", "intent": "shop", "payload": {"vendorId": "vendor_smith"}},
            {"id": "x", "label": "Visit the forge again", "intent": "shop", "payload": {"vendorId": "vendor_smith"}},
            {"id": "x", "label": "Ask about the caravan", "intent": "quest_action", "prompt": "I ask about the caravan."},
            "garbage",
            None,
        ],
        "town",
        TOWN,
    )
    assert len(actions) == 2
    assert len({a.id for a in actions}) == 2


def test_low_signal_prompts_are_filtered_when_enough_remain() -> None:
    actions = sanitize_actions(
        [
            {"label": "Keep going", "intent": "dm_prompt", "prompt": "continue"},
            {"label": "Visit the forge", "intent": "shop_action", "payload": {"vendorId": "vendor_smith"}},
            {"label": "Ask about the caravan", "intent": "quest_action", "prompt": "I ask about the caravan."},
        ],
        "town",
        TOWN,
    )
    assert [a.intent for a in actions] == ["shop_action", "quest_action"]


def test_at_most_six_actions_survive() -> None:
    raw = [
        {"label": f"Follow trail number {i}", "intent": "quest_action", "prompt": f"I follow trail {i}."}
        for i in range(10)
    ]
    assert len(sanitize_actions(raw, "town", TOWN)) == 6


def test_generic_label_detection() -> None:
    assert is_generic_label("Action 1")
    assert is_generic_label("continue")
    assert is_generic_label("")
    assert not is_generic_label("Visit the forge")
