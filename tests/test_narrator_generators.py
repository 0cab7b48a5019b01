from __future__ import annotations

import json

import pytest

from dm_engine.config import settings
from dm_engine.modules.llm_boundary import service as llm_service
from dm_engine.modules.llm_boundary.client import LLMCallError
from dm_engine.modules.llm_boundary.errors import LLMUnavailableError
from dm_engine.modules.llm_boundary.service import (
    ChatCompletionsGenerator,
    FakeNarratorGenerator,
    get_narrator_generator,
)
from dm_engine.modules.presentation.state import PresentationState
from dm_engine.modules.turn.board import summarize_board_state
from dm_engine.modules.turn.contract import ContractValidator
from dm_engine.modules.turn.prompts import build_turn_messages
from tests.support.scripted import narrator_json
from tests.support.world import TOWN_STATE


def _messages(board, word_band=(40, 140)):
    messages, _, _ = build_turn_messages(
        history=[{"role": "user", "content": "I look for the smith."}],
        board=board,
        presentation=PresentationState(),
        turn_mode="standard",
        turn_index=2,
        word_band=word_band,
    )
    return messages


def test_generator_selection_follows_api_key() -> None:
    settings.llm_api_key = ""
    assert isinstance(get_narrator_generator(), FakeNarratorGenerator)
    settings.llm_api_key = "sk-test"
    assert isinstance(get_narrator_generator(), ChatCompletionsGenerator)


def test_fake_generator_output_passes_contract_in_town() -> None:
    board = summarize_board_state("town", TOWN_STATE)
    raw = FakeNarratorGenerator().generate(_messages(board), temperature=0.7)
    outcome = ContractValidator(word_band=(40, 140), board_summary=board, board_mode="town").validate_text(raw)
    assert outcome.ok, outcome.reasons
    assert any(action.intent == "shop_action" for action in outcome.output.ui_actions)


def test_fake_generator_output_passes_contract_in_combat() -> None:
    state = {"combatants": [{"id": "gob-1", "name": "Goblin Cutter", "side": "enemy", "hp": 9}]}
    board = summarize_board_state("combat", state)
    raw = FakeNarratorGenerator().generate(_messages(board), temperature=0.7)
    outcome = ContractValidator(word_band=(40, 140), board_summary=board, board_mode="combat").validate_text(raw)
    assert outcome.ok, outcome.reasons
    strike = outcome.output.ui_actions[0]
    assert strike.intent == "combat_action"
    assert strike.payload["target_combatant_id"] == "gob-1"


def test_fake_generator_is_deterministic() -> None:
    board = summarize_board_state("town", TOWN_STATE)
    first = FakeNarratorGenerator().generate(_messages(board), temperature=0.7)
    second = FakeNarratorGenerator().generate(_messages(board), temperature=0.1)
    assert first == second
    assert json.loads(first)["runtime_delta"]["reward_hints"] == [{"kind": "story", "xp": 10}]


def test_chat_completions_generator_maps_call_errors(monkeypatch) -> None:
    settings.llm_api_key = "sk-test"

    async def _failing(**kwargs):
        del kwargs
        raise LLMCallError("upstream down")

    monkeypatch.setattr(llm_service, "call_chat_completions_stream_text", _failing)
    with pytest.raises(LLMUnavailableError):
        ChatCompletionsGenerator().generate([{"role": "user", "content": "hi"}], temperature=0.5)


def test_chat_completions_generator_passes_temperature(monkeypatch) -> None:
    settings.llm_api_key = "sk-test"
    seen: dict = {}

    async def _ok(**kwargs):
        seen.update(kwargs)
        return '{"narration": "ok"}'

    monkeypatch.setattr(llm_service, "call_chat_completions_stream_text", _ok)
    text = ChatCompletionsGenerator().generate([{"role": "user", "content": "hi"}], temperature=0.3)
    assert text == '{"narration": "ok"}'
    assert seen["temperature"] == 0.3
    assert seen["api_key"] == "sk-test"


def test_chat_completions_generator_returns_large_candidates_whole(monkeypatch) -> None:
    settings.llm_api_key = "sk-test"
    board = summarize_board_state("town", TOWN_STATE)
    patches = [
        {"op": "FACT_CREATE", "fact_key": f"ledger_entry_{index}", "data": {"note": "The caravan ledger lists a debt. " * 6}}
        for index in range(60)
    ]
    candidate = narrator_json(words=70, patches=patches)
    assert len(candidate) > 12000

    async def _large(**kwargs):
        del kwargs
        return candidate

    monkeypatch.setattr(llm_service, "call_chat_completions_stream_text", _large)
    text = ChatCompletionsGenerator().generate(_messages(board), temperature=0.7)
    assert text == candidate

    outcome = ContractValidator(word_band=(40, 140), board_summary=board, board_mode="town").validate_text(text)
    assert outcome.ok, outcome.reasons
    assert len(outcome.output.patches) == 60
