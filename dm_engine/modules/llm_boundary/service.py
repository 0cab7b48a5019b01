from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

from dm_engine.config import settings
from dm_engine.modules.llm_boundary.client import LLMCallError, call_chat_completions_stream_text
from dm_engine.modules.llm_boundary.errors import LLMUnavailableError
from dm_engine.modules.presentation.deterministic import pick_deterministic, stable_int, word_count
from dm_engine.modules.turn.prompts import extract_turn_context

log = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"
NARRATION_IGNORE_REASONING = True


@dataclass(frozen=True)
class _LLMChannelConfig:
    api_key: str
    base_url: str
    path: str
    model: str
    timeout_s: float


class ChatCompletionsGenerator:
    """Narrator backed by an OpenAI-compatible streaming endpoint."""

    def generate(self, messages: list[dict], *, temperature: float) -> str:
        channel = self._resolve_channel()
        try:
            raw_text = asyncio.run(
                call_chat_completions_stream_text(
                    api_key=channel.api_key,
                    base_url=channel.base_url,
                    path=channel.path,
                    model=channel.model,
                    messages=messages,
                    timeout_s=channel.timeout_s,
                    temperature=temperature,
                    ignore_reasoning=NARRATION_IGNORE_REASONING,
                )
            )
        except LLMCallError as exc:
            log.warning("turn.generator.unavailable", extra={"error": str(exc)[:200]})
            raise LLMUnavailableError(str(exc)) from exc
        return raw_text

    @staticmethod
    def _clean(value: object) -> str:
        return str(value or "").strip()

    def _resolve_channel(self) -> _LLMChannelConfig:
        return _LLMChannelConfig(
            api_key=self._clean(settings.llm_api_key),
            base_url=self._clean(settings.llm_base_url),
            path=CHAT_COMPLETIONS_PATH,
            model=self._clean(settings.llm_model),
            timeout_s=float(settings.llm_timeout_s),
        )


_FAKE_SENTENCES: tuple[str, ...] = (
    "Lantern light pools across {place}, and the crowd shifts as you step forward.",
    "A hush falls for a heartbeat, long enough for you to weigh what comes next.",
    "Somewhere close, a bell marks the hour and reminds you that time is not on your side.",
    "Your gear settles against your shoulders, familiar and ready.",
    "The air carries smoke, iron and the faint promise of trouble worth chasing.",
    "Faces turn toward you, some hopeful and some wary, all of them waiting.",
    "You read the room quickly and find more than one thread worth pulling.",
    "The path ahead is open for now, though nobody here expects it to stay that way.",
)
_FAKE_COMBAT_SENTENCES: tuple[str, ...] = (
    "Steel rings out as {enemy} circles for an opening.",
    "Dust kicks up around your boots while the fight finds its rhythm.",
    "Every breath feels loud, and every heartbeat counts the space between strikes.",
    "You spot a gap in the enemy line, narrow but real.",
)


class FakeNarratorGenerator:
    """Deterministic, contract-valid narrator used when no API key is configured."""

    def generate(self, messages: list[dict], *, temperature: float) -> str:
        del temperature
        context = extract_turn_context(messages)
        board = context.get("board") if isinstance(context.get("board"), dict) else {}
        band = context.get("word_band") if isinstance(context.get("word_band"), list) else [40, 140]
        min_words, max_words = int(band[0]), int(band[1])
        seed_key = f"{context.get('turn_index', 0)}:{board.get('title') or ''}:{self._last_user(messages)}"
        board_type = str(board.get("board_type") or "town")
        enemies = [e for e in board.get("enemies") or [] if isinstance(e, dict)]

        place = board.get("region_name") or board.get("title") or "the square"
        pool = _FAKE_COMBAT_SENTENCES + _FAKE_SENTENCES if board_type == "combat" and enemies else _FAKE_SENTENCES
        enemy_name = enemies[0].get("name") if enemies else "the enemy"
        offset = stable_int(seed_key, "fake_narration") % len(pool)
        sentences: list[str] = []
        target = min_words + max(0, (max_words - min_words) // 3)
        for index in range(len(pool) * 4):
            sentence = pool[(offset + index) % len(pool)].format(place=place, enemy=enemy_name)
            candidate = " ".join([*sentences, sentence])
            if word_count(candidate) > max_words:
                break
            sentences.append(sentence)
            if word_count(candidate) >= target:
                break

        payload = {
            "narration": " ".join(sentences),
            "scene": {"environment": board_type, "mood": "steady", "focus": board.get("title") or board_type},
            "runtime_delta": {
                "discovery_log": [{"kind": "scene_note", "text": pick_deterministic(_FAKE_SENTENCES, seed_key, "log")}],
                "reward_hints": [{"kind": "story", "xp": 10}],
            },
            "ui_actions": self._actions(board_type, board, enemies),
        }
        return json.dumps(payload, ensure_ascii=False)

    @staticmethod
    def _last_user(messages: list[dict]) -> str:
        for message in reversed(messages):
            if isinstance(message, dict) and message.get("role") == "user":
                return str(message.get("content") or "")
        return ""

    @staticmethod
    def _actions(board_type: str, board: dict, enemies: list[dict]) -> list[dict]:
        actions: list[dict] = []
        vendors = [v for v in board.get("vendors") or [] if isinstance(v, dict) and v.get("id")]
        if board_type == "combat" and enemies:
            actions.append(
                {
                    "id": "strike",
                    "label": f"Strike {enemies[0].get('name') or 'the enemy'}",
                    "intent": "combat_action",
                    "payload": {"target_combatant_id": enemies[0]["id"]},
                }
            )
        elif vendors:
            actions.append(
                {
                    "id": "vendor",
                    "label": f"Visit {vendors[0].get('name') or 'the vendor'}",
                    "intent": "shop_action",
                    "payload": {"vendorId": vendors[0]["id"]},
                }
            )
        actions.append(
            {
                "id": "lead",
                "label": "Follow the strongest lead",
                "intent": "quest_action",
                "prompt": "I follow the strongest lead we have and see where it takes us.",
            }
        )
        actions.append({"id": "quests", "label": "Open Quests", "intent": "open_panel", "payload": {"panel": "quests"}})
        return actions


def get_narrator_generator() -> ChatCompletionsGenerator | FakeNarratorGenerator:
    if str(settings.llm_api_key or "").strip():
        return ChatCompletionsGenerator()
    return FakeNarratorGenerator()
