from __future__ import annotations

from dm_engine.modules.llm_boundary.service import get_narrator_generator
from dm_engine.modules.turn.idempotency import IdempotencyCache, get_idempotency_cache
from dm_engine.modules.turn.retry import NarratorGenerator


def get_turn_generator() -> NarratorGenerator:
    return get_narrator_generator()


def get_turn_cache() -> IdempotencyCache:
    return get_idempotency_cache()
