from __future__ import annotations

from pathlib import Path

import pytest

from dm_engine.config import settings
from dm_engine.db import session as db_session
from dm_engine.db.bootstrap import init_db
from dm_engine.main import app
from dm_engine.modules.telemetry.service import reset_turn_telemetry
from dm_engine.modules.turn.idempotency import reset_idempotency_cache


@pytest.fixture(autouse=True)
def _reset_db_and_defaults(tmp_path: Path) -> None:
    settings.llm_api_key = ""
    settings.player_api_token = ""
    settings.telemetry_api_token = ""
    settings.turn_seed_salt = "test-salt"
    settings.turn_max_attempts_standard = 2
    settings.turn_max_attempts_extended = 3
    settings.turn_fast_recovery_floor = 2
    settings.reward_loot_chance = 0.12
    settings.companion_checkin_cadence = 3
    reset_turn_telemetry()
    reset_idempotency_cache()
    app.dependency_overrides.clear()
    db_session.rebind_engine(f"sqlite+pysqlite:///{tmp_path / 'turn_engine.db'}")
    init_db()
    yield
    app.dependency_overrides.clear()
    reset_turn_telemetry()
    reset_idempotency_cache()
    db_session.engine.dispose()
