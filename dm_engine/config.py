import os
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine, inspect, text

DEV_DEFAULT_DB_URL = "sqlite:///./dev.db"
TURN_ENGINE_REQUIRED_TABLES: tuple[str, ...] = (
    "campaigns",
    "campaign_members",
    "boards",
    "characters",
    "campaign_companions",
    "turns",
    "turn_reward_grants",
    "items",
)
DEV_REQUIRED_COLUMNS: dict[str, set[str]] = {
    "turns": {"turn_index", "turn_seed", "roll_log_json"},
    "boards": {"state_json"},
    "turn_reward_grants": {"reward_key", "xp_amount"},
}


def _default_word_bands() -> dict[str, list[int]]:
    return {
        "standard": [40, 140],
        "intro": [60, 180],
        "freeform": [30, 160],
    }


class Settings(BaseSettings):
    app_name: str = "dm_turn_engine"
    env: str = "dev"
    database_url: str = "sqlite+pysqlite:///./app.db"
    log_level: str = "INFO"

    turn_seed_salt: str = ""
    turn_idempotency_ttl_s: float = 20.0
    turn_max_attempts_standard: int = 2
    turn_max_attempts_extended: int = 3
    turn_fast_recovery_floor: int = 2
    turn_temperature_step: float = 0.2
    turn_temperature_floor: float = 0.2
    turn_max_messages: int = 80
    narration_word_bands: dict[str, list[int]] = Field(default_factory=_default_word_bands)

    reward_key_default: str = "story_reward_v1"
    reward_xp_cap: int = 120
    reward_loot_chance: float = 0.12
    reward_loot_boss_bonus: float = 0.08
    companion_checkin_cadence: int = 3

    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_timeout_s: float = 30.0

    player_api_token: str = ""
    telemetry_api_token: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def word_band(self, mode: str) -> tuple[int, int]:
        band = self.narration_word_bands.get(mode) or self.narration_word_bands.get("standard") or [40, 140]
        low, high = int(band[0]), int(band[1])
        if low > high:
            low, high = high, low
        return max(1, low), max(1, high)


def _is_sqlite_memory_url(db_url: str) -> bool:
    candidate = (db_url or "").strip().lower()
    if not candidate.startswith("sqlite"):
        return False
    if ":memory:" in candidate:
        return True
    return candidate in {
        "sqlite://",
        "sqlite:///",
        "sqlite+pysqlite://",
        "sqlite+pysqlite:///",
    }


def validate_database_url(env: str, db_url: str | None) -> str:
    env_value = (env or "").strip().lower()
    if env_value != "dev":
        return db_url or ""

    if not db_url or not db_url.strip():
        return DEV_DEFAULT_DB_URL

    if _is_sqlite_memory_url(db_url):
        raise RuntimeError(
            "DATABASE_URL cannot be sqlite :memory: when ENV=dev because committed turns will disappear. "
            f"Set DATABASE_URL={DEV_DEFAULT_DB_URL} or another file-based sqlite url."
        )
    return db_url


@lru_cache(maxsize=1)
def current_alembic_head_revision() -> str:
    from alembic.config import Config
    from alembic.script import ScriptDirectory

    ini_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    cfg = Config(str(ini_path))
    cfg.set_main_option("script_location", str(Path(__file__).resolve().parent / "db" / "migrations"))
    script_dir = ScriptDirectory.from_config(cfg)
    head = script_dir.get_current_head()
    if not head:
        raise RuntimeError("Unable to resolve Alembic head revision from migration scripts.")
    return str(head)


def check_turn_engine_schema(
    engine,
    required_tables: Iterable[str] = TURN_ENGINE_REQUIRED_TABLES,
    required_columns: dict[str, set[str]] = DEV_REQUIRED_COLUMNS,
) -> list[str]:
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    problems: list[str] = []

    missing_tables = [name for name in required_tables if name not in tables]
    if missing_tables:
        problems.append(f"missing tables: {', '.join(sorted(missing_tables))}")

    for table_name, expected_cols in required_columns.items():
        if table_name not in tables:
            continue
        actual_cols = {col["name"] for col in inspector.get_columns(table_name)}
        for col in sorted(col for col in expected_cols if col not in actual_cols):
            problems.append(f"missing column {table_name}.{col}")
    return problems


def ensure_dev_database_schema(db_url: str) -> None:
    if not db_url:
        return
    engine = create_engine(db_url, future=True)
    problems = check_turn_engine_schema(engine)

    tables = set(inspect(engine).get_table_names())
    if "alembic_version" in tables:
        with engine.connect() as conn:
            db_revision = conn.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar_one_or_none()
        db_revision = str(db_revision or "").strip()
        head = current_alembic_head_revision()
        if db_revision != head:
            problems.append(f"alembic_version={db_revision or 'empty'} (expected {head})")

    if problems:
        details = "; ".join(problems)
        raise RuntimeError(
            f"dev schema mismatch for DATABASE_URL={db_url}: {details}. "
            f"Run ENV=dev DATABASE_URL={db_url} python -m alembic upgrade head"
        )


settings = Settings()
_raw_db_url = os.getenv("DATABASE_URL")
if settings.env == "dev":
    settings.database_url = validate_database_url(settings.env, _raw_db_url)
else:
    settings.database_url = validate_database_url(settings.env, _raw_db_url or settings.database_url)
