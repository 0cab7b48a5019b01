from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

from dm_engine.db import session as db_session

ROOT = Path(__file__).resolve().parents[2]


def prepare_sqlite_db(tmp_path: Path, filename: str) -> str:
    db_path = tmp_path / filename
    env = os.environ.copy()
    env["DATABASE_URL"] = f"sqlite:///{db_path}"
    proc = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        cwd=ROOT,
        env=env,
        capture_output=True,
        text=True,
    )
    assert proc.returncode == 0, proc.stderr
    runtime_url = f"sqlite+pysqlite:///{db_path}"
    db_session.rebind_engine(runtime_url)
    return runtime_url


def bind_empty_sqlite_db(tmp_path: Path, filename: str) -> str:
    """Point the app at a database with no tables, as if migrations never ran."""
    runtime_url = f"sqlite+pysqlite:///{tmp_path / filename}"
    db_session.rebind_engine(runtime_url)
    return runtime_url
