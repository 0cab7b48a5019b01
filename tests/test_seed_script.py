import json
import os
import subprocess
import sys
import uuid
from pathlib import Path

from sqlalchemy import func, select

from dm_engine.db import session as db_session
from dm_engine.db.models import Board, CampaignCompanion, CampaignMember
from tests.support.db_runtime import prepare_sqlite_db

ROOT = Path(__file__).resolve().parents[1]


def test_seed_script_creates_playable_campaign(tmp_path: Path) -> None:
    prepare_sqlite_db(tmp_path, "seed_script.db")

    env = os.environ.copy()
    env["DATABASE_URL"] = str(db_session.engine.url)

    proc = subprocess.run(
        [sys.executable, "scripts/seed_campaign.py", "--player-id", "seed-player"],
        cwd=ROOT,
        env=env,
        capture_output=True,
        text=True,
    )
    assert proc.returncode == 0, proc.stderr
    result = json.loads(proc.stdout.strip().splitlines()[-1])
    campaign_id = uuid.UUID(result["campaign_id"])

    with db_session.SessionLocal() as db:
        member = db.execute(
            select(CampaignMember).where(CampaignMember.campaign_id == campaign_id)
        ).scalar_one()
        assert member.player_id == "seed-player"
        assert member.role == "owner"

        board = db.get(Board, uuid.UUID(result["board_id"]))
        assert board is not None
        assert board.status == "active"
        assert {v["id"] for v in board.state_json["vendors"]} == {"vendor_smith", "vendor_apothecary"}

        companions = db.execute(
            select(func.count()).select_from(CampaignCompanion).where(CampaignCompanion.campaign_id == campaign_id)
        ).scalar_one()
        assert companions == 2
