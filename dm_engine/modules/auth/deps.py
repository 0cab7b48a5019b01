from __future__ import annotations

import uuid

from fastapi import Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from dm_engine.config import settings
from dm_engine.db.models import CampaignMember
from dm_engine.modules.turn.errors import TurnEngineError, auth_invalid, auth_required, campaign_access_denied

MAX_PLAYER_ID_LEN = 128


def require_player(
    x_player_id: str | None = Header(default=None, alias="X-Player-Id"),
    x_player_token: str | None = Header(default=None, alias="X-Player-Token"),
) -> str:
    player_id = str(x_player_id or "").strip()
    if not player_id or len(player_id) > MAX_PLAYER_ID_LEN:
        raise auth_required()

    expected = str(settings.player_api_token or "").strip()
    if expected and str(x_player_token or "").strip() != expected:
        raise auth_invalid()
    return player_id


def require_telemetry_token(
    x_telemetry_token: str | None = Header(default=None, alias="X-Telemetry-Token"),
) -> str | None:
    expected = str(settings.telemetry_api_token or "").strip()
    if not expected:
        return None

    provided = str(x_telemetry_token or "").strip()
    if provided != expected:
        raise TurnEngineError("auth_invalid", 401, "Invalid telemetry token")
    return provided


def ensure_campaign_member(db: Session, campaign_id: uuid.UUID, player_id: str) -> CampaignMember:
    member = db.execute(
        select(CampaignMember).where(
            CampaignMember.campaign_id == campaign_id,
            CampaignMember.player_id == player_id,
        )
    ).scalar_one_or_none()
    if member is None:
        raise campaign_access_denied(campaign_id)
    return member
