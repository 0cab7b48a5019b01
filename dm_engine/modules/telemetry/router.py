from __future__ import annotations

from fastapi import APIRouter, Depends

from dm_engine.modules.auth.deps import require_telemetry_token
from dm_engine.modules.telemetry.service import get_turn_telemetry_summary

router = APIRouter(prefix="/api/v1/telemetry", tags=["telemetry"])


@router.get("/turns")
def turn_telemetry(_: str | None = Depends(require_telemetry_token)) -> dict:
    return get_turn_telemetry_summary()
