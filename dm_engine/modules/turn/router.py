from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from dm_engine.db.session import get_db
from dm_engine.modules.auth.deps import require_player
from dm_engine.modules.turn import service
from dm_engine.modules.turn.deps import get_turn_cache, get_turn_generator
from dm_engine.modules.turn.idempotency import IdempotencyCache
from dm_engine.modules.turn.retry import NarratorGenerator
from dm_engine.modules.turn.schemas import TurnListOut, TurnRequest

router = APIRouter(prefix="/api/v1", tags=["turns"])

STREAM_CHUNK_BYTES = 4096


def _chunks(body: bytes):
    for offset in range(0, len(body), STREAM_CHUNK_BYTES):
        yield body[offset : offset + STREAM_CHUNK_BYTES]


@router.post("/campaigns/{campaign_id}/turns")
def create_turn(
    campaign_id: uuid.UUID,
    payload: TurnRequest,
    request: Request,
    player_id: str = Depends(require_player),
    x_idempotency_key: str | None = Header(default=None, alias="X-Idempotency-Key"),
    db: Session = Depends(get_db),
    generator: NarratorGenerator = Depends(get_turn_generator),
    cache: IdempotencyCache = Depends(get_turn_cache),
):
    body = service.run_turn(
        db,
        campaign_id=campaign_id,
        player_id=player_id,
        payload=payload,
        generator=generator,
        cache=cache,
        idempotency_key=x_idempotency_key,
        request_id=getattr(request.state, "request_id", None),
    )
    return StreamingResponse(_chunks(body), media_type="application/json")


@router.get("/campaigns/{campaign_id}/turns", response_model=TurnListOut)
def list_turns(
    campaign_id: uuid.UUID,
    limit: int = 50,
    player_id: str = Depends(require_player),
    db: Session = Depends(get_db),
):
    return service.list_turns(db, campaign_id=campaign_id, player_id=player_id, limit=limit)
