from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from dm_engine.config import settings
from dm_engine.db.models import Board, Campaign, Turn
from dm_engine.modules.presentation.state import (
    PresentationDelta,
    merge_presentation_state,
    read_presentation_state,
    write_presentation_state,
)
from dm_engine.modules.presentation.word_banks import COMPANION_CHECKIN_TEMPLATES, COMPANION_URGENCY
from dm_engine.modules.turn.errors import TurnConflictError, TurnEngineError, turn_commit_failed, turn_commit_rejected
from dm_engine.modules.turn.schemas import RuntimeDelta
from dm_engine.modules.turn.seed import TurnPRNG
from dm_engine.utils.time import isoformat_utc, utc_now_aware

log = logging.getLogger(__name__)

BOARD_STATE_TAILS: dict[str, int] = {
    "rumors": 36,
    "objectives": 24,
    "discovery_log": 48,
    "companion_checkins": 24,
    "action_chips": 12,
}


@dataclass(slots=True)
class TurnCommitRequest:
    campaign_id: uuid.UUID
    player_id: str
    board_id: uuid.UUID
    board_type: str
    expected_turn_index: int
    turn_seed: int
    request_json: dict = field(default_factory=dict)
    response_json: dict = field(default_factory=dict)
    patches: list[dict] = field(default_factory=list)
    roll_log: list[dict] = field(default_factory=list)
    runtime_delta: RuntimeDelta = field(default_factory=RuntimeDelta)
    presentation_delta: PresentationDelta | None = None
    companion_checkin: dict | None = None
    resolved_companion_id: str | None = None


@dataclass(slots=True)
class CommitResult:
    turn_id: uuid.UUID
    turn_index: int
    world_time: str
    heat: int
    board_id: uuid.UUID


def next_turn_index(db: Session, campaign_id: uuid.UUID) -> int:
    current = db.execute(select(func.max(Turn.turn_index)).where(Turn.campaign_id == campaign_id)).scalar_one_or_none()
    return 0 if current is None else int(current) + 1


def plan_companion_checkin(
    prng: TurnPRNG,
    *,
    turn_index: int,
    companions: list[dict],
    cadence: int | None = None,
) -> dict | None:
    """Draw the cadence check-in ahead of the commit so the roll log covers it."""
    cadence = int(settings.companion_checkin_cadence if cadence is None else cadence)
    if cadence <= 0 or turn_index % cadence != 0 or not companions:
        return None
    ordered = sorted(companions, key=lambda row: str(row.get("companion_id") or ""))
    companion = prng.pick("companion_checkin:companion", ordered, {"turn_index": turn_index})
    companion_id = str(companion.get("companion_id") or "")
    urgency = prng.pick("companion_checkin:urgency", COMPANION_URGENCY, {"companion_id": companion_id})
    template = prng.pick("companion_checkin:line", COMPANION_CHECKIN_TEMPLATES, {"companion_id": companion_id})
    return {
        "companion_id": companion_id,
        "line": template.format(name=str(companion.get("name") or "Companion")),
        "mood": str(companion.get("mood") or "steady"),
        "urgency": urgency,
        "hook_type": "companion_checkin",
        "turn_index": turn_index,
        "resolved": False,
    }


def _list(value: object) -> list:
    return list(value) if isinstance(value, list) else []


def _dict(value: object) -> dict:
    return dict(value) if isinstance(value, dict) else {}


def merge_runtime_delta(
    state: dict | None,
    delta: RuntimeDelta,
    *,
    generated_checkin: dict | None = None,
    resolved_companion_id: str | None = None,
) -> dict:
    next_state = copy.deepcopy(state) if isinstance(state, dict) else {}
    incoming = delta.model_dump()

    checkins = _list(next_state.get("companion_checkins"))
    if resolved_companion_id:
        for entry in checkins:
            if isinstance(entry, dict) and entry.get("companion_id") == resolved_companion_id:
                entry["resolved"] = True
    next_state["companion_checkins"] = checkins

    for key, tail in BOARD_STATE_TAILS.items():
        merged = [*_list(next_state.get(key)), *incoming.get(key, [])]
        if key == "companion_checkins" and generated_checkin:
            merged.append(generated_checkin)
        next_state[key] = merged[-tail:]

    for key in ("discovery_flags", "scene_cache"):
        next_state[key] = {**_dict(next_state.get(key)), **incoming.get(key, {})}
    return next_state


def commit_turn(db: Session, request: TurnCommitRequest) -> CommitResult:
    """Insert the turn and fold its deltas into the board in one transaction."""
    try:
        with db.begin():
            actual = next_turn_index(db, request.campaign_id)
            if request.expected_turn_index != actual:
                raise TurnConflictError(request.expected_turn_index, actual)

            board = db.execute(
                select(Board).where(Board.id == request.board_id).with_for_update()
            ).scalar_one_or_none()
            if board is None or board.campaign_id != request.campaign_id:
                raise turn_commit_rejected("board_campaign_mismatch")

            turn = Turn(
                campaign_id=request.campaign_id,
                player_id=request.player_id,
                board_id=board.id,
                board_type=request.board_type,
                turn_index=actual,
                turn_seed=request.turn_seed,
                status="committed",
                request_json=request.request_json,
                response_json=request.response_json,
                patches_json=request.patches,
                roll_log_json=request.roll_log,
            )
            db.add(turn)
            db.flush()

            state = merge_runtime_delta(
                board.state_json,
                request.runtime_delta,
                generated_checkin=request.companion_checkin,
                resolved_companion_id=request.resolved_companion_id,
            )
            presentation = merge_presentation_state(read_presentation_state(state), request.presentation_delta)
            board.state_json = write_presentation_state(state, presentation)

            heat = db.execute(select(Campaign.heat).where(Campaign.id == request.campaign_id)).scalar_one_or_none()
            result = CommitResult(
                turn_id=turn.id,
                turn_index=actual,
                world_time=isoformat_utc(utc_now_aware()),
                heat=int(heat or 0),
                board_id=board.id,
            )
    except TurnConflictError as exc:
        log.info(
            "turn.commit.conflict",
            extra={"campaign_id": str(request.campaign_id), "expected": exc.expected, "actual": exc.actual},
        )
        raise
    except TurnEngineError:
        raise
    except IntegrityError as exc:
        log.info("turn.commit.conflict", extra={"campaign_id": str(request.campaign_id), "error": str(exc.orig)})
        raise TurnConflictError(request.expected_turn_index, None) from exc
    except SQLAlchemyError as exc:
        log.exception("turn.commit.failed", extra={"campaign_id": str(request.campaign_id)})
        raise turn_commit_failed(type(exc).__name__) from exc

    log.info(
        "turn.commit.ok",
        extra={"campaign_id": str(request.campaign_id), "turn_index": result.turn_index, "turn_id": str(result.turn_id)},
    )
    return result
