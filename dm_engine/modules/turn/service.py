from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from dm_engine.config import settings
from dm_engine.db.models import Board, Campaign, CampaignCompanion, Character, Turn
from dm_engine.modules.auth.deps import ensure_campaign_member
from dm_engine.modules.presentation.cursor import cursor_for_event
from dm_engine.modules.presentation.deterministic import hash_line
from dm_engine.modules.presentation.state import PresentationDelta, read_presentation_state
from dm_engine.modules.presentation.word_banks import TONE_MODES
from dm_engine.modules.telemetry.service import record_turn_failure, record_turn_replay, record_turn_success
from dm_engine.modules.turn.actions import canonical_intent
from dm_engine.modules.turn.board import summarize_board_state
from dm_engine.modules.turn.commit import TurnCommitRequest, commit_turn, next_turn_index, plan_companion_checkin
from dm_engine.modules.turn.contract import ContractValidator
from dm_engine.modules.turn.errors import (
    TurnConflictError,
    TurnEngineError,
    board_not_found,
    runtime_not_found,
    turn_engine_not_ready,
)
from dm_engine.modules.turn.idempotency import IdempotencyCache, cache_key, normalized_idempotency_key
from dm_engine.modules.turn.prompts import build_turn_messages
from dm_engine.modules.turn.recovery import RecoveryInput, synthesize_recovery
from dm_engine.modules.turn.retry import NarratorGenerator, RetryController, RetryState
from dm_engine.modules.turn.rewards import apply_story_reward, plan_story_reward
from dm_engine.modules.turn.schemas import NarratorOutput, TurnListOut, TurnOut, TurnRequest
from dm_engine.modules.turn.seed import DETERMINISM_WEAK_WARNING, TurnPRNG, compute_turn_seed
from dm_engine.utils.time import isoformat_utc

log = logging.getLogger(__name__)

SCHEMA_VERSION = "dm_turn.v1"
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass(slots=True)
class TurnContext:
    campaign_id: uuid.UUID
    board_id: uuid.UUID
    board_type: str
    board_state: dict
    heat: int
    next_index: int
    character_id: uuid.UUID | None = None
    character: dict | None = None
    companions: list[dict] = field(default_factory=list)


def load_turn_context(db: Session, campaign_id: uuid.UUID, player_id: str) -> TurnContext:
    """Read everything the turn needs, then release the read transaction before generation."""
    try:
        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise runtime_not_found(campaign_id)
        ensure_campaign_member(db, campaign_id, player_id)

        board = db.execute(
            select(Board)
            .where(Board.campaign_id == campaign_id, Board.status == "active")
            .order_by(Board.updated_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if board is None:
            raise board_not_found(campaign_id)

        character = db.execute(
            select(Character).where(Character.campaign_id == campaign_id, Character.player_id == player_id)
        ).scalars().first()
        companions = db.execute(
            select(CampaignCompanion)
            .where(CampaignCompanion.campaign_id == campaign_id)
            .order_by(CampaignCompanion.companion_id.asc())
        ).scalars().all()

        return TurnContext(
            campaign_id=campaign.id,
            board_id=board.id,
            board_type=str(board.board_type or "town"),
            board_state=dict(board.state_json or {}),
            heat=int(campaign.heat or 0),
            next_index=next_turn_index(db, campaign_id),
            character_id=character.id if character else None,
            character=(
                {
                    "name": character.name,
                    "class_role": character.class_role,
                    "level": character.level,
                    "hp": character.hp,
                    "hp_max": character.hp_max,
                }
                if character
                else None
            ),
            companions=[
                {"companion_id": row.companion_id, "name": row.name, "mood": row.mood, "archetype": row.archetype}
                for row in companions
            ],
        )
    except (OperationalError, ProgrammingError) as exc:
        log.warning("turn.storage.not_ready", extra={"campaign_id": str(campaign_id), "error": type(exc).__name__})
        raise turn_engine_not_ready([type(exc).__name__]) from exc
    finally:
        db.rollback()


def resolve_turn_mode(turn_index: int, action_context: dict | None) -> str:
    context = action_context or {}
    if turn_index == 0 or context.get("intro") is True or context.get("mode") == "intro":
        return "intro"
    if canonical_intent(context.get("intent")) is None:
        return "freeform"
    return "standard"


def _resolved_companion_id(action_context: dict | None) -> str | None:
    context = action_context or {}
    if canonical_intent(context.get("intent")) != "companion_action":
        return None
    payload = context.get("payload") if isinstance(context.get("payload"), dict) else {}
    companion_id = str(payload.get("companion_id") or context.get("companion_id") or "").strip()
    return companion_id or None


def batched_combat_events(action_context: dict) -> list[dict]:
    raw = action_context.get("combat_events")
    return [event for event in raw if isinstance(event, dict)] if isinstance(raw, list) else []


def success_presentation_delta(output: NarratorOutput, combat_events: list[dict]) -> PresentationDelta:
    lines = [line for line in _SENTENCE_RE.split(output.narration.strip()) if line.strip()]
    mood = str(output.scene.get("mood") or "").strip().lower()
    cursor = None
    if combat_events:
        latest = max((cursor_for_event(event) for event in combat_events), key=lambda c: c.sort_key())
        cursor = latest.encode()
    return PresentationDelta(
        last_tone=mood if mood in TONE_MODES else None,
        recent_line_hashes=[hash_line(line) for line in lines],
        last_template_ids=["generator"],
        last_event_cursor=cursor,
    )


def run_turn(
    db: Session,
    *,
    campaign_id: uuid.UUID,
    player_id: str,
    payload: TurnRequest,
    generator: NarratorGenerator,
    cache: IdempotencyCache,
    idempotency_key: str | None = None,
    request_id: str | None = None,
) -> bytes:
    client_key = normalized_idempotency_key(idempotency_key)
    key = cache_key(player_id, client_key) if client_key else None
    if key is not None:
        cached = cache.get(key)
        if cached is not None:
            record_turn_replay()
            log.info("turn.idempotent.replay", extra={"request_id": request_id, "campaign_id": str(campaign_id)})
            return cached

    try:
        body = _execute_turn(
            db,
            campaign_id=campaign_id,
            player_id=player_id,
            payload=payload,
            generator=generator,
            request_id=request_id,
        )
    except TurnEngineError as exc:
        record_turn_failure(error_code=exc.code)
        raise

    if key is not None:
        cache.put(key, body)
    return body


def _execute_turn(
    db: Session,
    *,
    campaign_id: uuid.UUID,
    player_id: str,
    payload: TurnRequest,
    generator: NarratorGenerator,
    request_id: str | None,
) -> bytes:
    started = time.perf_counter()
    log.info("turn.request.start", extra={"request_id": request_id, "campaign_id": str(campaign_id)})
    context = load_turn_context(db, campaign_id, player_id)

    expected = context.next_index if payload.expected_turn_index is None else int(payload.expected_turn_index)
    if expected != context.next_index:
        log.info(
            "turn.commit.conflict",
            extra={"request_id": request_id, "expected": expected, "actual": context.next_index},
        )
        raise TurnConflictError(expected, context.next_index)

    warnings: list[str] = []
    seed = compute_turn_seed(campaign_id, expected, player_id, settings.turn_seed_salt)
    if seed.weak:
        warnings.append(DETERMINISM_WEAK_WARNING)
    prng = TurnPRNG(seed)

    board = summarize_board_state(
        context.board_type,
        context.board_state,
        board_id=context.board_id,
        heat=context.heat,
        character=context.character,
        companions=context.companions,
    )
    presentation = read_presentation_state(context.board_state)
    action_context = payload.action_context or {}
    turn_mode = resolve_turn_mode(expected, action_context)
    word_band = settings.word_band(turn_mode)
    batched_events = batched_combat_events(action_context)
    state_hint = action_context.get("state_hint") if isinstance(action_context.get("state_hint"), dict) else {}

    messages, input_flagged, input_reason = build_turn_messages(
        history=[message.model_dump() for message in payload.messages],
        board=board,
        presentation=presentation,
        turn_mode=turn_mode,
        turn_index=expected,
        word_band=word_band,
        action_context=action_context,
        character=context.character,
    )
    if input_flagged:
        warnings.append(f"input_policy:{input_reason}")

    validator = ContractValidator(word_band=word_band, board_mode=board.mode, board_summary=board)
    outcome = RetryController(turn_mode).run(generator, validator, messages)
    warnings.extend(outcome.warnings)

    recovery_reason = None
    if outcome.ok and outcome.output is not None:
        output = outcome.output
        presentation_delta = success_presentation_delta(output, [*board.combat_events, *batched_events])
    else:
        recovery_reason = (outcome.last_reasons or [outcome.state.value])[0]
        recovery = synthesize_recovery(
            RecoveryInput(
                board=board,
                presentation=presentation,
                mode=board.mode,
                action_intent=canonical_intent(action_context.get("intent")),
                word_band=word_band,
                reason=recovery_reason,
                attempts=outcome.attempts,
                combat_events=batched_events,
                state_hint=state_hint,
            )
        )
        output = recovery.output
        presentation_delta = recovery.presentation_delta
        log.warning(
            "turn.recovery.used",
            extra={
                "request_id": request_id,
                "state": outcome.state.value,
                "attempts": outcome.attempts,
                "reason": recovery_reason,
            },
        )

    reward_plan = plan_story_reward(
        prng,
        seed,
        output.runtime_delta,
        level=int((context.character or {}).get("level") or 1),
        class_role=str((context.character or {}).get("class_role") or ""),
        boss_present=board.boss_present,
    )
    companion_checkin = plan_companion_checkin(prng, turn_index=expected, companions=context.companions)
    roll_log = prng.roll_log
    output = output.model_copy(update={"roll_log": roll_log})
    output_json = output.model_dump(mode="json")

    commit = commit_turn(
        db,
        TurnCommitRequest(
            campaign_id=campaign_id,
            player_id=player_id,
            board_id=context.board_id,
            board_type=board.mode,
            expected_turn_index=expected,
            turn_seed=seed.value,
            request_json={
                "expected_turn_index": expected,
                "turn_mode": turn_mode,
                "action_context": action_context,
                "message_count": len(payload.messages),
                "input_policy_flag": input_flagged,
            },
            response_json={
                **output_json,
                "dm_validation_attempts": outcome.attempts,
                "dm_recovery_used": recovery_reason is not None,
                "dm_recovery_reason": recovery_reason,
            },
            patches=output_json["patches"],
            roll_log=roll_log,
            runtime_delta=output.runtime_delta,
            presentation_delta=presentation_delta,
            companion_checkin=companion_checkin,
            resolved_companion_id=_resolved_companion_id(action_context),
        ),
    )

    reward_summary = apply_story_reward(
        db,
        turn_id=commit.turn_id,
        campaign_id=campaign_id,
        character_id=context.character_id,
        plan=reward_plan,
    )

    body = {
        **output_json,
        "schema_version": SCHEMA_VERSION,
        "roll_log": roll_log,
        "warnings": warnings,
        "meta": {
            "turn_id": str(commit.turn_id),
            "turn_index": commit.turn_index,
            "turn_seed": str(seed),
            "turn_mode": turn_mode,
            "board_id": str(commit.board_id),
            "heat": commit.heat,
            "world_time": commit.world_time,
            "dm_validation_attempts": outcome.attempts,
            "dm_recovery_used": recovery_reason is not None,
            "dm_recovery_reason": recovery_reason,
            "companion_checkin": companion_checkin,
            "reward_summary": reward_summary,
        },
    }
    latency_ms = (time.perf_counter() - started) * 1000.0
    record_turn_success(
        latency_ms=latency_ms,
        attempts=outcome.attempts,
        recovery_used=recovery_reason is not None,
        fast_recovery=outcome.state == RetryState.FAST_RECOVERY,
        soft_repaired=outcome.soft_repaired,
    )
    log.info(
        "turn.request.done",
        extra={
            "request_id": request_id,
            "turn_index": commit.turn_index,
            "attempts": outcome.attempts,
            "recovery": recovery_reason is not None,
            "latency_ms": round(latency_ms, 3),
        },
    )
    return json.dumps(body, ensure_ascii=False).encode("utf-8")


def list_turns(db: Session, *, campaign_id: uuid.UUID, player_id: str, limit: int = 50) -> TurnListOut:
    try:
        ensure_campaign_member(db, campaign_id, player_id)
        rows = db.execute(
            select(Turn)
            .where(Turn.campaign_id == campaign_id)
            .order_by(Turn.turn_index.desc())
            .limit(max(1, min(200, int(limit))))
        ).scalars().all()
    except (OperationalError, ProgrammingError) as exc:
        raise turn_engine_not_ready([type(exc).__name__]) from exc

    turns = [
        TurnOut(
            id=str(row.id),
            turn_index=row.turn_index,
            turn_seed=str(row.turn_seed),
            player_id=row.player_id,
            board_type=row.board_type,
            status=row.status,
            narration=str((row.response_json or {}).get("narration") or ""),
            created_at=isoformat_utc(row.created_at),
        )
        for row in rows
    ]
    return TurnListOut(campaign_id=str(campaign_id), turns=turns)
