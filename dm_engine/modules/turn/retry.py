from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from dm_engine.config import settings
from dm_engine.modules.turn.actions import canonical_intent, normalize_label
from dm_engine.modules.turn.board import BoardSummary
from dm_engine.modules.turn.contract import ContractValidator, ValidationOutcome
from dm_engine.modules.turn.schemas import Action, NarratorOutput

log = logging.getLogger(__name__)

EXTENDED_MODES = {"intro", "freeform"}
STRUCTURAL_CLASSES = {
    "invalid_json",
    "json_parse_failed",
    "scene_missing_or_invalid",
    "runtime_delta_missing_or_invalid",
    "ui_actions_count_out_of_bounds",
    "generator_unavailable",
}
VENDOR_REASON_MARKER = "vendorId_invalid"
WORD_COUNT_CLASS = "narration_word_count_out_of_bounds"


class NarratorGenerator(Protocol):
    def generate(self, messages: list[dict], *, temperature: float) -> str: ...


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    VALID = "valid"
    INVALID = "invalid"
    FAST_RECOVERY = "fast_recovery"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class RetryOutcome:
    state: RetryState
    attempts: int
    output: NarratorOutput | None = None
    reasons_by_attempt: list[list[str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    soft_repaired: bool = False
    last_candidate: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == RetryState.VALID and self.output is not None

    @property
    def last_reasons(self) -> list[str]:
        return self.reasons_by_attempt[-1] if self.reasons_by_attempt else []


def reason_class(reason: str) -> str:
    if VENDOR_REASON_MARKER in reason:
        return VENDOR_REASON_MARKER
    return reason.split(":", 1)[0]


def is_structural(reason: str) -> bool:
    return reason_class(reason) in STRUCTURAL_CLASSES or reason_class(reason) == VENDOR_REASON_MARKER


def only_vendor_failures(reasons: list[str]) -> bool:
    return bool(reasons) and all(reason_class(reason) == VENDOR_REASON_MARKER for reason in reasons)


def best_vendor_id(label: str, board: BoardSummary) -> str | None:
    if not board.vendors:
        return None
    needle = normalize_label(label)
    for vendor in board.vendors:
        if normalize_label(vendor["name"]) and normalize_label(vendor["name"]) in needle:
            return vendor["id"]
        if normalize_label(vendor["id"]) and normalize_label(vendor["id"]) in needle:
            return vendor["id"]
    return board.vendors[0]["id"]


def repair_vendor_payload(payload: dict, board: BoardSummary) -> dict:
    """Point shop suggestions at a real vendor, or downgrade them when the board has none."""
    repaired = copy.deepcopy(payload)
    actions = repaired.get("ui_actions")
    if not isinstance(actions, list):
        return repaired
    vendor_ids = board.vendor_ids
    for raw in actions:
        if not isinstance(raw, dict) or canonical_intent(raw.get("intent")) != "shop_action":
            continue
        action_payload = raw.get("payload") if isinstance(raw.get("payload"), dict) else {}
        current = action_payload.get("vendorId") or action_payload.get("vendor_id") or raw.get("vendorId")
        if current in vendor_ids:
            continue
        action_payload.pop("vendor_id", None)
        raw.pop("vendorId", None)
        replacement = best_vendor_id(str(raw.get("label") or ""), board)
        if replacement:
            action_payload["vendorId"] = replacement
        else:
            action_payload.pop("vendorId", None)
            raw["intent"] = "dm_prompt"
        raw["payload"] = action_payload
        raw.pop("hint_key", None)
    return repaired


def enforce_vendor_actions(actions: list[Action], board: BoardSummary) -> tuple[list[Action], bool]:
    changed = False
    result: list[Action] = []
    for action in actions:
        if action.intent != "shop_action" or action.payload.get("vendorId") in board.vendor_ids:
            result.append(action)
            continue
        changed = True
        payload = dict(action.payload)
        replacement = best_vendor_id(action.label, board)
        if replacement:
            payload["vendorId"] = replacement
            result.append(action.model_copy(update={"payload": payload, "hint_key": f"shop_action:{replacement}"}))
        else:
            payload.pop("vendorId", None)
            result.append(
                action.model_copy(update={"intent": "dm_prompt", "payload": payload, "hint_key": f"dm_prompt:{action.id}"})
            )
    return result, changed


class RetryController:
    def __init__(
        self,
        mode: str,
        *,
        max_attempts: int | None = None,
        fast_recovery_floor: int | None = None,
        base_temperature: float | None = None,
    ) -> None:
        self.mode = mode
        if max_attempts is None:
            max_attempts = (
                settings.turn_max_attempts_extended if mode in EXTENDED_MODES else settings.turn_max_attempts_standard
            )
        self.max_attempts = max(1, int(max_attempts))
        self.fast_recovery_floor = max(
            1, int(settings.turn_fast_recovery_floor if fast_recovery_floor is None else fast_recovery_floor)
        )
        self.base_temperature = float(settings.llm_temperature if base_temperature is None else base_temperature)
        self.attempt = 0
        self.reasons: list[list[str]] = []

    def temperature_for(self, attempt: int) -> float:
        value = self.base_temperature - settings.turn_temperature_step * max(0, attempt - 1)
        return round(max(settings.turn_temperature_floor, value), 3)

    def decide(self, attempt: int, reasons: list[str]) -> RetryState:
        structural = any(is_structural(reason) for reason in reasons)
        word_count = any(reason_class(reason) == WORD_COUNT_CLASS for reason in reasons)
        if attempt >= self.fast_recovery_floor and structural:
            return RetryState.FAST_RECOVERY
        if attempt == self.fast_recovery_floor and word_count:
            return RetryState.FAST_RECOVERY
        if attempt >= self.max_attempts:
            return RetryState.EXHAUSTED
        return RetryState.INVALID

    def build_messages(
        self,
        base_messages: list[dict],
        attempt: int,
        validator: ContractValidator,
        previous_candidate: str | None,
    ) -> list[dict]:
        if attempt <= 1 or not self.reasons:
            return list(base_messages)
        reasons = "; ".join(self.reasons[-1]) or "unknown"
        correction = (
            f"Your previous response was rejected: {reasons}. "
            "Return exactly one JSON object with narration, scene, runtime_delta and 2-4 ui_actions. "
            f"Narration must be {validator.min_words}-{validator.max_words} words."
        )
        messages = [*base_messages, {"role": "system", "content": correction}]
        if attempt >= 3 and previous_candidate:
            messages.append(
                {
                    "role": "system",
                    "content": (
                        "REPAIR PASS. Rewrite the full candidate below so it satisfies the contract. "
                        "Do not summarize it, return the complete corrected JSON object.\n"
                        f"{previous_candidate}"
                    ),
                }
            )
        return messages

    def run(self, generator: NarratorGenerator, validator: ContractValidator, base_messages: list[dict]) -> RetryOutcome:
        self.attempt = 0
        self.reasons = []
        board = validator.board_summary
        warnings: list[str] = []
        soft_repaired = False
        candidate: str | None = None

        while True:
            self.attempt += 1
            attempt = self.attempt
            messages = self.build_messages(base_messages, attempt, validator, candidate)
            try:
                raw_text = generator.generate(messages, temperature=self.temperature_for(attempt))
            except Exception as exc:  # noqa: BLE001
                log.warning("turn.generator.failed", extra={"attempt": attempt, "error": type(exc).__name__})
                outcome = ValidationOutcome(ok=False, reasons=[f"generator_unavailable:{type(exc).__name__}"])
            else:
                candidate = str(raw_text or "")
                outcome = validator.validate_text(candidate)

            if not outcome.ok and only_vendor_failures(outcome.reasons) and outcome.payload is not None:
                repaired = validator.validate_payload(repair_vendor_payload(outcome.payload, board))
                if repaired.ok:
                    soft_repaired = True
                    warnings.append("vendor_soft_repair")
                    outcome = repaired
                else:
                    outcome = ValidationOutcome(
                        ok=False, reasons=repaired.reasons, warnings=repaired.warnings, payload=repaired.payload
                    )

            if outcome.ok and outcome.output is not None:
                self.reasons.append([])
                actions, changed = enforce_vendor_actions(outcome.output.ui_actions, board)
                output = outcome.output
                if changed:
                    soft_repaired = True
                    warnings.append("vendor_soft_repair")
                    output = output.model_copy(update={"ui_actions": actions})
                return RetryOutcome(
                    state=RetryState.VALID,
                    attempts=attempt,
                    output=output,
                    reasons_by_attempt=list(self.reasons),
                    warnings=[*warnings, *outcome.warnings],
                    soft_repaired=soft_repaired,
                    last_candidate=candidate,
                )

            self.reasons.append(list(outcome.reasons))
            state = self.decide(attempt, outcome.reasons)
            log.info(
                "turn.validation.invalid",
                extra={"attempt": attempt, "mode": self.mode, "reasons": outcome.reasons, "next_state": state.value},
            )
            if state in (RetryState.FAST_RECOVERY, RetryState.EXHAUSTED):
                return RetryOutcome(
                    state=state,
                    attempts=attempt,
                    reasons_by_attempt=list(self.reasons),
                    warnings=warnings,
                    soft_repaired=soft_repaired,
                    last_candidate=candidate,
                )
