from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from jsonschema import Draft202012Validator
from pydantic import TypeAdapter, ValidationError

from dm_engine.modules.presentation.deterministic import word_count
from dm_engine.modules.turn.actions import sanitize_actions
from dm_engine.modules.turn.board import BoardSummary
from dm_engine.modules.turn.policy import content_violation
from dm_engine.modules.turn.schemas import CompanionCheckin, NarratorOutput, RuntimeDelta, WorldPatch

log = logging.getLogger(__name__)

MIN_UI_ACTIONS = 2
MAX_UI_ACTIONS = 4
LEGACY_BOARD_DELTA_IGNORED = "legacy_board_delta_ignored"
LEGACY_BOARD_DELTA_USED = "legacy_board_delta_alias"

RUNTIME_DELTA_LIMITS: dict[str, int] = {
    "rumors": 24,
    "objectives": 24,
    "discovery_log": 36,
    "companion_checkins": 8,
    "action_chips": 8,
    "reward_hints": 8,
}

NARRATOR_OUTPUT_SCHEMA: dict = {
    "type": "object",
    "required": ["narration", "scene", "runtime_delta", "ui_actions"],
    "properties": {
        "narration": {"type": "string", "minLength": 1},
        "scene": {"type": "object"},
        "runtime_delta": {"type": "object"},
        "ui_actions": {
            "type": "array",
            "minItems": MIN_UI_ACTIONS,
            "maxItems": MAX_UI_ACTIONS,
            "items": {
                "type": "object",
                "required": ["id", "label", "intent"],
                "properties": {
                    "id": {"type": "string"},
                    "label": {"type": "string"},
                    "intent": {"type": "string"},
                    "hint_key": {"type": "string"},
                    "prompt": {"type": "string"},
                    "payload": {"type": "object"},
                },
            },
        },
        "patches": {"type": "array"},
    },
}

_FIELD_VALIDATORS: dict[str, Draft202012Validator] = {
    name: Draft202012Validator(NARRATOR_OUTPUT_SCHEMA["properties"][name])
    for name in ("narration", "scene", "runtime_delta")
}
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_WORLD_PATCH_ADAPTER = TypeAdapter(WorldPatch)


@dataclass(slots=True)
class ValidationOutcome:
    ok: bool
    output: NarratorOutput | None = None
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    payload: dict | None = None


def extract_json_object(raw: str) -> str | None:
    text = str(raw or "").strip()
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    if text.startswith("{") and text.endswith("}"):
        return text
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1].strip()


def _as_record(value: object) -> dict | None:
    return value if isinstance(value, dict) else None


def _text_field(record: dict, *keys: str) -> str:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalize_world_patches(raw: object) -> tuple[list, int]:
    patches: list = []
    dropped = 0
    for entry in raw if isinstance(raw, list) else []:
        record = _as_record(entry)
        if record is None:
            dropped += 1
            continue
        op = _text_field(record, "op", "type")
        normalized: dict = {"op": op}
        if op in {"FACT_CREATE", "FACT_SUPERSEDE"}:
            normalized["fact_key"] = _text_field(record, "fact_key", "key")
            normalized["data"] = _as_record(record.get("data")) or _as_record(record.get("fact_json")) or {}
        elif op == "ENTITY_UPSERT":
            normalized["entity_key"] = _text_field(record, "entity_key", "id")
            normalized["entity_type"] = _text_field(record, "entity_type", "kind") or "entity"
            normalized["data"] = _as_record(record.get("data")) or _as_record(record.get("entity_json")) or {}
            normalized["tags"] = record.get("tags") if isinstance(record.get("tags"), list) else []
        elif op == "REL_SET":
            normalized["subject_key"] = _text_field(record, "subject_key", "subject")
            normalized["object_key"] = _text_field(record, "object_key", "object")
            normalized["rel_type"] = _text_field(record, "rel_type", "type_name")
            normalized["data"] = _as_record(record.get("data")) or _as_record(record.get("rel_json")) or {}
        elif op == "QUEST_UPSERT":
            normalized["quest_key"] = _text_field(record, "quest_key", "id")
            normalized["data"] = _as_record(record.get("data")) or {}
        elif op == "LOCATION_STATE_UPDATE":
            normalized["location_key"] = _text_field(record, "location_key", "id")
            normalized["data"] = _as_record(record.get("data")) or {}
        else:
            dropped += 1
            continue
        try:
            patches.append(_WORLD_PATCH_ADAPTER.validate_python(normalized))
        except ValidationError:
            dropped += 1
    return patches, dropped


def normalize_runtime_delta(raw: dict) -> tuple[RuntimeDelta, list[str]]:
    def _list(key: str) -> list:
        value = raw.get(key)
        return value if isinstance(value, list) else []

    warnings: list[str] = []
    cleaned: dict = {}
    for key in ("rumors", "objectives", "discovery_log"):
        entries = [e for e in _list(key) if (isinstance(e, str) and e.strip()) or isinstance(e, dict)]
        cleaned[key] = entries[: RUNTIME_DELTA_LIMITS[key]]
    for key in ("discovery_flags", "scene_cache"):
        cleaned[key] = raw.get(key) if isinstance(raw.get(key), dict) else {}
    for key in ("action_chips", "reward_hints"):
        cleaned[key] = [e for e in _list(key) if isinstance(e, dict)][: RUNTIME_DELTA_LIMITS[key]]

    checkins: list[CompanionCheckin] = []
    for entry in _list("companion_checkins"):
        try:
            checkins.append(CompanionCheckin.model_validate(entry))
        except ValidationError:
            warnings.append("companion_checkin_dropped")
    cleaned["companion_checkins"] = checkins[: RUNTIME_DELTA_LIMITS["companion_checkins"]]
    return RuntimeDelta.model_validate(cleaned), warnings


class ContractValidator:
    """Ordered, pure checks over one generator candidate.

    Each stage stops at its first failure and reports ``"<check>:<detail>"``.
    """

    def __init__(
        self,
        *,
        word_band: tuple[int, int],
        vendor_ids: set[str] | None = None,
        board_mode: str = "town",
        board_summary: BoardSummary | None = None,
    ) -> None:
        self.min_words, self.max_words = word_band
        self.board_summary = board_summary or BoardSummary(board_type=board_mode)
        self.board_mode = board_mode
        self.vendor_ids = set(vendor_ids) if vendor_ids is not None else self.board_summary.vendor_ids

    def validate_text(self, raw: str) -> ValidationOutcome:
        json_text = extract_json_object(raw)
        if json_text is None:
            return ValidationOutcome(ok=False, reasons=["invalid_json:missing_object"])
        try:
            parsed = json.loads(json_text)
        except json.JSONDecodeError as exc:
            return ValidationOutcome(ok=False, reasons=[f"json_parse_failed:{exc.msg}"])
        if not isinstance(parsed, dict):
            return ValidationOutcome(ok=False, reasons=["invalid_json:not_object"])
        return self.validate_payload(parsed)

    def validate_payload(self, payload: dict) -> ValidationOutcome:
        warnings: list[str] = []

        narration = payload.get("narration")
        if not _FIELD_VALIDATORS["narration"].is_valid(narration) or not str(narration).strip():
            return ValidationOutcome(ok=False, reasons=["narration_missing"], payload=payload)
        words = word_count(narration)
        if words < self.min_words or words > self.max_words:
            return ValidationOutcome(
                ok=False,
                reasons=[f"narration_word_count_out_of_bounds:{words}:expected_{self.min_words}-{self.max_words}"],
                payload=payload,
            )
        violation = content_violation(narration)
        if violation:
            return ValidationOutcome(ok=False, reasons=[f"content_policy:{violation}"], payload=payload)

        if not _FIELD_VALIDATORS["scene"].is_valid(payload.get("scene")):
            return ValidationOutcome(ok=False, reasons=["scene_missing_or_invalid"], payload=payload)

        if "runtime_delta" in payload:
            raw_delta = payload.get("runtime_delta")
            if "board_delta" in payload:
                warnings.append(LEGACY_BOARD_DELTA_IGNORED)
                log.warning("turn.contract.legacy_board_delta_ignored")
        else:
            raw_delta = payload.get("board_delta")
            if raw_delta is not None:
                warnings.append(LEGACY_BOARD_DELTA_USED)
        if not _FIELD_VALIDATORS["runtime_delta"].is_valid(raw_delta):
            return ValidationOutcome(ok=False, reasons=["runtime_delta_missing_or_invalid"], payload=payload, warnings=warnings)
        runtime_delta, delta_warnings = normalize_runtime_delta(raw_delta)
        warnings.extend(delta_warnings)

        actions = sanitize_actions(payload.get("ui_actions") or [], self.board_mode, self.board_summary)
        if len(actions) < MIN_UI_ACTIONS:
            return ValidationOutcome(
                ok=False,
                reasons=[f"ui_actions_count_out_of_bounds:{len(actions)}:expected_{MIN_UI_ACTIONS}_{MAX_UI_ACTIONS}"],
                payload=payload,
                warnings=warnings,
            )
        actions = actions[:MAX_UI_ACTIONS]

        vendor_reasons = [
            f"ui_actions.shop.vendorId_invalid:{action.payload.get('vendorId') or 'missing'}"
            for action in actions
            if action.intent == "shop_action" and action.payload.get("vendorId") not in self.vendor_ids
        ]
        if vendor_reasons:
            return ValidationOutcome(ok=False, reasons=vendor_reasons, payload=payload, warnings=warnings)

        patches, dropped = normalize_world_patches(payload.get("patches"))
        if dropped:
            warnings.append(f"world_patches_dropped:{dropped}")

        output = NarratorOutput(
            narration=str(narration).strip(),
            scene=payload["scene"],
            runtime_delta=runtime_delta,
            ui_actions=actions,
            patches=patches,
        )
        return ValidationOutcome(ok=True, output=output, warnings=warnings, payload=payload)
