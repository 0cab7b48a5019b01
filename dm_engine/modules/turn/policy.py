from __future__ import annotations

import re

from dm_engine.modules.presentation.word_banks import BANNED_PLAYER_PHRASES

_INPUT_BLOCK_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("PROMPT_INJECTION", re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE)),
    ("PROMPT_INJECTION", re.compile(r"\bsystem\s+prompt\b", re.IGNORECASE)),
    ("PROMPT_INJECTION", re.compile(r"\bdeveloper\s+message\b", re.IGNORECASE)),
    ("CODE_INJECTION", re.compile(r"<script\b", re.IGNORECASE)),
    ("JAILBREAK", re.compile(r"\bjailbreak\b", re.IGNORECASE)),
)

_OUTPUT_BLOCK_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("sexual_content", re.compile(r"\b(sexual|explicit sex|nsfw)\b", re.IGNORECASE)),
    ("markup", re.compile(r"<\s*(script|iframe|style)\b", re.IGNORECASE)),
    ("assistant_voice", re.compile(r"\bas an ai( language model)?\b", re.IGNORECASE)),
    ("prompt_leak", re.compile(r"\b(output contract|system prompt)\b", re.IGNORECASE)),
)

_SNAKE_CASE_RE = re.compile(r"\b[a-z0-9]+(?:_[a-z0-9]+)+\b")
_UUID_RE = re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE)
_FIELD_LEAKS: tuple[str, ...] = (
    "runtime_delta",
    "board_delta",
    "ui_actions",
    "hint_key",
    "vendorid",
    "template_id",
    "roll_log",
    "schema_version",
)


def apply_input_policy(player_input: str | None, *, max_chars: int = 8000) -> tuple[str, bool, str | None]:
    raw = " ".join(str(player_input or "").split()).strip()
    if max_chars > 0 and len(raw) > max_chars:
        raw = raw[:max_chars].rstrip()
    for reason, pattern in _INPUT_BLOCK_PATTERNS:
        if pattern.search(raw):
            return raw, True, reason
    return raw, False, None


def content_violation(text: str | None) -> str | None:
    value = str(text or "")
    for term, pattern in _OUTPUT_BLOCK_PATTERNS:
        if pattern.search(value):
            return term
    return None


def leaks_internal_vocabulary(text: str) -> bool:
    lowered = str(text or "").lower()
    if any(phrase in lowered for phrase in BANNED_PLAYER_PHRASES):
        return True
    if any(field in lowered for field in _FIELD_LEAKS):
        return True
    if _UUID_RE.search(text):
        return True
    return bool(_SNAKE_CASE_RE.search(text))


def strip_internal_lines(lines: list[str]) -> list[str]:
    return [line for line in lines if line.strip() and not leaks_internal_vocabulary(line)]
