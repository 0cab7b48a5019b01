from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import TypeVar

T = TypeVar("T")

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
_WS_RE = re.compile(r"\s+")


def hash32(value: str) -> int:
    """32-bit FNV-1a over the code points of ``value``."""
    acc = _FNV_OFFSET
    for ch in value:
        acc ^= ord(ch)
        acc = (acc * _FNV_PRIME) & 0xFFFFFFFF
    return acc


def stable_int(seed_key: str, salt: str = "") -> int:
    return hash32(f"{seed_key}::{salt}")


def stable_float(seed_key: str, salt: str = "") -> float:
    return (stable_int(seed_key, salt) % 1_000_000) / 1_000_000


def pick_deterministic(pool: Sequence[T], seed_key: str, salt: str = "") -> T:
    if not pool:
        raise ValueError("pick_deterministic requires a non-empty pool")
    return pool[stable_int(seed_key, salt) % len(pool)]


def pick_without_immediate_repeat(pool: Sequence[T], seed_key: str, last_value: T | None, salt: str = "") -> T:
    if not pool:
        raise ValueError("pick_without_immediate_repeat requires a non-empty pool")
    if len(pool) == 1:
        return pool[0]
    candidates = list(pool) if last_value is None else [entry for entry in pool if entry != last_value]
    if not candidates:
        return pool[0]
    return candidates[stable_int(seed_key, salt) % len(candidates)]


def weighted_pick_without_immediate_repeat(
    weights: Mapping[str, float],
    seed_key: str,
    last_value: str | None,
    salt: str = "",
) -> str:
    keys = list(weights.keys())
    if not keys:
        raise ValueError("weighted_pick_without_immediate_repeat requires at least one key")
    candidates = [key for key in keys if weights.get(key, 0) > 0] or keys
    if last_value and len(candidates) > 1:
        without_last = [key for key in candidates if key != last_value]
        if without_last:
            candidates = without_last

    total = sum(max(0.001, weights.get(key, 0)) for key in candidates)
    roll = stable_float(seed_key, salt) * total
    cursor = 0.0
    for key in candidates:
        cursor += max(0.001, weights.get(key, 0))
        if roll <= cursor:
            return key
    return candidates[-1]


def normalize_line(text: str) -> str:
    return _WS_RE.sub(" ", str(text or "").strip().lower())


def hash_line(text: str) -> str:
    return format(hash32(normalize_line(text)), "x")


def compact_text(text: str, max_chars: int = 120) -> str:
    clean = _WS_RE.sub(" ", str(text or "").strip())
    if len(clean) <= max_chars:
        return clean
    head = clean[:max_chars]
    if " " in head:
        head = head.rsplit(" ", 1)[0]
    return f"{head.strip()}..."


def dedupe_keep_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        clean = str(value or "").strip()
        if not clean or clean in seen:
            continue
        seen.add(clean)
        out.append(clean)
    return out


def word_count(text: str) -> int:
    return len([part for part in _WS_RE.split(str(text or "").strip()) if part])
