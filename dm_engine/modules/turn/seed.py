from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

SEED_NAMESPACE = "turn-seed:v1"
DETERMINISM_WEAK_WARNING = "determinism_weak"


@dataclass(frozen=True, slots=True)
class TurnSeed:
    value: int
    weak: bool = False

    def __str__(self) -> str:
        return str(self.value)


def compute_turn_seed(campaign_id: object, turn_index: int, player_id: object, salt: str | None) -> TurnSeed:
    salt_value = str(salt or "").strip()
    material = f"{SEED_NAMESPACE}|{campaign_id}|{int(turn_index)}|{player_id}|{salt_value}"
    digest = hashlib.sha256(material.encode("utf-8")).digest()
    weak = not salt_value
    if weak:
        log.warning(
            "turn.seed.determinism_weak",
            extra={"campaign_id": str(campaign_id), "turn_index": int(turn_index)},
        )
    return TurnSeed(value=int.from_bytes(digest[:8], "big"), weak=weak)


def _canonical_context(context: Mapping | None) -> str:
    if not context:
        return "{}"
    return json.dumps(context, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


class TurnPRNG:
    """Labelled, replayable draws for a single turn.

    Every draw is appended to ``roll_log`` in call order, so a committed turn can be
    re-derived from its seed and log.
    """

    def __init__(self, seed: TurnSeed | int) -> None:
        self._seed = seed.value if isinstance(seed, TurnSeed) else int(seed)
        self._entries: list[dict] = []

    @property
    def seed(self) -> int:
        return self._seed

    def next01(self, label: str, context: Mapping | None = None) -> float:
        ordinal = len(self._entries)
        context_text = _canonical_context(context)
        material = f"{self._seed}|{ordinal}|{label}|{context_text}"
        digest = hashlib.sha256(material.encode("utf-8")).digest()
        value = int.from_bytes(digest[:8], "big") / 2**64
        self._entries.append(
            {
                "i": ordinal,
                "label": str(label),
                "context": json.loads(context_text),
                "value01": value,
            }
        )
        return value

    def next_int(self, label: str, low: int, high: int, context: Mapping | None = None) -> int:
        if high < low:
            low, high = high, low
        return low + int(self.next01(label, context) * (high - low + 1))

    def pick(self, label: str, pool: Sequence[T], context: Mapping | None = None) -> T:
        if not pool:
            raise ValueError("pick requires a non-empty pool")
        return pool[int(self.next01(label, context) * len(pool))]

    @property
    def roll_log(self) -> list[dict]:
        return [dict(entry) for entry in self._entries]


def replay_roll_log(seed: TurnSeed | int, entries: Sequence[Mapping]) -> bool:
    prng = TurnPRNG(seed)
    for entry in entries:
        value = prng.next01(str(entry.get("label") or ""), entry.get("context") or None)
        if value != entry.get("value01"):
            return False
    return prng.roll_log == [dict(entry) for entry in entries]


def rng01(seed: int | str, label: str) -> float:
    """Stateless draw keyed by seed and label, used where call order must not matter."""
    digest = hashlib.md5(f"{seed}:{label}".encode("utf-8")).hexdigest()
    return (int(digest[:16], 16) % 1_000_000_000) / 1_000_000_000


def rng_int(seed: int | str, label: str, low: int, high: int) -> int:
    if high < low:
        low, high = high, low
    return low + int(rng01(seed, label) * (high - low + 1))


def rng_pick(seed: int | str, label: str, pool: Sequence[T]) -> T:
    if not pool:
        raise ValueError("rng_pick requires a non-empty pool")
    return pool[int(rng01(seed, label) * len(pool))]


def weighted_pick(seed: int | str, label: str, weighted: Sequence[tuple[T, float]]) -> T:
    if not weighted:
        raise ValueError("weighted_pick requires at least one entry")
    total = sum(max(0.0, float(weight)) for _, weight in weighted)
    if total <= 0:
        return weighted[0][0]
    roll = rng01(seed, label) * total
    cursor = 0.0
    for item, weight in weighted:
        cursor += max(0.0, float(weight))
        if roll < cursor:
            return item
    return weighted[-1][0]
