from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Protocol

from dm_engine.config import settings


def normalized_idempotency_key(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized[:128] or None


def cache_key(player_id: str, client_key: str) -> str:
    return f"{player_id}:{client_key}"


class IdempotencyCache(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def put(self, key: str, body: bytes) -> None: ...

    def clear(self) -> None: ...


@dataclass(slots=True)
class _Entry:
    body: bytes
    expires_at: float


class InMemoryIdempotencyCache:
    """Rendered success bodies keyed by ``player:client_key``. Errors are never stored."""

    def __init__(self, ttl_s: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = float(settings.turn_idempotency_ttl_s if ttl_s is None else ttl_s)
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> bytes | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                self._entries.pop(key, None)
                return None
            return entry.body

    def put(self, key: str, body: bytes) -> None:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            self._entries[key] = _Entry(body=bytes(body), expires_at=now + self.ttl_s)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)


_turn_cache = InMemoryIdempotencyCache()


def get_idempotency_cache() -> IdempotencyCache:
    return _turn_cache


def reset_idempotency_cache() -> None:
    _turn_cache.clear()
