from __future__ import annotations

from dm_engine.modules.turn.idempotency import InMemoryIdempotencyCache, cache_key, normalized_idempotency_key


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_normalized_key_strips_and_truncates() -> None:
    assert normalized_idempotency_key(None) is None
    assert normalized_idempotency_key("   ") is None
    assert normalized_idempotency_key("  abc  ") == "abc"
    assert normalized_idempotency_key("k" * 300) == "k" * 128


def test_cache_key_is_scoped_to_player() -> None:
    assert cache_key("player-1", "abc") == "player-1:abc"
    assert cache_key("player-1", "abc") != cache_key("player-2", "abc")


def test_entry_is_served_until_ttl_expires() -> None:
    clock = _Clock()
    cache = InMemoryIdempotencyCache(ttl_s=20.0, clock=clock)
    cache.put("p:k", b'{"ok":true}')

    clock.now += 19.9
    assert cache.get("p:k") == b'{"ok":true}'

    clock.now += 0.1
    assert cache.get("p:k") is None
    assert len(cache) == 0


def test_put_evicts_expired_entries() -> None:
    clock = _Clock()
    cache = InMemoryIdempotencyCache(ttl_s=5.0, clock=clock)
    cache.put("p:old", b"old")
    clock.now += 6.0
    cache.put("p:new", b"new")

    assert len(cache) == 1
    assert cache.get("p:new") == b"new"


def test_clear_drops_everything() -> None:
    cache = InMemoryIdempotencyCache(ttl_s=60.0)
    cache.put("a", b"1")
    cache.put("b", b"2")
    cache.clear()
    assert cache.get("a") is None
    assert len(cache) == 0
