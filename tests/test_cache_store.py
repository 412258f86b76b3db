"""
Tests: in-process cache store windows, LRU bounds and negative entries
"""
import pytest

from app.cache import CacheStore, is_negative


@pytest.fixture
def store(clock):
    return CacheStore(capacity=3, fresh_ttl=90, stale_extra=600, clock=clock)


class TestFreshnessWindows:
    def test_fresh_then_stale_then_gone(self, store, clock):
        """ttl=1s, staleExtra=2s: fresh, then stale-only, then absent"""
        store.set_cache("k", {"items": [1]}, ttl_seconds=1, stale_extra_seconds=2)
        assert store.get_fresh("k") == {"items": [1]}

        clock.advance(1.5)
        assert store.get_fresh("k") is None
        assert store.get_stale("k") == {"items": [1]}

        clock.advance(2.0)
        assert store.get_stale("k") is None
        assert store.get_any("k") is None

    def test_entry_window_invariant(self, store, clock):
        store.set_cache("k", {"items": []}, ttl_seconds=10, stale_extra_seconds=20)
        entry = store.get_any("k")
        assert entry.stale_until >= entry.expires_at >= entry.created_at
        assert entry.expires_at - entry.created_at == 10
        assert entry.stale_until - entry.expires_at == 20

    def test_ttls_are_clamped(self, store):
        store.set_cache("k", {"items": []}, ttl_seconds=99_999, stale_extra_seconds=99_999)
        entry = store.get_any("k")
        assert entry.expires_at - entry.created_at == 1800
        assert entry.stale_until - entry.expires_at == 7200

    def test_zero_ttl_clamps_to_minimum_not_default(self, store):
        store.set_cache("k", {"items": []}, ttl_seconds=0)
        entry = store.get_any("k")
        assert entry.expires_at - entry.created_at == 1

    def test_defaults_apply_when_ttl_omitted(self, store):
        store.set_cache("k", {"items": []})
        info = store.cache_info("k")
        assert info["fresh_for_ms"] == 90_000
        assert info["stale_for_ms"] == 690_000

    def test_cache_info_floors_at_zero(self, store, clock):
        store.set_cache("k", {"items": []}, ttl_seconds=1, stale_extra_seconds=1)
        clock.advance(5)
        assert store.cache_info("k") == {"fresh_for_ms": 0.0, "stale_for_ms": 0.0}
        assert store.cache_info("missing") is None


class TestEviction:
    def test_lru_evicts_least_recently_used(self, store):
        store.set_cache("a", 1)
        store.set_cache("b", 2)
        store.set_cache("c", 3)
        store.get_fresh("a")
        store.set_cache("d", 4)

        assert store.get_any("b") is None
        assert store.get_any("a") is not None
        assert len(store) == 3
        stats = store.cache_stats()
        assert stats["evictions_lru"] == 1
        assert stats["last_eviction"] is not None

    def test_expired_entries_swept_every_hundred_puts(self, clock):
        store = CacheStore(capacity=500, clock=clock)
        store.set_cache("old", 1, ttl_seconds=1, stale_extra_seconds=0)
        clock.advance(2)
        for i in range(98):
            store.set_cache(f"k{i}", i)
        assert store.cache_stats()["evictions_expired"] == 0

        store.set_cache("k98", 98)
        assert store.cache_stats()["evictions_expired"] == 1
        assert len(store) == 99

    def test_purge_key_and_prefix(self, store):
        store.set_cache("v1|top|page=1", 1)
        store.set_cache("v1|top|page=2", 2)
        store.set_cache("v1|search|q=x", 3)

        assert store.purge_key("v1|search|q=x") is True
        assert store.purge_key("v1|search|q=x") is False
        assert store.purge_prefix("v1|top") == 2
        assert len(store) == 0


class TestNegativeEntries:
    def test_negative_entry_is_marked_and_counted(self, store):
        store.set_negative_cache("k", {"error": "upstream-failure"}, ttl_seconds=5)
        payload = store.get_fresh("k")
        assert is_negative(payload)
        assert payload["error"] == "upstream-failure"
        stats = store.cache_stats()
        assert stats["negative_puts"] == 1
        assert stats["negative_hits"] == 1

    def test_negative_ttl_is_clamped(self, store):
        store.set_negative_cache("long", ttl_seconds=100)
        info = store.cache_info("long")
        assert info["fresh_for_ms"] == 30_000
        assert info["stale_for_ms"] == 90_000

        store.set_negative_cache("short", ttl_seconds=0)
        assert store.cache_info("short")["fresh_for_ms"] == 1000

    def test_negative_entry_flag(self, store):
        store.set_negative_cache("k")
        assert store.get_any("k").negative is True


class TestStats:
    def test_hit_ratios(self, store):
        store.set_cache("k", 1)
        store.get_fresh("k")
        store.get_fresh("missing")
        stats = store.cache_stats()
        assert stats["hits_fresh"] == 1
        assert stats["misses"] == 1
        assert stats["total_lookups"] == 2
        assert stats["hit_ratio"] == 0.5
        assert stats["size"] == 1
        assert stats["capacity"] == 3

    def test_metrics_hook_runs_on_first_lookup(self, store):
        calls = []
        store.on_metrics_log = lambda: calls.append(1)
        store.get_fresh("missing")
        store.get_fresh("missing")
        assert calls == [1]

    def test_reset_clears_everything(self, store):
        store.set_cache("k", 1)
        store.get_fresh("k")
        store.reset()
        assert len(store) == 0
        assert store.cache_stats()["puts"] == 0
