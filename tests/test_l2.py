"""
Tests: L2 bridge, backends and store integration
"""
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import fakeredis.aioredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.cache import (
    CacheStore,
    L2Backend,
    L2Bridge,
    MemoryL2Backend,
    RedisL2Backend,
    RestKVL2Backend,
)


class BrokenBackend(L2Backend):
    name = "broken"

    async def get(self, key):
        raise RuntimeError("boom")

    async def set(self, key, value, ttl_seconds):
        raise RuntimeError("boom")


@pytest.fixture
def memory(clock):
    return MemoryL2Backend(clock=clock)


@pytest.fixture
def bridge(memory, clock):
    return L2Bridge(enabled=True, backends=[memory], clock=clock)


@pytest.fixture
def store(bridge, clock):
    return CacheStore(l2=bridge, clock=clock)


class TestBridge:
    def test_effective_ttl_multiplies_and_clamps(self, bridge):
        assert bridge.effective_ttl(90) == 900
        assert bridge.effective_ttl(10_000) == 86_400
        assert bridge.effective_ttl(0.01) == 1

    def test_ttl_multiplier_is_bounded(self):
        assert L2Bridge(ttl_mult=50).ttl_mult == 10
        assert L2Bridge(ttl_mult=0).ttl_mult == 1

    @pytest.mark.asyncio
    async def test_disabled_bridge_is_inert(self, memory):
        bridge = L2Bridge(enabled=False, backends=[memory])
        assert await bridge.l2_set("k", {"items": []}, 10) is None
        assert await bridge.l2_get("k") is None

    @pytest.mark.asyncio
    async def test_key_prefix_applied(self, memory, clock):
        bridge = L2Bridge(enabled=True, key_prefix="edge:", backends=[memory], clock=clock)
        await bridge.l2_set("k", {"items": [1]}, 10)
        assert await memory.get("edge:k") == {"items": [1]}
        assert await bridge.l2_get("k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_negative_payload_never_written(self, bridge, memory):
        assert await bridge.l2_set("k", {"__negative": True}, 10) is None
        assert await memory.get("k") is None

    @pytest.mark.asyncio
    async def test_failing_backend_is_skipped(self, memory, clock):
        bridge = L2Bridge(enabled=True, backends=[BrokenBackend(), memory], clock=clock)
        assert await bridge.l2_set("k", {"items": [1]}, 10) == 1
        assert await bridge.l2_get("k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_memory_only_init_logs_degraded(self, caplog):
        caplog.set_level(logging.INFO, logger="cache.l2")
        bridge = L2Bridge(enabled=True)
        await bridge.l2_get("k")
        assert bridge.provider_names() == ["memory-l2"]
        assert "l2-init" in caplog.text
        assert "l2-degraded" in caplog.text


class TestMemoryBackend:
    @pytest.mark.asyncio
    async def test_ttl_capped_at_one_hour(self, memory, clock):
        await memory.set("k", "v", 7200)
        clock.advance(3599)
        assert await memory.get("k") == "v"
        clock.advance(2)
        assert await memory.get("k") is None


class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_json_round_trip_with_clamped_ttl(self):
        client = fakeredis.aioredis.FakeRedis(decode_responses=True)
        backend = RedisL2Backend(client)
        await backend.set("k", {"items": [1, 2]}, 5)

        assert await backend.get("k") == {"items": [1, 2]}
        assert 0 < await client.ttl("k") <= 30
        assert await backend.get("missing") is None

    @pytest.mark.asyncio
    async def test_long_ttl_capped(self):
        client = fakeredis.aioredis.FakeRedis(decode_responses=True)
        backend = RedisL2Backend(client)
        await backend.set("k", {"items": []}, 86_400)
        assert 3000 < await client.ttl("k") <= 3600

    @pytest.mark.asyncio
    async def test_set_reports_failure(self):
        client = MagicMock()
        client.set = AsyncMock(side_effect=RedisConnectionError("down"))
        backend = RedisL2Backend(client)
        assert await backend.set("k", {"items": []}, 60) is False

    @pytest.mark.asyncio
    async def test_close_uses_aclose(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        await RedisL2Backend(client).close()
        client.aclose.assert_awaited_once()


class TestRestBackend:
    @pytest.mark.asyncio
    async def test_get_parses_result_field(self):
        session = MagicMock()
        session.get.return_value = MagicMock(ok=True)
        session.get.return_value.json.return_value = {"result": json.dumps({"items": [1]})}
        backend = RestKVL2Backend("https://kv.example", "tok", session=session)

        assert await backend.get("a|b") == {"items": [1]}
        url = session.get.call_args[0][0]
        assert url == "https://kv.example/get/a%7Cb"
        assert session.get.call_args[1]["headers"] == {"Authorization": "Bearer tok"}

    @pytest.mark.asyncio
    async def test_missing_result_is_a_miss(self):
        session = MagicMock()
        session.get.return_value = MagicMock(ok=True)
        session.get.return_value.json.return_value = {"result": None}
        backend = RestKVL2Backend("https://kv.example", "tok", session=session)
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_set_sends_clamped_expiry(self):
        session = MagicMock()
        backend = RestKVL2Backend("https://kv.example", "tok", session=session)
        await backend.set("k", {"items": []}, 5)
        assert session.post.call_args[1]["params"] == {"EX": 30}

    @pytest.mark.asyncio
    async def test_set_reports_http_failure(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=False, status_code=500)
        backend = RestKVL2Backend("https://kv.example", "tok", session=session)
        assert await backend.set("k", {"items": []}, 60) is False

    def test_unconfigured_backend_unavailable(self):
        assert RestKVL2Backend("", "tok", session=MagicMock()).available() is False


class TestStoreIntegration:
    @pytest.mark.asyncio
    async def test_cold_instance_served_from_l2_and_promoted(self, store):
        store.set_cache("k", {"items": [1]}, ttl_seconds=5)
        await store.wait_for_writes()
        store.delete_memory_key("k")

        assert await store.get_fresh_or_l2("k") == {"items": [1]}
        stats = store.cache_stats()
        assert stats["l2_hits"] == 1
        assert stats["l2_promotions"] == 1
        assert stats["l2_writes"] >= 1
        assert store.get_fresh("k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_promotion_can_be_disabled(self, bridge, clock):
        store = CacheStore(l2=bridge, promote_on_hit=False, clock=clock)
        await bridge.l2_set("k", {"items": [1]}, 10)
        assert await store.get_fresh_or_l2("k") == {"items": [1]}
        assert store.get_any("k") is None

    @pytest.mark.asyncio
    async def test_negative_entries_stay_in_process(self, store, memory):
        store.set_negative_cache("k", {"error": "x"})
        await store.wait_for_writes()
        assert await memory.get("k") is None
        assert store.cache_stats()["l2_writes"] == 0

    @pytest.mark.asyncio
    async def test_write_through_failure_counted(self, clock):
        bridge = L2Bridge(enabled=True, backends=[BrokenBackend()], clock=clock)
        store = CacheStore(l2=bridge, clock=clock)
        store.set_cache("k", {"items": [1]})
        await store.wait_for_writes()

        stats = store.cache_stats()
        assert stats["l2_writes"] == 0
        assert stats["l2_write_failures"] == 1

    @pytest.mark.asyncio
    async def test_partial_write_counts_as_success(self, memory, clock):
        bridge = L2Bridge(enabled=True, backends=[BrokenBackend(), memory], clock=clock)
        store = CacheStore(l2=bridge, clock=clock)
        store.set_cache("k", {"items": [1]})
        await store.wait_for_writes()

        stats = store.cache_stats()
        assert stats["l2_writes"] == 1
        assert stats["l2_write_failures"] == 0

    @pytest.mark.asyncio
    async def test_l2_miss_counted(self, store):
        assert await store.get_fresh_or_l2("nothing") is None
        assert store.cache_stats()["l2_misses"] == 1
