"""Tests for the Redis store's Lua scripts, executed by an in-process Redis"""

import asyncio

import pytest


class TestIncrementScript:
    @pytest.mark.asyncio
    async def test_new_counter_gets_ttl(self, lua_store, lua_redis):
        assert await lua_store.increment_with_expiry("ratelimit:conn:s1:1", 60) == 1
        ttl = await lua_redis.ttl("ratelimit:conn:s1:1")
        assert 0 < ttl <= 60

    @pytest.mark.asyncio
    async def test_existing_ttl_kept(self, lua_store, lua_redis):
        await lua_store.increment_with_expiry("c", 60)
        await lua_redis.expire("c", 5)

        assert await lua_store.increment_with_expiry("c", 60) == 2
        assert await lua_redis.ttl("c") <= 5

    @pytest.mark.asyncio
    async def test_counter_without_ttl_gets_one(self, lua_store, lua_redis):
        await lua_redis.set("c", "3")
        assert await lua_store.increment_with_expiry("c", 60) == 4
        assert 0 < await lua_redis.ttl("c") <= 60

    @pytest.mark.asyncio
    async def test_concurrent_increments(self, lua_store):
        results = await asyncio.gather(*[lua_store.increment_with_expiry("c", 60) for _ in range(100)])
        assert sorted(results) == list(range(1, 101))
        assert await lua_store.get("c") == "100"


class TestGaugeScripts:
    @pytest.mark.asyncio
    async def test_cap(self, lua_store, lua_redis):
        assert await lua_store.increment_gauge("connections:1.1.1.1", 2, 3600) == (True, 1)
        assert await lua_store.increment_gauge("connections:1.1.1.1", 2, 3600) == (True, 2)
        assert await lua_store.increment_gauge("connections:1.1.1.1", 2, 3600) == (False, 2)
        assert await lua_redis.get("connections:1.1.1.1") == "2"

    @pytest.mark.asyncio
    async def test_increment_refreshes_ttl(self, lua_store, lua_redis):
        await lua_store.increment_gauge("g", 10, 3600)
        await lua_redis.expire("g", 5)

        await lua_store.increment_gauge("g", 10, 3600)
        assert await lua_redis.ttl("g") > 5

    @pytest.mark.asyncio
    async def test_refusal_leaves_ttl(self, lua_store, lua_redis):
        await lua_store.increment_gauge("g", 1, 3600)
        await lua_redis.expire("g", 5)

        assert await lua_store.increment_gauge("g", 1, 3600) == (False, 1)
        assert await lua_redis.ttl("g") <= 5

    @pytest.mark.asyncio
    async def test_decrement_keeps_ttl_and_floors(self, lua_store, lua_redis):
        await lua_store.increment_gauge("g", 10, 3600)
        await lua_store.increment_gauge("g", 10, 3600)
        await lua_redis.expire("g", 100)

        assert await lua_store.decrement_gauge("g") == 1
        assert 0 < await lua_redis.ttl("g") <= 100
        assert await lua_store.decrement_gauge("g") == 0
        assert await lua_store.decrement_gauge("g") == 0
        assert await lua_store.decrement_gauge("never-set") == 0
        assert await lua_redis.get("g") == "0"

    @pytest.mark.asyncio
    async def test_concurrent_acquire_respects_cap(self, lua_store):
        results = await asyncio.gather(*[lua_store.increment_gauge("g", 10, 3600) for _ in range(25)])
        assert sum(1 for allowed, _ in results if allowed) == 10
        assert await lua_store.get("g") == "10"
