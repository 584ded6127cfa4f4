"""Tests for the in-process state store"""

import asyncio

import pytest

from lyra_server.storage import MemoryStore, StateStore


class TestMemoryStoreBasics:
    """Get/set/delete with expiry"""

    def test_is_state_store(self, memory_store):
        assert isinstance(memory_store, StateStore)
        assert memory_store.is_connected() is True

    @pytest.mark.asyncio
    async def test_set_and_get(self, memory_store):
        await memory_store.set("a", "1")
        assert await memory_store.get("a") == "1"
        assert await memory_store.exists("a") is True

    @pytest.mark.asyncio
    async def test_missing_key(self, memory_store):
        assert await memory_store.get("missing") is None
        assert await memory_store.exists("missing") is False

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, memory_store, clock):
        await memory_store.set("a", "1", ttl=10)
        clock.advance(9)
        assert await memory_store.get("a") == "1"
        clock.advance(1)
        assert await memory_store.get("a") is None

    @pytest.mark.asyncio
    async def test_delete_and_delete_many(self, memory_store):
        for key in ("a", "b", "c"):
            await memory_store.set(key, "v")
        await memory_store.delete("a")
        await memory_store.delete_many(["b", "c", "missing"])
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_set_if_absent(self, memory_store, clock):
        assert await memory_store.set_if_absent("code", "first", ttl=5) is True
        assert await memory_store.set_if_absent("code", "second", ttl=5) is False
        assert await memory_store.get("code") == "first"

        clock.advance(5)
        assert await memory_store.set_if_absent("code", "third") is True
        assert await memory_store.get("code") == "third"

    @pytest.mark.asyncio
    async def test_scan_prefix_skips_expired(self, memory_store, clock):
        await memory_store.set("room:1:metadata", "x", ttl=5)
        await memory_store.set("room:2:metadata", "y")
        await memory_store.set("roomCode:abc", "z")
        clock.advance(6)

        result = await memory_store.scan_prefix("room:")
        assert result == [("room:2:metadata", "y")]

    def test_sweep_removes_expired(self, memory_store, clock):
        asyncio.run(memory_store.set("a", "1", ttl=1))
        asyncio.run(memory_store.set("b", "2"))
        clock.advance(2)
        assert memory_store.sweep() == 1
        assert len(memory_store) == 1


class TestMemoryStoreCounters:
    """Atomic counters and gauges"""

    @pytest.mark.asyncio
    async def test_increment_creates_with_ttl(self, memory_store, clock):
        assert await memory_store.increment_with_expiry("c", 60) == 1
        assert await memory_store.increment_with_expiry("c", 60) == 2
        clock.advance(60)
        assert await memory_store.get("c") is None

    @pytest.mark.asyncio
    async def test_increment_preserves_ttl(self, memory_store, clock):
        await memory_store.increment_with_expiry("c", 60)
        clock.advance(50)
        await memory_store.increment_with_expiry("c", 60)
        clock.advance(10)
        # The second increment did not extend the window
        assert await memory_store.get("c") is None

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_counted(self, memory_store):
        results = await asyncio.gather(
            *[memory_store.increment_with_expiry("c", 60) for _ in range(50)]
        )
        assert sorted(results) == list(range(1, 51))
        assert await memory_store.get("c") == "50"

    def test_threaded_increments_are_counted(self, memory_store, run_threads):
        results = run_threads(lambda: memory_store.increment_with_expiry("c", 60))
        assert sorted(results) == list(range(1, 2001))

    def test_threaded_gauge_respects_cap_and_floor(self, memory_store, run_threads):
        acquired = run_threads(lambda: memory_store.increment_gauge("g", 500, 3600), per_thread=100)
        assert sum(1 for allowed, _ in acquired if allowed) == 500

        run_threads(lambda: memory_store.decrement_gauge("g"), per_thread=100)
        assert asyncio.run(memory_store.get("g")) == "0"

    @pytest.mark.asyncio
    async def test_gauge_cap(self, memory_store):
        assert await memory_store.increment_gauge("g", 2, 3600) == (True, 1)
        assert await memory_store.increment_gauge("g", 2, 3600) == (True, 2)
        assert await memory_store.increment_gauge("g", 2, 3600) == (False, 2)
        assert await memory_store.get("g") == "2"

    @pytest.mark.asyncio
    async def test_gauge_refreshes_ttl(self, memory_store, clock):
        await memory_store.increment_gauge("g", 10, 100)
        clock.advance(90)
        await memory_store.increment_gauge("g", 10, 100)
        clock.advance(90)
        assert await memory_store.get("g") == "2"

    @pytest.mark.asyncio
    async def test_decrement_floors_at_zero(self, memory_store):
        await memory_store.increment_gauge("g", 10, 100)
        assert await memory_store.decrement_gauge("g") == 0
        assert await memory_store.decrement_gauge("g") == 0
        assert await memory_store.decrement_gauge("never-set") == 0


class TestMemoryStoreCleanup:
    """Background sweep task"""

    @pytest.mark.asyncio
    async def test_start_and_dispose(self):
        store = MemoryStore(sweep_interval=0.01)
        store.start_cleanup()
        assert store._cleanup_task is not None
        await asyncio.sleep(0.03)
        store.dispose()
        assert store._cleanup_task is None
