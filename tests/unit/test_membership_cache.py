"""Tests for the membership cache"""

import json

import pytest

from lyra_server.errors import RoomNotFound
from lyra_server.rooms import room_metadata_key


class TestMembersOf:
    @pytest.mark.asyncio
    async def test_read_through(self, cache, registry):
        await registry.register("r1", "ABC", "host")
        assert await cache.members_of("r1") == frozenset({"host"})
        assert await cache.members_of("r1") == frozenset({"host"})
        assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}

    @pytest.mark.asyncio
    async def test_unknown_room(self, cache):
        with pytest.raises(RoomNotFound):
            await cache.members_of("nope")
        assert cache.stats()["entries"] == 0


class TestInvalidation:
    """Registry writes are visible on the next lookup"""

    @pytest.mark.asyncio
    async def test_add_member_visible_immediately(self, cache, registry):
        await registry.register("r1", "ABC", "host")
        await cache.members_of("r1")

        await registry.add_member("r1", "guest")
        assert "guest" in await cache.members_of("r1")

    @pytest.mark.asyncio
    async def test_delete_room_visible_immediately(self, cache, registry):
        await registry.register("r1", "ABC", "host")
        await cache.members_of("r1")

        await registry.delete_room("r1")
        with pytest.raises(RoomNotFound):
            await cache.members_of("r1")


class TestStaleness:
    """Writes that bypass the registry are seen within the TTL"""

    @pytest.mark.asyncio
    async def test_stale_until_ttl(self, cache, registry, memory_store, clock):
        await registry.register("r1", "ABC", "host")
        await cache.members_of("r1")

        raw = json.loads(await memory_store.get(room_metadata_key("r1")))
        raw["members"].append("sneaky")
        await memory_store.set(room_metadata_key("r1"), json.dumps(raw))

        clock.advance(59)
        assert "sneaky" not in await cache.members_of("r1")
        clock.advance(1)
        assert "sneaky" in await cache.members_of("r1")


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_drops_expired(self, cache, registry, clock):
        await registry.register("r1", "ABC", "host")
        await registry.register("r2", "DEF", "host")
        await cache.members_of("r1")
        clock.advance(30)
        await cache.members_of("r2")

        clock.advance(30)
        assert cache.sweep() == 1
        assert cache.stats()["entries"] == 1

    def test_dispose_clears(self, cache):
        cache._entries["r1"] = (frozenset({"a"}), 1e12)
        cache.dispose()
        assert cache.stats()["entries"] == 0
