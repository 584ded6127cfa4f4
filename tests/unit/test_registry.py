"""Tests for the room registry"""

import asyncio
import json

import pytest

from lyra_server.auth import Role
from lyra_server.errors import BadRequest, CodeConflict, NotAMember, NotHost, RoomNotFound
from lyra_server.rooms import ROOM_TTL, RoomRegistry, room_code_key, room_metadata_key


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_writes_both_records(self, registry, memory_store):
        metadata = await registry.register("r1", "ABC123", "host")

        assert metadata.members == ["host"]
        stored = json.loads(await memory_store.get(room_metadata_key("r1")))
        assert stored["roomId"] == "r1"
        assert stored["hostUserId"] == "host"
        assert stored["members"] == ["host"]
        assert isinstance(stored["createdAt"], int)

        mapping = json.loads(await memory_store.get(room_code_key("ABC123")))
        assert mapping == {"roomId": "r1", "hostUserId": "host"}

    @pytest.mark.asyncio
    async def test_records_expire_after_room_ttl(self, registry, memory_store, clock):
        await registry.register("r1", "ABC123", "host")
        clock.advance(ROOM_TTL)
        assert await registry.get_room("r1") is None
        with pytest.raises(RoomNotFound):
            await registry.resolve_code("ABC123")

    @pytest.mark.asyncio
    async def test_missing_fields(self, registry):
        with pytest.raises(BadRequest):
            await registry.register("", "ABC", "host")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("room_id", ["team.alpha", "a:b", "has space", "x" * 129])
    async def test_room_id_must_fit_document_name(self, registry, memory_store, room_id):
        with pytest.raises(BadRequest):
            await registry.register(room_id, "ABC", "host")
        # Nothing claimed
        assert await memory_store.get(room_code_key("ABC")) is None

    @pytest.mark.asyncio
    async def test_room_id_charset(self, registry):
        metadata = await registry.register("Team_alpha-2", "ABC", "host")
        assert metadata.room_id == "Team_alpha-2"

    @pytest.mark.asyncio
    async def test_code_conflict_leaves_mapping_untouched(self, registry):
        await registry.register("r1", "ABC123", "host1")
        with pytest.raises(CodeConflict):
            await registry.register("r2", "ABC123", "host2")

        mapping = await registry.resolve_code("ABC123")
        assert mapping.room_id == "r1"
        assert await registry.get_room("r2") is None

    @pytest.mark.asyncio
    async def test_concurrent_registration_of_one_code(self, registry):
        results = await asyncio.gather(
            *[registry.register(f"r{i}", "SAME", f"h{i}") for i in range(5)],
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(r, CodeConflict) for r in results if isinstance(r, Exception))


class TestMembership:
    @pytest.mark.asyncio
    async def test_add_member_idempotent(self, registry):
        await registry.register("r1", "ABC", "host")
        await registry.add_member("r1", "guest")
        metadata = await registry.add_member("r1", "guest")
        assert metadata.members == ["host", "guest"]

    @pytest.mark.asyncio
    async def test_add_member_unknown_room(self, registry):
        with pytest.raises(RoomNotFound):
            await registry.add_member("nope", "guest")

    @pytest.mark.asyncio
    async def test_listeners_notified(self, registry):
        seen = []
        registry.add_listener(seen.append)

        await registry.register("r1", "ABC", "host")
        await registry.add_member("r1", "guest")
        await registry.delete_room("r1")
        assert seen == ["r1", "r1", "r1"]


class TestRoleTokens:
    """Host tokens only for the host; guest tokens for any member"""

    @pytest.mark.asyncio
    async def test_host_token_for_host(self, registry, authenticator):
        await registry.register("r1", "ABC", "host")
        issued = await registry.issue_role_token("host", "r1", Role.HOST)
        assert authenticator.verify(issued.token).role is Role.HOST

    @pytest.mark.asyncio
    async def test_host_can_take_guest_role(self, registry):
        await registry.register("r1", "ABC", "host")
        issued = await registry.issue_role_token("host", "r1", "guest")
        assert issued.token

    @pytest.mark.asyncio
    async def test_member_cannot_be_host(self, registry):
        await registry.register("r1", "ABC", "host")
        await registry.add_member("r1", "guest")
        with pytest.raises(NotHost):
            await registry.issue_role_token("guest", "r1", Role.HOST)

    @pytest.mark.asyncio
    async def test_non_member_refused(self, registry):
        await registry.register("r1", "ABC", "host")
        with pytest.raises(NotAMember):
            await registry.issue_role_token("stranger", "r1", Role.GUEST)

    @pytest.mark.asyncio
    async def test_unknown_room(self, registry):
        with pytest.raises(RoomNotFound):
            await registry.issue_role_token("host", "nope", Role.GUEST)

    @pytest.mark.asyncio
    async def test_host_invites_guest(self, registry, authenticator):
        await registry.register("r1", "ABC123", "u1")
        mapping = await registry.resolve_code("ABC123")
        assert mapping.room_id == "r1"

        await registry.add_member("r1", "u2")
        issued = await registry.issue_role_token("u2", "r1", "guest")
        identity = authenticator.verify(issued.token)
        assert (identity.user_id, identity.room_id, identity.role) == ("u2", "r1", Role.GUEST)

        with pytest.raises(NotHost):
            await registry.issue_role_token("u2", "r1", "host")


class TestDeleteRoom:
    @pytest.mark.asyncio
    async def test_removes_metadata_and_codes(self, registry, memory_store):
        await registry.register("r1", "ABC", "host")
        await memory_store.set(room_code_key("XYZ"), json.dumps({"roomId": "r1", "hostUserId": "host"}))
        await registry.register("r2", "OTHER", "host")

        assert await registry.delete_room("r1") is True

        assert await registry.get_room("r1") is None
        for code in ("ABC", "XYZ"):
            with pytest.raises(RoomNotFound):
                await registry.resolve_code(code)
        assert (await registry.resolve_code("OTHER")).room_id == "r2"

    @pytest.mark.asyncio
    async def test_absent_room_is_noop(self, registry):
        assert await registry.delete_room("nope") is False

    @pytest.mark.asyncio
    async def test_orphaned_code_resolves_to_dangling_room(self, registry, memory_store):
        await registry.register("r1", "ABC", "host")
        # Metadata gone on its own (TTL), code still present
        await memory_store.delete(room_metadata_key("r1"))

        mapping = await registry.resolve_code("ABC")
        assert mapping.room_id == "r1"
        assert await registry.get_room("r1") is None


class TestListAll:
    @pytest.mark.asyncio
    async def test_newest_first(self, memory_store, authenticator):
        now = iter([1000, 3000, 2000])
        registry = RoomRegistry(memory_store, authenticator, clock=lambda: next(now))
        await registry.register("a", "A", "h")
        await registry.register("b", "B", "h")
        await registry.register("c", "C", "h")

        rooms = await registry.list_all()
        assert [room.room_id for room in rooms] == ["b", "c", "a"]

    @pytest.mark.asyncio
    async def test_skips_unparseable(self, registry, memory_store):
        await registry.register("a", "A", "h")
        await memory_store.set(room_metadata_key("broken"), "not json")
        rooms = await registry.list_all()
        assert [room.room_id for room in rooms] == ["a"]
