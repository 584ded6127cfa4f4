"""
Room registry

Owns room metadata, room codes and role authority in the state store:

    roomCode:{code}          -> {"roomId", "hostUserId"}                   TTL 7d
    room:{roomId}:metadata   -> {"roomId", "hostUserId", "members", "createdAt"}  TTL 7d

Room and code carry independent TTLs. Deleting a room removes every code
that still points at it, but a code can outlive its room on pure TTL expiry;
``resolve_code`` returns the stored mapping as-is in that case.
"""

import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from ..auth import IssuedToken, Role, TokenAuthenticator
from ..errors import BadRequest, CodeConflict, NotAMember, NotHost, RoomNotFound
from ..security.middleware import validate_room_id
from ..storage import StateStore
from .models import RoomCodeMapping, RoomMetadata

logger = logging.getLogger(__name__)

ROOM_CODE_PREFIX = "roomCode:"
ROOM_METADATA_PREFIX = "room:"
ROOM_METADATA_SUFFIX = ":metadata"
ROOM_TTL = 7 * 24 * 60 * 60


def room_code_key(code: str) -> str:
    return f"{ROOM_CODE_PREFIX}{code}"


def room_metadata_key(room_id: str) -> str:
    return f"{ROOM_METADATA_PREFIX}{room_id}{ROOM_METADATA_SUFFIX}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RoomRegistry:
    """Room lifecycle, membership and role authorization"""

    def __init__(
        self,
        store: StateStore,
        authenticator: TokenAuthenticator,
        room_ttl: int = ROOM_TTL,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.authenticator = authenticator
        self.room_ttl = room_ttl
        self._clock = clock
        self._listeners: list[Callable[[str], None]] = []

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Call ``callback(room_id)`` after every membership-changing write"""
        self._listeners.append(callback)

    def _notify(self, room_id: str) -> None:
        for callback in self._listeners:
            callback(room_id)

    # ==========================================================================
    # READS
    # ==========================================================================

    async def get_room(self, room_id: str) -> Optional[RoomMetadata]:
        value = await self.store.get(room_metadata_key(room_id))
        if not value:
            return None
        try:
            return RoomMetadata.model_validate_json(value)
        except ValidationError:
            logger.error(f"Corrupt room metadata for {room_id}")
            return None

    async def resolve_code(self, code: str) -> RoomCodeMapping:
        """
        Look up a room code.

        Raises:
            RoomNotFound: the code is unknown or expired
        """
        value = await self.store.get(room_code_key(code))
        if not value:
            raise RoomNotFound()
        try:
            return RoomCodeMapping.model_validate_json(value)
        except ValidationError as e:
            logger.error(f"Corrupt room code mapping for {code}")
            raise RoomNotFound() from e

    async def list_all(self) -> list[RoomMetadata]:
        """
        Every live room, newest first.

        Scans the whole ``room:`` keyspace: O(number of rooms), fine for
        administrative use but not for very large deployments.
        """
        rooms = []
        for key, value in await self.store.scan_prefix(ROOM_METADATA_PREFIX):
            if not key.endswith(ROOM_METADATA_SUFFIX):
                continue
            try:
                rooms.append(RoomMetadata.model_validate_json(value))
            except ValidationError:
                logger.debug(f"Skipping unparseable room record {key}")
        rooms.sort(key=lambda room: room.created_at, reverse=True)
        return rooms

    # ==========================================================================
    # WRITES
    # ==========================================================================

    async def register(self, room_id: str, code: str, host_user_id: str) -> RoomMetadata:
        """
        Create a room and its code.

        The code is claimed atomically, so two concurrent registrations of
        the same code cannot both succeed. The metadata write that follows
        is a separate store operation.

        Raises:
            BadRequest: a field is empty or the room id has characters a
                document name cannot carry
            CodeConflict: the code already maps to a room
        """
        if not room_id or not code or not host_user_id:
            raise BadRequest("Missing required fields: roomId, code, hostUserId")
        valid, error = validate_room_id(room_id)
        if not valid:
            raise BadRequest(error)

        mapping = RoomCodeMapping(room_id=room_id, host_user_id=host_user_id)
        claimed = await self.store.set_if_absent(room_code_key(code), mapping.to_json(), self.room_ttl)
        if not claimed:
            raise CodeConflict()

        metadata = RoomMetadata(
            room_id=room_id,
            host_user_id=host_user_id,
            members=[host_user_id],
            created_at=self._clock(),
        )
        await self.store.set(room_metadata_key(room_id), metadata.to_json(), self.room_ttl)
        self._notify(room_id)

        logger.info(f"Room registered: {room_id} with code {code} by {host_user_id}")
        return metadata

    async def add_member(self, room_id: str, user_id: str) -> RoomMetadata:
        """
        Add ``user_id`` to the room. Idempotent.

        Raises:
            RoomNotFound: the room is absent or expired
        """
        metadata = await self.get_room(room_id)
        if metadata is None:
            raise RoomNotFound()

        if user_id not in metadata.members:
            metadata.members.append(user_id)
            await self.store.set(room_metadata_key(room_id), metadata.to_json(), self.room_ttl)
            logger.info(f"Member added: {user_id} to {room_id}")

        self._notify(room_id)
        return metadata

    async def issue_role_token(self, user_id: str, room_id: str, role: Role | str) -> IssuedToken:
        """
        Authorize ``role`` for ``user_id`` in the room and issue a token.

        Raises:
            RoomNotFound, NotAMember, NotHost
        """
        role = Role(role)
        metadata = await self.get_room(room_id)
        if metadata is None:
            raise RoomNotFound()

        if user_id not in metadata.members:
            raise NotAMember()

        if role is Role.HOST and metadata.host_user_id != user_id:
            raise NotHost()

        issued = self.authenticator.issue(user_id, room_id, role)
        logger.info(f"Token generated for {user_id} in {room_id} as {role.value}")
        return issued

    async def delete_room(self, room_id: str) -> bool:
        """
        Delete room metadata and every code pointing at it.

        Returns False (not an error) when the room is already gone.
        """
        if await self.get_room(room_id) is None:
            return False

        keys = [room_metadata_key(room_id)]
        for key, value in await self.store.scan_prefix(ROOM_CODE_PREFIX):
            try:
                mapping = RoomCodeMapping.model_validate_json(value)
            except ValidationError:
                continue
            if mapping.room_id == room_id:
                keys.append(key)

        await self.store.delete_many(keys)
        self._notify(room_id)

        logger.info(f"Room deleted: {room_id} ({len(keys) - 1} codes removed)")
        return True
