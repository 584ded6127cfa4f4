"""
Admission orchestration

Sequences authentication, IP admission and membership checks into the
connection lifecycle, and message rate checks into the message lifecycle.
The transport calls these hooks; every rejection is terminal for the
connection.

    CONNECTING -> AUTHENTICATING -> IP_ADMISSION -> MEMBERSHIP_CHECK -> ACTIVE
        -> DISCONNECTING -> CLOSED
    (any gate) -> REJECTED
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .auth import TokenAuthenticator, TokenIdentity, extract_room_id
from .errors import IpCapExceeded, LyraError, MalformedTarget, MessageRateLimited, NotAMember
from .rooms import MembershipCache, RoomRegistry
from .security import MessageVerdict, RateLimiter
from .transport import Transport

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    IP_ADMISSION = "ip_admission"
    MEMBERSHIP_CHECK = "membership_check"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"
    CLOSED = "closed"
    REJECTED = "rejected"


@dataclass
class ConnectionRecord:
    socket_id: str
    document_name: str
    client_ip: str
    user_id: Optional[str] = None
    state: ConnectionState = ConnectionState.CONNECTING
    holds_ip_slot: bool = False
    rejection: Optional[str] = None
    messages: int = 0
    limited_messages: int = 0
    extra: dict = field(default_factory=dict)


class AdmissionOrchestrator:
    """
    Connection and message admission.

    Args:
        authenticator: Verifies session tokens
        limiter: Message rates and the per-IP connection gauge
        cache: Membership lookups for the admission path
        registry: Room data, used when an admin closes a room
        transport: Optional transport handle for admin queries and closes
        enforce_message_limits: Raise ``MessageRateLimited`` from
            ``before_message`` instead of only logging
    """

    def __init__(
        self,
        authenticator: TokenAuthenticator,
        limiter: RateLimiter,
        cache: MembershipCache,
        registry: RoomRegistry,
        transport: Optional[Transport] = None,
        enforce_message_limits: bool = False,
    ):
        self.authenticator = authenticator
        self.limiter = limiter
        self.cache = cache
        self.registry = registry
        self.transport = transport
        self.enforce_message_limits = enforce_message_limits
        self._connections: dict[str, ConnectionRecord] = {}
        self._lock = threading.Lock()

    def bind_transport(self, transport: Transport) -> None:
        self.transport = transport

    def connection_state(self, socket_id: str) -> Optional[ConnectionState]:
        with self._lock:
            record = self._connections.get(socket_id)
            return record.state if record else None

    def _record(self, socket_id: str) -> Optional[ConnectionRecord]:
        with self._lock:
            return self._connections.get(socket_id)

    # ==========================================================================
    # CONNECTION LIFECYCLE
    # ==========================================================================

    def _track(self, socket_id: str, document_name: str, client_ip: str) -> ConnectionRecord:
        with self._lock:
            record = self._connections.get(socket_id)
            if record is None:
                record = ConnectionRecord(socket_id=socket_id, document_name=document_name, client_ip=client_ip)
                self._connections[socket_id] = record
            return record

    async def on_authenticate(
        self,
        token: Optional[str],
        document_name: str,
        socket_id: Optional[str] = None,
        client_ip: str = "unknown",
    ) -> TokenIdentity:
        """
        Authenticate a connection attempt against ``document_name``.

        With a ``socket_id`` the attempt is tracked from this point, so an
        auth failure shows as REJECTED until ``on_disconnect``.

        Raises:
            AuthError: MissingToken, InvalidToken, Expired, MalformedTarget,
                RoomMismatch
        """
        record = None
        if socket_id is not None:
            record = self._track(socket_id, document_name, client_ip)
            record.state = ConnectionState.AUTHENTICATING

        try:
            identity = self.authenticator.authorize_for_target(token, document_name)
        except LyraError as e:
            logger.info(f"Authentication rejected for {document_name}: {e.code}")
            if record is not None:
                record.state = ConnectionState.REJECTED
                record.rejection = e.code
            raise

        if record is not None:
            record.user_id = identity.user_id
        return identity

    async def on_connect(
        self,
        identity: TokenIdentity,
        document_name: str,
        socket_id: str,
        client_ip: str,
    ) -> None:
        """
        Run IP admission and the membership check for an authenticated socket.

        Raises:
            IpCapExceeded: the client IP is at its connection cap
            RoomNotFound / NotAMember: membership check failed
        """
        record = self._track(socket_id, document_name, client_ip)
        record.user_id = identity.user_id
        record.state = ConnectionState.IP_ADMISSION

        result = await self.limiter.acquire_connection(client_ip)
        if not result.allowed:
            self._reject(record, IpCapExceeded())
        record.holds_ip_slot = True

        record.state = ConnectionState.MEMBERSHIP_CHECK
        room_id = extract_room_id(document_name)
        try:
            if room_id is None:
                raise MalformedTarget()
            members = await self.cache.members_of(room_id)
            if identity.user_id not in members:
                raise NotAMember()
        except LyraError as e:
            await self._release(record)
            self._reject(record, e)
        except Exception:
            # Never leave a slot held by a socket that did not become active
            await self._release(record)
            record.state = ConnectionState.REJECTED
            record.rejection = "INTERNAL_ERROR"
            logger.exception(f"Membership check failed: socket={socket_id} document={document_name}")
            raise

        record.state = ConnectionState.ACTIVE
        logger.info(
            f"CONNECT room={room_id} user={identity.user_id} socket={socket_id} ip={client_ip}"
        )

    def _reject(self, record: ConnectionRecord, error: LyraError) -> None:
        record.state = ConnectionState.REJECTED
        record.rejection = error.code
        logger.warning(
            f"Connection rejected: socket={record.socket_id} user={record.user_id} "
            f"document={record.document_name} reason={error.code}"
        )
        raise error

    async def _release(self, record: ConnectionRecord) -> None:
        if record.holds_ip_slot:
            record.holds_ip_slot = False
            await self.limiter.release_connection(record.client_ip)

    async def on_disconnect(
        self,
        identity: Optional[TokenIdentity],
        document_name: str,
        socket_id: str,
        client_ip: str,
    ) -> None:
        """Release the socket's IP slot (at most once) and log the disconnect"""
        with self._lock:
            record = self._connections.pop(socket_id, None)

        if record is not None:
            if record.state is not ConnectionState.REJECTED:
                record.state = ConnectionState.DISCONNECTING
            await self._release(record)
            record.state = ConnectionState.CLOSED

        room_id = extract_room_id(document_name) or "unknown"
        user_id = identity.user_id if identity else "anonymous"
        logger.info(f"DISCONNECT room={room_id} user={user_id} socket={socket_id} ip={client_ip}")

    # ==========================================================================
    # MESSAGE LIFECYCLE
    # ==========================================================================

    async def before_message(self, document_name: str, socket_id: str) -> MessageVerdict:
        """
        Count a message against the socket and room limits.

        Advisory by default: a violation is logged and the message is still
        processed. With ``enforce_message_limits`` the violation raises
        ``MessageRateLimited`` so the transport can drop the message.
        """
        room_id = extract_room_id(document_name)
        if not room_id:
            return MessageVerdict(allowed=True)

        verdict = await self.limiter.check_message(socket_id, room_id)

        record = self._record(socket_id)
        if record is not None:
            record.messages += 1
            if not verdict.allowed:
                record.limited_messages += 1

        if not verdict.allowed:
            logger.warning(f"Message rate limited: socket={socket_id} room={room_id} reason={verdict.reason}")
            if self.enforce_message_limits:
                raise MessageRateLimited(verdict.reason)

        return verdict

    # ==========================================================================
    # ADMINISTRATION
    # ==========================================================================

    def active_connection_count(self) -> int:
        if self.transport is not None:
            return self.transport.active_connection_count()
        with self._lock:
            return sum(1 for r in self._connections.values() if r.state is ConnectionState.ACTIVE)

    def connections_by_room(self) -> dict[str, int]:
        """Open documents per room id, from the transport"""
        counts: dict[str, int] = {}
        if self.transport is None:
            return counts
        for document_name in self.transport.documents_by_target():
            room_id = extract_room_id(document_name)
            if room_id:
                counts[room_id] = counts.get(room_id, 0) + 1
        return counts

    async def close_room(self, room_id: str, reason: Optional[str] = None) -> int:
        """
        Disconnect everything in a room and delete its data.

        Returns:
            Number of connections closed
        """
        logger.info(f"Closing room {room_id}: {reason or 'N/A'}")

        disconnected = 0
        if self.transport is not None:
            prefix = f"room:{room_id}:"
            for document_name in list(self.transport.documents_by_target()):
                if not document_name.startswith(prefix):
                    continue
                try:
                    disconnected += await self.transport.close_document(document_name, reason or "")
                except Exception:
                    logger.exception(f"Failed to close document {document_name}")

        await self.registry.delete_room(room_id)
        logger.info(f"Room closed: {room_id} disconnected={disconnected}")
        return disconnected
