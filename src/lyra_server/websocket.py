"""
WebSocket relay transport

Minimal transport that runs every connection through the admission hooks and
relays opaque frames between sockets on the same document. It does not merge
or persist anything; a real synchronization engine plugs into the same hooks.
"""

import logging
import time
import uuid
from typing import Optional

from fastapi import WebSocket

from .admission import AdmissionOrchestrator
from .auth import TokenIdentity
from .errors import AdmissionError, AuthError, LyraError, MalformedTarget, MembershipError, MessageRateLimited
from .security import get_client_ip, validate_document_id

logger = logging.getLogger(__name__)

# Application close codes (4000-4999 range)
CLOSE_ROOM_CLOSED = 4000
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_TOO_MANY = 4429
CLOSE_INTERNAL = 1011

MAX_CLOSE_REASON_BYTES = 123


def close_code_for(error: LyraError) -> int:
    """Map an admission failure to a WebSocket close code"""
    if isinstance(error, AuthError):
        return CLOSE_UNAUTHORIZED
    if isinstance(error, MembershipError):
        return CLOSE_FORBIDDEN
    if isinstance(error, AdmissionError):
        return CLOSE_TOO_MANY
    return CLOSE_INTERNAL


def _close_reason(reason: str) -> str:
    return reason.encode()[:MAX_CLOSE_REASON_BYTES].decode(errors="ignore")


def token_from(websocket: WebSocket) -> Optional[str]:
    """Session token from the ``token`` query parameter or a Bearer header"""
    token = websocket.query_params.get("token")
    if token:
        return token
    scheme, _, credentials = (websocket.headers.get("authorization") or "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


class Connection:
    """Represents a single WebSocket connection"""

    def __init__(self, websocket: WebSocket, connection_id: str, document_name: str, client_ip: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.document_name = document_name
        self.client_ip = client_ip
        self.identity: TokenIdentity | None = None
        self.connected_at = time.time()

    async def send(self, message: dict):
        """Forward a received frame unchanged"""
        if message.get("bytes") is not None:
            await self.websocket.send_bytes(message["bytes"])
        elif message.get("text") is not None:
            await self.websocket.send_text(message["text"])


class RelayTransport:
    """Tracks admitted connections per document and relays between them"""

    def __init__(self, orchestrator: AdmissionOrchestrator):
        self.orchestrator = orchestrator
        self.connections: dict[str, Connection] = {}
        self.document_subscribers: dict[str, set[str]] = {}  # document -> connection ids
        orchestrator.bind_transport(self)

    # ==========================================================================
    # TRANSPORT QUERIES
    # ==========================================================================

    def active_connection_count(self) -> int:
        return len(self.connections)

    def documents_by_target(self) -> dict[str, int]:
        return {doc: len(ids) for doc, ids in self.document_subscribers.items()}

    async def close_document(self, document_name: str, reason: str = "") -> int:
        closed = 0
        for connection_id in list(self.document_subscribers.get(document_name, ())):
            connection = self.connections.get(connection_id)
            if connection is None:
                continue
            try:
                await connection.websocket.close(
                    code=CLOSE_ROOM_CLOSED, reason=_close_reason(reason or "Room closed")
                )
                closed += 1
            except Exception as e:
                logger.warning(f"Error closing {connection_id}: {e}")
            self.unregister(connection_id)
        return closed

    # ==========================================================================
    # REGISTRATION
    # ==========================================================================

    def register(self, connection: Connection):
        self.connections[connection.connection_id] = connection
        self.document_subscribers.setdefault(connection.document_name, set()).add(connection.connection_id)

    def unregister(self, connection_id: str):
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return
        subscribers = self.document_subscribers.get(connection.document_name)
        if subscribers is not None:
            subscribers.discard(connection_id)
            if not subscribers:
                del self.document_subscribers[connection.document_name]

    async def broadcast(self, document_name: str, message: dict, sender_id: str):
        """Relay a frame to every other connection on the document"""
        for connection_id in list(self.document_subscribers.get(document_name, ())):
            if connection_id == sender_id:
                continue
            connection = self.connections.get(connection_id)
            if connection:
                try:
                    await connection.send(message)
                except Exception as e:
                    logger.warning(f"Error relaying to {connection_id}: {e}")

    # ==========================================================================
    # CONNECTION LIFECYCLE
    # ==========================================================================

    async def serve(self, websocket: WebSocket, document_name: str):
        """
        Run one connection: admit it, relay its frames, then clean up.

        The socket is accepted before admission so a rejection can be reported
        with an application close code.
        """
        await websocket.accept()
        connection = Connection(websocket, str(uuid.uuid4()), document_name, get_client_ip(websocket))

        try:
            valid, error = validate_document_id(document_name)
            if not valid:
                raise MalformedTarget(error)
            connection.identity = await self.orchestrator.on_authenticate(
                token_from(websocket), document_name, connection.connection_id, connection.client_ip
            )
            await self.orchestrator.on_connect(
                connection.identity, document_name, connection.connection_id, connection.client_ip
            )
        except LyraError as e:
            await self.orchestrator.on_disconnect(
                connection.identity, document_name, connection.connection_id, connection.client_ip
            )
            await websocket.close(code=close_code_for(e), reason=_close_reason(e.message))
            return
        except Exception as e:
            logger.error(f"Admission failed on {connection.connection_id}: {e}")
            await self.orchestrator.on_disconnect(
                connection.identity, document_name, connection.connection_id, connection.client_ip
            )
            await websocket.close(code=CLOSE_INTERNAL, reason="Internal error")
            return

        self.register(connection)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                try:
                    await self.orchestrator.before_message(document_name, connection.connection_id)
                except MessageRateLimited:
                    continue

                await self.broadcast(document_name, message, connection.connection_id)
        except Exception as e:
            logger.error(f"WebSocket error on {connection.connection_id}: {e}")
        finally:
            self.unregister(connection.connection_id)
            await self.orchestrator.on_disconnect(
                connection.identity, document_name, connection.connection_id, connection.client_ip
            )


async def websocket_endpoint(websocket: WebSocket, document_name: str):
    """Main WebSocket endpoint handler"""
    await websocket.app.state.services.transport.serve(websocket, document_name)
