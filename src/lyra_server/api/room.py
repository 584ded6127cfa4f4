"""
Room API

Room registration, join-by-code, membership and token issuance. Every route
is HTTP rate limited per client IP under ``ratelimit:api``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..auth import Role
from ..errors import BadRequest, RoomNotFound
from ..services import Services
from .deps import get_services, rate_limit_api

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/room", tags=["room"], dependencies=[Depends(rate_limit_api)])


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(_Body):
    room_id: Optional[str] = None
    code: Optional[str] = None
    host_user_id: Optional[str] = None


class AddMemberRequest(_Body):
    room_id: Optional[str] = None
    user_id: Optional[str] = None
    display_name: Optional[str] = None


class TokenRequest(_Body):
    user_id: Optional[str] = None
    room_id: Optional[str] = None
    role: Optional[str] = None


def _ws_url(services: Services) -> str:
    settings = services.settings
    if settings.public_ws_url:
        return settings.public_ws_url
    return f"ws://localhost:{settings.port}/ws"


@router.post("/register")
async def register_room(body: RegisterRequest, services: Services = Depends(get_services)):
    """Register a room and claim its code"""
    if not body.room_id or not body.code or not body.host_user_id:
        raise BadRequest("Missing required fields: roomId, code, hostUserId")

    await services.registry.register(body.room_id, body.code, body.host_user_id)
    return {"success": True, "roomId": body.room_id, "code": body.code}


@router.get("/join")
async def join_room(code: Optional[str] = None, services: Services = Depends(get_services)):
    """Resolve a room code"""
    if not code:
        raise BadRequest("Missing required query parameter: code")

    mapping = await services.registry.resolve_code(code)
    return {"success": True, "roomId": mapping.room_id, "wsUrl": _ws_url(services)}


@router.post("/add-member")
async def add_member(body: AddMemberRequest, services: Services = Depends(get_services)):
    if not body.room_id or not body.user_id:
        raise BadRequest("Missing required fields: roomId, userId")

    await services.registry.add_member(body.room_id, body.user_id)
    logger.info(f"Member added via API: {body.user_id} ({body.display_name or 'unknown'}) to {body.room_id}")
    return {"success": True}


@router.post("/get-token")
async def get_token(body: TokenRequest, services: Services = Depends(get_services)):
    """Issue a session token for a member in a role it is entitled to"""
    if not body.user_id or not body.room_id or not body.role:
        raise BadRequest("Missing required fields: userId, roomId, role")

    try:
        role = Role(body.role)
    except ValueError:
        raise BadRequest('Invalid role. Must be "host" or "guest"')

    issued = await services.registry.issue_role_token(body.user_id, body.room_id, role)
    return {"token": issued.token, "expiresAt": issued.expires_at_ms}


@router.get("/{room_id}")
async def get_room(room_id: str, services: Services = Depends(get_services)):
    metadata = await services.registry.get_room(room_id)
    if metadata is None:
        raise RoomNotFound()
    return {"success": True, "room": metadata.summary()}
