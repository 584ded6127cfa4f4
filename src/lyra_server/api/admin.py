"""
Admin API

Operational metrics, room listing and forced room closure. Every route
requires ``Authorization: Bearer <ADMIN_PASSWORD>``.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..services import Services
from .deps import format_bytes, format_uptime, get_services, process_memory, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/api", tags=["admin"], dependencies=[Depends(require_admin)])

MAX_PAGE_SIZE = 100


class CloseRoomRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    reason: Optional[str] = None
    notify_users: bool = False


@router.get("/metrics")
async def get_metrics(services: Services = Depends(get_services)):
    """Live connection, resource, store and rate-limit metrics"""
    uptime_seconds = int(services.uptime())
    memory = process_memory()
    rate_limit_stats = await services.limiter.stats()
    orchestrator = services.orchestrator

    metrics = {
        "timestamp": int(time.time() * 1000),
        "connections": {
            "total": orchestrator.active_connection_count(),
            "byRoom": orchestrator.connections_by_room(),
        },
        "resources": {
            "uptime": format_uptime(uptime_seconds),
            "uptimeSeconds": uptime_seconds,
            "memoryUsage": format_bytes(memory["rss"]),
            "memory": memory,
        },
        "redis": {
            "status": services.store.status,
            "connected": services.store.using_primary,
            "backend": services.store.backend_name,
        },
        "rateLimiting": rate_limit_stats,
        "membershipCache": services.cache.stats(),
    }

    logger.debug(f"Metrics requested: connections={metrics['connections']['total']}")
    return metrics


@router.get("/rooms")
async def list_rooms(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    services: Services = Depends(get_services),
):
    """Paginated room list, newest first"""
    limit = min(limit, MAX_PAGE_SIZE)
    offset = (page - 1) * limit

    all_rooms = await services.registry.list_all()
    connections_by_room = services.orchestrator.connections_by_room()

    rooms = [
        {
            "roomId": room.room_id,
            "hostUserId": room.host_user_id,
            "members": room.members,
            "activeConnections": connections_by_room.get(room.room_id, 0),
            "createdAt": room.created_at,
        }
        for room in all_rooms[offset:offset + limit]
    ]

    logger.debug(f"Rooms list requested: page={page} limit={limit} total={len(all_rooms)}")
    return {"total": len(all_rooms), "page": page, "limit": limit, "rooms": rooms}


@router.post("/rooms/{room_id}/close")
async def close_room(
    room_id: str,
    body: Optional[CloseRoomRequest] = None,
    services: Services = Depends(get_services),
):
    """Disconnect every connection in the room and delete its data"""
    body = body or CloseRoomRequest()
    logger.info(f"Admin closing room {room_id}: reason={body.reason or 'N/A'} notify={body.notify_users}")

    disconnected = await services.orchestrator.close_room(room_id, body.reason)
    return {"success": True, "disconnectedUsers": disconnected}


@router.get("/stats")
async def get_stats(services: Services = Depends(get_services)):
    """Room totals, average room age and member counts"""
    all_rooms = await services.registry.list_all()
    connections_by_room = services.orchestrator.connections_by_room()

    now = int(time.time() * 1000)
    ages = [now - room.created_at for room in all_rooms]
    avg_age = round(sum(ages) / len(ages)) if ages else 0

    return {
        "timestamp": now,
        "rooms": {
            "total": len(all_rooms),
            "active": len(connections_by_room),
            "avgAgeMs": avg_age,
            "avgAgeFormatted": format_uptime(round(avg_age / 1000)),
        },
        "users": {
            "totalMembers": sum(len(room.members) for room in all_rooms),
            "activeConnections": services.orchestrator.active_connection_count(),
        },
    }
