"""
Health check endpoints

``/health`` is for load balancers: 503 only when Redis is enabled but down.
``/health/detailed`` is for monitoring and always answers 200.
"""

import platform
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..services import Services
from .deps import format_bytes, format_uptime, get_services, process_memory

router = APIRouter(tags=["health"])

VERSION = "0.1.0"


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    """Health check endpoint"""
    uptime_seconds = int(services.uptime())
    memory = process_memory()
    redis_status = services.store.status
    healthy = redis_status != "disconnected"

    return JSONResponse(
        {
            "status": "ok" if healthy else "degraded",
            "uptime": format_uptime(uptime_seconds),
            "uptimeSeconds": uptime_seconds,
            "activeConnections": services.orchestrator.active_connection_count(),
            "redis": redis_status,
            "store": services.store.backend_name,
            "memory": {
                "rss": format_bytes(memory["rss"]),
                "vms": format_bytes(memory["vms"]),
            },
            "rateLimiting": await services.limiter.stats(),
            "timestamp": int(time.time() * 1000),
        },
        status_code=200 if healthy else 503,
    )


@router.get("/health/detailed")
async def health_detailed(services: Services = Depends(get_services)):
    uptime_seconds = int(services.uptime())
    memory = process_memory()
    rate_limit_stats = await services.limiter.stats()
    redis_status = services.store.status

    return {
        "status": "ok",
        "version": VERSION,
        "pythonVersion": platform.python_version(),
        "uptime": {
            "formatted": format_uptime(uptime_seconds),
            "seconds": uptime_seconds,
            "startTime": datetime.fromtimestamp(services.started_at, tz=timezone.utc).isoformat(),
        },
        "connections": {
            "active": services.orchestrator.active_connection_count(),
            "byIp": rate_limit_stats["uniqueIps"],
            "totalFromIps": rate_limit_stats["totalIpConnections"],
        },
        "redis": {
            "status": redis_status,
            "enabled": redis_status != "disabled",
        },
        "memory": {
            **memory,
            "rssFormatted": format_bytes(memory["rss"]),
            "vmsFormatted": format_bytes(memory["vms"]),
        },
        "timestamp": int(time.time() * 1000),
    }
