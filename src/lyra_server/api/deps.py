"""Shared FastAPI dependencies and response helpers"""

import os

import psutil
from fastapi import Depends, Request, Response

from ..security import require_bearer
from ..services import Services

BYTES_PER_MB = 1024 * 1024


def get_services(request: Request) -> Services:
    return request.app.state.services


async def rate_limit_api(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> None:
    await services.http_limiter(request, response)


def require_admin(request: Request, services: Services = Depends(get_services)) -> None:
    require_bearer(request, services.settings.admin_password)


def format_uptime(seconds: int) -> str:
    """Render seconds as ``1d 2h 3m 4s``, omitting zero units"""
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_bytes(num: float) -> str:
    if num < 1024:
        return f"{int(num)}B"
    if num < BYTES_PER_MB:
        return f"{num / 1024:.1f}KB"
    if num < 1024 * BYTES_PER_MB:
        return f"{num / BYTES_PER_MB:.1f}MB"
    return f"{num / (1024 * BYTES_PER_MB):.1f}GB"


def process_memory() -> dict[str, int]:
    """Resident and virtual memory of this process, in bytes"""
    try:
        mem_info = psutil.Process(os.getpid()).memory_info()
        return {"rss": mem_info.rss, "vms": mem_info.vms}
    except psutil.Error:
        return {"rss": 0, "vms": 0}
