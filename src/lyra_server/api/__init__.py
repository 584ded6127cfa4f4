"""
HTTP API for Lyra server

Room, admin and health routers plus the JSON error handlers.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import BadRequest, LyraError, RateLimitExceeded
from .admin import router as admin_router
from .health import VERSION
from .health import router as health_router
from .room import router as room_router

logger = logging.getLogger(__name__)


async def lyra_error_handler(request: Request, exc: LyraError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(exc.retry_after),
        }
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = BadRequest("Invalid request body")
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(LyraError, lyra_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)


__all__ = [
    "VERSION",
    "admin_router",
    "health_router",
    "register_exception_handlers",
    "room_router",
]
