"""
Security Middleware

HTTP rate limiting, client address resolution and input validation.
"""

import logging
import re
import secrets
from typing import Optional, Tuple

from fastapi import Request, Response
from starlette.requests import HTTPConnection

from ..errors import AdminUnauthorized, RateLimitExceeded
from .rate_limit import RateLimitDimension, RateLimiter

logger = logging.getLogger(__name__)


# Document ID validation pattern
DOCUMENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_:-]+$")
MAX_DOCUMENT_ID_LENGTH = 256

# Room ids sit between colons in document names, so no colon here
ROOM_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_ROOM_ID_LENGTH = 128


def get_client_ip(conn: HTTPConnection) -> str:
    """
    Resolve the client address for an HTTP request or WebSocket.

    Checks proxy headers first (X-Forwarded-For, then X-Real-IP), then the
    socket peer.
    """
    forwarded_for = conn.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = conn.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if conn.client and conn.client.host:
        return conn.client.host

    return "unknown"


class HttpRateLimiter:
    """
    FastAPI dependency limiting requests per client IP.

    Sets ``X-RateLimit-*`` headers on every response and raises
    ``RateLimitExceeded`` (429) when the window is exhausted.

    Usage:
        router = APIRouter(dependencies=[Depends(HttpRateLimiter(...))])
    """

    def __init__(
        self,
        limiter: RateLimiter,
        requests_per_minute: int = 60,
        key_prefix: str = "ratelimit:http",
    ):
        self.limiter = limiter
        self.requests_per_minute = requests_per_minute
        self.key_prefix = key_prefix

    async def __call__(self, request: Request, response: Response) -> None:
        client_ip = get_client_ip(request)
        result = await self.limiter.check_and_consume(
            RateLimitDimension.HTTP,
            client_ip,
            limit=self.requests_per_minute,
            key_prefix=self.key_prefix,
        )

        for name, value in result.headers.items():
            response.headers[name] = value

        if not result.allowed:
            logger.warning(f"HTTP rate limit exceeded: ip={client_ip} path={request.url.path}")
            raise RateLimitExceeded(retry_after=result.reset_in, limit=result.limit)


def require_bearer(request: Request, expected: str) -> None:
    """Check ``Authorization: Bearer <expected>`` in constant time"""
    header = request.headers.get("authorization") or ""
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(
        credentials.encode(), expected.encode()
    ):
        logger.warning(
            f"Unauthorized admin access attempt: ip={get_client_ip(request)} path={request.url.path}"
        )
        raise AdminUnauthorized()


def validate_document_id(doc_id: str) -> Tuple[bool, Optional[str]]:
    """
    Validate document ID format.

    Args:
        doc_id: Document ID to validate

    Returns:
        Tuple of (valid, error_message)
    """
    if not doc_id or not isinstance(doc_id, str):
        return False, "Invalid document ID"

    if len(doc_id) > MAX_DOCUMENT_ID_LENGTH:
        return False, f"Document ID too long (max {MAX_DOCUMENT_ID_LENGTH} characters)"

    if not DOCUMENT_ID_PATTERN.match(doc_id):
        return False, "Document ID contains invalid characters"

    return True, None


def validate_room_id(room_id: str) -> Tuple[bool, Optional[str]]:
    """Check that a room id can appear in a ``room:<roomId>:<suffix>`` document name"""
    if len(room_id) > MAX_ROOM_ID_LENGTH:
        return False, f"Room ID too long (max {MAX_ROOM_ID_LENGTH} characters)"

    if not ROOM_ID_PATTERN.match(room_id):
        return False, "Room ID contains invalid characters"

    return True, None
