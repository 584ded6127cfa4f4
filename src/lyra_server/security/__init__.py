"""
Security module for Lyra server

Provides rate limiting, connection admission gauges and input validation.
"""

from .middleware import (
    HttpRateLimiter,
    get_client_ip,
    require_bearer,
    validate_document_id,
    validate_room_id,
)
from .rate_limit import (
    MessageVerdict,
    RateLimitDimension,
    RateLimitResult,
    RateLimiter,
    RateLimits,
)

__all__ = [
    "HttpRateLimiter",
    "MessageVerdict",
    "RateLimitDimension",
    "RateLimitResult",
    "RateLimiter",
    "RateLimits",
    "get_client_ip",
    "require_bearer",
    "validate_document_id",
    "validate_room_id",
]
