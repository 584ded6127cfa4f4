"""
Rate limiting

Fixed-window counters for message and HTTP rates, plus a per-IP connection
gauge. All shared state lives in the state store so limits hold across
server instances when Redis is enabled.

Fixed windows admit up to twice the configured rate across a window
boundary; this is accepted in exchange for one atomic increment per check.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..storage import StateStore

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
CONNECTION_GAUGE_PREFIX = "connections:"


class RateLimitDimension(str, Enum):
    """Windowed rate-limit dimensions (value is the key segment)"""

    CONNECTION = "conn"  # messages per socket
    ROOM = "room"  # messages per room
    HTTP = "http"  # HTTP requests per client IP


@dataclass
class RateLimits:
    """Configured limits"""

    messages_per_minute: int = 300
    room_messages_per_minute: int = 1000
    http_requests_per_minute: int = 60
    connections_per_ip: int = 100
    connection_gauge_ttl: int = 3600

    def limit_for(self, dimension: RateLimitDimension) -> int:
        if dimension is RateLimitDimension.CONNECTION:
            return self.messages_per_minute
        if dimension is RateLimitDimension.ROOM:
            return self.room_messages_per_minute
        return self.http_requests_per_minute


@dataclass
class RateLimitResult:
    """Result of a rate limit check"""

    allowed: bool
    limit: int
    remaining: int
    reset_in: int  # seconds until the current window ends

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_in),
        }


@dataclass
class MessageVerdict:
    allowed: bool
    reason: Optional[str] = None


class RateLimiter:
    """
    Admission decisions for every rate-limited dimension.

    Store failures the tiered store cannot mask are logged and, when
    ``fail_open`` is set, the check allows: an infrastructure outage should
    not become a full service outage.
    """

    def __init__(
        self,
        store: StateStore,
        limits: Optional[RateLimits] = None,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limits = limits or RateLimits()
        self.fail_open = fail_open
        self._clock = clock

    # ==========================================================================
    # WINDOWS
    # ==========================================================================

    def current_window(self) -> int:
        return int(self._clock() // WINDOW_SECONDS)

    def reset_in(self) -> int:
        return WINDOW_SECONDS - int(self._clock()) % WINDOW_SECONDS

    def bucket_key(self, dimension: RateLimitDimension, subject_id: str, prefix: Optional[str] = None) -> str:
        prefix = prefix or f"ratelimit:{dimension.value}"
        return f"{prefix}:{subject_id}:{self.current_window()}"

    def _fail_result(self, limit: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=self.fail_open,
            limit=limit,
            remaining=limit if self.fail_open else 0,
            reset_in=self.reset_in(),
        )

    # ==========================================================================
    # WINDOWED COUNTERS
    # ==========================================================================

    async def check_and_consume(
        self,
        dimension: RateLimitDimension,
        subject_id: str,
        limit: Optional[int] = None,
        key_prefix: Optional[str] = None,
    ) -> RateLimitResult:
        """
        Count one event for ``subject_id`` and decide whether it is allowed.

        Args:
            dimension: Which counter family to use
            subject_id: Socket id, room id or client IP
            limit: Override the configured limit
            key_prefix: Override the key prefix (e.g. ``ratelimit:api``)

        Returns:
            RateLimitResult; ``allowed`` is ``count <= limit``
        """
        limit = limit if limit is not None else self.limits.limit_for(dimension)
        key = self.bucket_key(dimension, subject_id, key_prefix)

        try:
            count = await self.store.increment_with_expiry(key, WINDOW_SECONDS)
        except Exception:
            logger.exception(
                f"Rate limit check failed for {dimension.value}:{subject_id}, "
                f"{'allowing' if self.fail_open else 'denying'}"
            )
            return self._fail_result(limit)

        allowed = count <= limit
        if not allowed:
            logger.warning(
                f"{dimension.name.title()} rate limit exceeded: "
                f"subject={subject_id} count={count} limit={limit}"
            )

        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_in=self.reset_in(),
        )

    async def check_message(self, socket_id: str, room_id: str) -> MessageVerdict:
        """Per-socket then per-room message rate check"""
        conn = await self.check_and_consume(RateLimitDimension.CONNECTION, socket_id)
        if not conn.allowed:
            return MessageVerdict(
                allowed=False,
                reason=f"Connection rate limit exceeded. Try again in {conn.reset_in}s",
            )

        room = await self.check_and_consume(RateLimitDimension.ROOM, room_id)
        if not room.allowed:
            return MessageVerdict(
                allowed=False,
                reason=f"Room rate limit exceeded. Try again in {room.reset_in}s",
            )

        return MessageVerdict(allowed=True)

    # ==========================================================================
    # IP CONNECTION GAUGE
    # ==========================================================================

    def _gauge_key(self, client_ip: str) -> str:
        return f"{CONNECTION_GAUGE_PREFIX}{client_ip}"

    async def acquire_connection(self, client_ip: str) -> RateLimitResult:
        """Take a connection slot for ``client_ip`` unless it is at the cap"""
        cap = self.limits.connections_per_ip
        try:
            allowed, count = await self.store.increment_gauge(
                self._gauge_key(client_ip), cap, self.limits.connection_gauge_ttl
            )
        except Exception:
            logger.exception(f"IP connection tracking failed for {client_ip}")
            return self._fail_result(cap)

        if allowed:
            logger.debug(f"IP connection tracked: ip={client_ip} count={count}")
        else:
            logger.warning(f"IP connection limit exceeded: ip={client_ip} count={count} limit={cap}")

        return RateLimitResult(
            allowed=allowed,
            limit=cap,
            remaining=max(0, cap - count),
            reset_in=self.limits.connection_gauge_ttl,
        )

    async def release_connection(self, client_ip: str) -> int:
        """Give back a connection slot. Never goes below 0."""
        try:
            count = await self.store.decrement_gauge(self._gauge_key(client_ip))
        except Exception:
            logger.exception(f"IP connection release failed for {client_ip}")
            return 0
        logger.debug(f"IP connection released: ip={client_ip} count={count}")
        return count

    async def connection_count(self, client_ip: str) -> int:
        value = await self.store.get(self._gauge_key(client_ip))
        return int(value) if value else 0

    async def stats(self) -> dict[str, int]:
        """Unique IPs holding connections and their total connection count"""
        entries = await self.store.scan_prefix(CONNECTION_GAUGE_PREFIX)
        counts = [int(v) for _, v in entries if v.isdigit() and int(v) > 0]
        return {
            "uniqueIps": len(counts),
            "totalIpConnections": sum(counts),
        }
