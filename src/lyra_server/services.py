"""
Service wiring

Builds the store, authenticator, registry, cache, limiter, orchestrator and
relay transport from ``Settings`` and owns their startup and shutdown.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta

from .admission import AdmissionOrchestrator
from .auth import TokenAuthenticator
from .config import Settings
from .rooms import MembershipCache, RoomRegistry
from .security import HttpRateLimiter, RateLimiter, RateLimits
from .storage import MemoryStore, RedisStore, TieredStore
from .websocket import RelayTransport

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: TieredStore
    authenticator: TokenAuthenticator
    registry: RoomRegistry
    cache: MembershipCache
    limiter: RateLimiter
    orchestrator: AdmissionOrchestrator
    transport: RelayTransport
    http_limiter: HttpRateLimiter
    started_at: float = field(default_factory=time.time)

    async def start(self):
        """Connect the store and start background sweeps"""
        await self.store.connect()
        self.store.start()
        self.cache.start_cleanup()
        logger.info(f"State store: {self.store.backend_name}")

    async def close(self):
        self.cache.dispose()
        await self.store.close()

    def uptime(self) -> float:
        return time.time() - self.started_at


def create_services(settings: Settings) -> Services:
    """Wire every component from ``settings``. Nothing connects until ``start()``."""
    primary = None
    if settings.redis_enabled:
        primary = RedisStore(settings.redis_url, max_retries=settings.redis_max_retries)

    store = TieredStore(
        fallback=MemoryStore(sweep_interval=settings.memory_sweep_interval),
        primary=primary,
        probe_interval=settings.redis_probe_interval,
    )

    authenticator = TokenAuthenticator(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(days=settings.token_ttl_days),
    )
    registry = RoomRegistry(store, authenticator, room_ttl=settings.room_ttl_seconds)
    cache = MembershipCache(
        registry,
        ttl=settings.membership_cache_ttl_seconds,
        sweep_interval=settings.membership_cache_sweep_seconds,
    )
    limiter = RateLimiter(
        store,
        limits=RateLimits(
            messages_per_minute=settings.rate_limit_messages_per_minute,
            room_messages_per_minute=settings.rate_limit_room_messages_per_minute,
            http_requests_per_minute=settings.rate_limit_http_requests_per_minute,
            connections_per_ip=settings.rate_limit_connections_per_ip,
            connection_gauge_ttl=settings.connection_gauge_ttl_seconds,
        ),
        fail_open=settings.rate_limit_fail_open,
    )
    orchestrator = AdmissionOrchestrator(
        authenticator,
        limiter,
        cache,
        registry,
        enforce_message_limits=settings.enforce_message_limits,
    )
    transport = RelayTransport(orchestrator)
    http_limiter = HttpRateLimiter(
        limiter,
        requests_per_minute=settings.rate_limit_http_requests_per_minute,
        key_prefix="ratelimit:api",
    )

    return Services(
        settings=settings,
        store=store,
        authenticator=authenticator,
        registry=registry,
        cache=cache,
        limiter=limiter,
        orchestrator=orchestrator,
        transport=transport,
        http_limiter=http_limiter,
    )
