"""Tiered state store

Routes every operation to Redis while it is configured and ready, and to the
in-process ``MemoryStore`` otherwise. Redis failures never reach callers: the
failing call is replayed against the fallback and a background probe restores
primary routing once Redis answers again.
"""

import asyncio
import logging
from typing import Any, Optional

from .errors import StoreDegraded
from .interface import StateStore
from .memory import MemoryStore

logger = logging.getLogger(__name__)


class TieredStore(StateStore):
    """Primary (networked) store with transparent in-process fallback"""

    def __init__(
        self,
        fallback: MemoryStore,
        primary: Optional[StateStore] = None,
        probe_interval: float = 10.0,
    ):
        self.primary = primary
        self.fallback = fallback
        self.probe_interval = probe_interval
        self._primary_ready = False
        self._probe_task: Optional[asyncio.Task] = None

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def connect(self) -> None:
        """Connect the primary; stay on the fallback if that fails"""
        await self.fallback.connect()
        if self.primary is None:
            logger.info("Redis disabled, using in-process store")
            return
        try:
            await self.primary.connect()
            self._primary_ready = True
        except StoreDegraded as e:
            self._primary_ready = False
            logger.warning(f"Redis unavailable at startup, using in-process store: {e}")

    async def close(self) -> None:
        self.dispose()
        if self.primary is not None:
            await self.primary.close()
        await self.fallback.close()

    def is_connected(self) -> bool:
        return self.using_primary or self.fallback.is_connected()

    async def health_check(self) -> bool:
        if self.primary is None:
            return await self.fallback.health_check()
        return await self._probe()

    def start(self):
        """Start the fallback sweep and the primary recovery probe"""
        self.fallback.start_cleanup()
        if self.primary is not None and self._probe_task is None:
            self._probe_task = asyncio.create_task(self._probe_loop())

    def dispose(self):
        if self._probe_task:
            self._probe_task.cancel()
            self._probe_task = None
        self.fallback.dispose()

    async def _probe_loop(self):
        while True:
            await asyncio.sleep(self.probe_interval)
            await self._probe()

    async def _probe(self) -> bool:
        healthy = await self.primary.health_check()
        if healthy and not self._primary_ready:
            logger.info("Redis reachable again, restoring primary routing")
        elif not healthy and self._primary_ready:
            logger.warning("Redis health check failed, routing to in-process store")
        self._primary_ready = healthy
        return healthy

    @property
    def using_primary(self) -> bool:
        return self.primary is not None and self._primary_ready

    @property
    def backend_name(self) -> str:
        if self.primary is None:
            return "memory"
        return "redis" if self._primary_ready else "memory (redis degraded)"

    @property
    def status(self) -> str:
        """``connected`` / ``disconnected`` / ``disabled`` for health reporting"""
        if self.primary is None:
            return "disabled"
        return "connected" if self._primary_ready else "disconnected"

    # ==========================================================================
    # ROUTING
    # ==========================================================================

    async def _route(self, op: str, *args: Any) -> Any:
        if self.using_primary:
            try:
                return await getattr(self.primary, op)(*args)
            except StoreDegraded as e:
                self._primary_ready = False
                logger.warning(f"Redis degraded during {op}, falling back to in-process store: {e}")
        return await getattr(self.fallback, op)(*args)

    async def get(self, key: str) -> Optional[str]:
        return await self._route("get", key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self._route("set", key, value, ttl)

    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        return await self._route("set_if_absent", key, value, ttl)

    async def delete(self, key: str) -> None:
        await self._route("delete", key)

    async def delete_many(self, keys: list[str]) -> None:
        await self._route("delete_many", keys)

    async def exists(self, key: str) -> bool:
        return await self._route("exists", key)

    async def scan_prefix(self, prefix: str) -> list[tuple[str, str]]:
        return await self._route("scan_prefix", prefix)

    async def increment_with_expiry(self, key: str, ttl: int) -> int:
        return await self._route("increment_with_expiry", key, ttl)

    async def increment_gauge(self, key: str, cap: int, ttl: int) -> tuple[bool, int]:
        return await self._route("increment_gauge", key, cap, ttl)

    async def decrement_gauge(self, key: str) -> int:
        return await self._route("decrement_gauge", key)
