"""Redis state store

Primary backend for multi-instance deployments. Counter and gauge updates
run as server-side Lua scripts so they stay atomic across every instance
sharing the Redis database.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import StoreDegraded
from .interface import StateStore

logger = logging.getLogger(__name__)


# Creates at 1 with a TTL; an existing counter keeps its TTL.
INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if redis.call('TTL', KEYS[1]) == -1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""

# Returns {allowed, count}. Refusal writes nothing.
INCREMENT_GAUGE_SCRIPT = """
local count = tonumber(redis.call('GET', KEYS[1]) or '0')
if count >= tonumber(ARGV[1]) then
    return {0, count}
end
count = redis.call('INCR', KEYS[1])
redis.call('EXPIRE', KEYS[1], ARGV[2])
return {1, count}
"""

# DECR keeps the TTL; floor at 0.
DECREMENT_GAUGE_SCRIPT = """
local count = tonumber(redis.call('GET', KEYS[1]) or '0')
if count <= 0 then
    return 0
end
return redis.call('DECR', KEYS[1])
"""

REDIS_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

_GLOB_SPECIAL = "\\*?[]"


def escape_glob(text: str) -> str:
    """Escape Redis MATCH pattern metacharacters"""
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in text)


@dataclass
class RedisStoreStats:
    """Redis store statistics"""
    connected: bool
    url: str
    errors: int


class RedisStore(StateStore):
    """Redis-backed state store

    Every command failure is raised as ``StoreDegraded`` so the tiered store
    can fall back without knowing about redis exception types.
    """

    def __init__(
        self,
        redis_url: str,
        max_retries: int = 3,
        retry_delay: float = 0.05,
        max_retry_delay: float = 2.0,
        socket_timeout: float = 2.0,
    ):
        self.redis_url = redis_url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.socket_timeout = socket_timeout

        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._errors = 0
        self._increment = None
        self._increment_gauge = None
        self._decrement_gauge = None

    async def connect(self) -> None:
        """Connect to Redis with retry logic"""
        retries = 0
        last_error = None

        while retries <= self.max_retries:
            try:
                if self._client is None:
                    self._client = redis.from_url(
                        self.redis_url,
                        decode_responses=True,
                        socket_timeout=self.socket_timeout,
                        socket_connect_timeout=self.socket_timeout,
                    )
                    self._register_scripts()

                await self._client.ping()
                self._connected = True
                logger.info(f"Connected to Redis at {self.redis_url}")
                return
            except REDIS_ERRORS as e:
                last_error = e
                retries += 1
                if retries <= self.max_retries:
                    delay = min(
                        self.retry_delay * (2 ** (retries - 1)),
                        self.max_retry_delay
                    )
                    await asyncio.sleep(delay)

        self._connected = False
        raise StoreDegraded(
            f"Failed to connect to Redis after {self.max_retries} retries: {last_error}",
            cause=last_error,
        )

    def _register_scripts(self) -> None:
        self._increment = self._client.register_script(INCREMENT_SCRIPT)
        self._increment_gauge = self._client.register_script(INCREMENT_GAUGE_SCRIPT)
        self._decrement_gauge = self._client.register_script(DECREMENT_GAUGE_SCRIPT)

    async def close(self) -> None:
        """Disconnect from Redis"""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._connected = False

    def is_connected(self) -> bool:
        """Check if connected"""
        return self._connected

    async def health_check(self) -> bool:
        """Ping Redis and update the connected flag"""
        try:
            if not self._client:
                return False
            await self._client.ping()
            self._connected = True
            return True
        except REDIS_ERRORS:
            self._connected = False
            return False

    def get_stats(self) -> RedisStoreStats:
        return RedisStoreStats(
            connected=self._connected,
            url=self.redis_url,
            errors=self._errors,
        )

    # ==========================================================================
    # OPERATIONS
    # ==========================================================================

    def _require_client(self) -> redis.Redis:
        if not self._client or not self._connected:
            raise StoreDegraded("Not connected to Redis")
        return self._client

    def _degraded(self, op: str, error: Exception) -> StoreDegraded:
        self._connected = False
        self._errors += 1
        return StoreDegraded(f"Redis {op} failed: {error}", cause=error)

    async def get(self, key: str) -> Optional[str]:
        client = self._require_client()
        try:
            return await client.get(key)
        except REDIS_ERRORS as e:
            raise self._degraded("GET", e) from e

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        client = self._require_client()
        try:
            await client.set(key, value, ex=ttl or None)
        except REDIS_ERRORS as e:
            raise self._degraded("SET", e) from e

    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        client = self._require_client()
        try:
            return bool(await client.set(key, value, ex=ttl or None, nx=True))
        except REDIS_ERRORS as e:
            raise self._degraded("SET NX", e) from e

    async def delete(self, key: str) -> None:
        client = self._require_client()
        try:
            await client.delete(key)
        except REDIS_ERRORS as e:
            raise self._degraded("DEL", e) from e

    async def delete_many(self, keys: list[str]) -> None:
        if not keys:
            return
        client = self._require_client()
        try:
            await client.delete(*keys)
        except REDIS_ERRORS as e:
            raise self._degraded("DEL", e) from e

    async def exists(self, key: str) -> bool:
        client = self._require_client()
        try:
            return await client.exists(key) == 1
        except REDIS_ERRORS as e:
            raise self._degraded("EXISTS", e) from e

    async def scan_prefix(self, prefix: str) -> list[tuple[str, str]]:
        client = self._require_client()
        try:
            keys = [key async for key in client.scan_iter(match=f"{escape_glob(prefix)}*", count=100)]
            if not keys:
                return []
            values = await client.mget(keys)
        except REDIS_ERRORS as e:
            raise self._degraded("SCAN", e) from e
        # Keys can expire between SCAN and MGET
        return [(k, v) for k, v in zip(keys, values) if v is not None]

    async def increment_with_expiry(self, key: str, ttl: int) -> int:
        self._require_client()
        try:
            return int(await self._increment(keys=[key], args=[ttl]))
        except REDIS_ERRORS as e:
            raise self._degraded("INCR", e) from e

    async def increment_gauge(self, key: str, cap: int, ttl: int) -> tuple[bool, int]:
        self._require_client()
        try:
            allowed, count = await self._increment_gauge(keys=[key], args=[cap, ttl])
        except REDIS_ERRORS as e:
            raise self._degraded("INCR gauge", e) from e
        return bool(int(allowed)), int(count)

    async def decrement_gauge(self, key: str) -> int:
        self._require_client()
        try:
            return int(await self._decrement_gauge(keys=[key]))
        except REDIS_ERRORS as e:
            raise self._degraded("DECR gauge", e) from e
