"""
Pytest fixtures for Lyra server tests
"""

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer
from redis.exceptions import ConnectionError as RedisConnectionError

from lyra_server.auth import TokenAuthenticator
from lyra_server.config import Settings
from lyra_server.rooms import MembershipCache, RoomRegistry
from lyra_server.security import RateLimiter, RateLimits
from lyra_server.storage import MemoryStore, RedisStore
from lyra_server.storage.redis import (
    DECREMENT_GAUGE_SCRIPT,
    INCREMENT_GAUGE_SCRIPT,
    INCREMENT_SCRIPT,
)

TEST_SECRET = "test-secret-that-is-at-least-32-characters-long"


class FakeClock:
    """Manually advanced clock (seconds)"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRedis:
    """
    In-process stand-in for ``redis.asyncio.Redis``.

    Backed by a MemoryStore; registered Lua scripts map to the equivalent
    MemoryStore primitive. Set ``fail = True`` to make every command raise
    a redis ConnectionError.
    """

    def __init__(self, clock=None):
        self.store = MemoryStore(clock=clock) if clock else MemoryStore()
        self.fail = False
        self.closed = False
        self.calls: list[str] = []

    def _check(self, command: str):
        self.calls.append(command)
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._check("PING")
        return True

    async def get(self, key):
        self._check("GET")
        return await self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._check("SET")
        if nx:
            return True if await self.store.set_if_absent(key, value, ex) else None
        await self.store.set(key, value, ex)
        return True

    async def delete(self, *keys):
        self._check("DEL")
        await self.store.delete_many(list(keys))
        return len(keys)

    async def exists(self, key):
        self._check("EXISTS")
        return 1 if await self.store.exists(key) else 0

    async def scan_iter(self, match=None, count=None):
        self._check("SCAN")
        prefix = (match or "*").rstrip("*").replace("\\", "")
        for key, _ in await self.store.scan_prefix(prefix):
            yield key

    async def mget(self, keys):
        self._check("MGET")
        return [await self.store.get(key) for key in keys]

    def register_script(self, script):
        store = self.store

        async def run(keys=None, args=None):
            self._check("EVALSHA")
            if script == INCREMENT_SCRIPT:
                return await store.increment_with_expiry(keys[0], int(args[0]))
            if script == INCREMENT_GAUGE_SCRIPT:
                allowed, count = await store.increment_gauge(keys[0], int(args[0]), int(args[1]))
                return [1 if allowed else 0, count]
            if script == DECREMENT_GAUGE_SCRIPT:
                return await store.decrement_gauge(keys[0])
            raise AssertionError("unknown script")

        return run

    async def aclose(self):
        self.closed = True


class FakeTransport:
    """Transport double recording close requests"""

    def __init__(self, documents=None):
        self.documents: dict[str, int] = dict(documents or {})
        self.closed: list[tuple[str, str]] = []

    def active_connection_count(self) -> int:
        return sum(self.documents.values())

    def documents_by_target(self) -> dict[str, int]:
        return dict(self.documents)

    async def close_document(self, document_name: str, reason: str = "") -> int:
        self.closed.append((document_name, reason))
        return self.documents.pop(document_name, 0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    """Mutable UTC clock for token tests"""

    class UtcClock:
        def __init__(self):
            self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        def __call__(self) -> datetime:
            return self.now

        def advance(self, delta: timedelta):
            self.now += delta

    return UtcClock()


@pytest.fixture
def memory_store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def authenticator(utc_clock):
    return TokenAuthenticator(TEST_SECRET, clock=utc_clock)


@pytest.fixture
def registry(memory_store, authenticator):
    return RoomRegistry(memory_store, authenticator)


@pytest.fixture
def cache(registry, clock):
    return MembershipCache(registry, ttl=60.0, clock=clock)


@pytest.fixture
def limiter(memory_store, clock):
    return RateLimiter(
        memory_store,
        limits=RateLimits(
            messages_per_minute=5,
            room_messages_per_minute=8,
            http_requests_per_minute=3,
            connections_per_ip=2,
        ),
        clock=clock,
    )


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def test_settings():
    return Settings(
        jwt_secret=TEST_SECRET,
        admin_password="admin-password-for-tests",
        rate_limit_http_requests_per_minute=1000,
        _env_file=None,
    )


@pytest.fixture
def lua_redis():
    """Isolated in-process Redis that executes Lua scripts"""
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest_asyncio.fixture
async def lua_store(lua_redis):
    store = RedisStore("redis://test:6379/0", max_retries=0, retry_delay=0)
    with patch("lyra_server.storage.redis.redis.from_url", return_value=lua_redis):
        await store.connect()
    yield store
    await store.close()


@pytest.fixture
def run_threads():
    """
    Run ``operation`` from several OS threads at once.

    Each thread drives its own event loop with ``asyncio.run``, so calls on
    a shared object genuinely interleave. Returns every result.
    """

    def run(operation, threads=8, per_thread=250):
        barrier = threading.Barrier(threads)
        results = []
        results_lock = threading.Lock()

        async def drive():
            return [await operation() for _ in range(per_thread)]

        def worker():
            barrier.wait()
            values = asyncio.run(drive())
            with results_lock:
                results.extend(values)

        workers = [threading.Thread(target=worker) for _ in range(threads)]
        for worker_thread in workers:
            worker_thread.start()
        for worker_thread in workers:
            worker_thread.join()
        return results

    return run
