"""In-process state store

Used when Redis is disabled, and as the fallback while Redis is unreachable.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional

from .interface import StateStore

logger = logging.getLogger(__name__)


class MemoryStore(StateStore):
    """Dict-backed store with Redis-like expiry semantics.

    Every operation runs under one lock, so read-modify-write primitives are
    atomic across tasks and threads. Expired entries are dropped lazily on
    access and by a periodic sweep.
    """

    def __init__(
        self,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sweep_interval = sweep_interval
        self._clock = clock
        # key -> (value, expires_at); expires_at is None for no expiry
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        self.dispose()

    def is_connected(self) -> bool:
        return True

    async def health_check(self) -> bool:
        return True

    def start_cleanup(self):
        """Start periodic sweep of expired keys"""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug(f"Swept {removed} expired keys from memory store")

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
            for key in expired:
                del self._data[key]
        return len(expired)

    def dispose(self):
        """Cancel the sweep task"""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    # ==========================================================================
    # INTERNALS (caller holds the lock)
    # ==========================================================================

    def _live(self, key: str, now: float) -> Optional[tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= now:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: Optional[int], now: float) -> Optional[float]:
        return now + ttl if ttl else None

    # ==========================================================================
    # OPERATIONS
    # ==========================================================================

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl, self._clock()))

    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl, now))
            return True

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def delete_many(self, keys: list[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key, self._clock()) is not None

    async def scan_prefix(self, prefix: str) -> list[tuple[str, str]]:
        with self._lock:
            now = self._clock()
            results = []
            for key in [k for k in self._data if k.startswith(prefix)]:
                entry = self._live(key, now)
                if entry is not None:
                    results.append((key, entry[0]))
            return results

    async def increment_with_expiry(self, key: str, ttl: int) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                self._data[key] = ("1", self._expiry(ttl, now))
                return 1
            count = int(entry[0]) + 1
            self._data[key] = (str(count), entry[1])
            return count

    async def increment_gauge(self, key: str, cap: int, ttl: int) -> tuple[bool, int]:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            count = int(entry[0]) if entry else 0
            if count >= cap:
                return False, count
            count += 1
            self._data[key] = (str(count), self._expiry(ttl, now))
            return True, count

    async def decrement_gauge(self, key: str) -> int:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return 0
            count = int(entry[0])
            if count <= 0:
                return 0
            count -= 1
            self._data[key] = (str(count), entry[1])
            return count
