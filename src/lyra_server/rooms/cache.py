"""
Membership cache

Short-TTL read-through cache of room member lists, used on the connection
admission path so a burst of connects to one room costs one store read.
Entries may be stale for up to ``ttl`` seconds unless invalidated; the
registry invalidates on every membership-changing write.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional

from ..errors import RoomNotFound
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class MembershipCache:
    def __init__(
        self,
        registry: RoomRegistry,
        ttl: float = 60.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        # room_id -> (members, expires_at)
        self._entries: dict[str, tuple[frozenset[str], float]] = {}
        self._lock = threading.Lock()
        # Bumped by every invalidation; a read-through that raced one is not cached
        self._epoch = 0
        self._hits = 0
        self._misses = 0
        self._cleanup_task: Optional[asyncio.Task] = None

        registry.add_listener(self.invalidate)

    async def members_of(self, room_id: str) -> frozenset[str]:
        """
        Members of ``room_id``, from cache when fresh.

        Raises:
            RoomNotFound: the room is absent or expired
        """
        with self._lock:
            entry = self._entries.get(room_id)
            if entry is not None and entry[1] > self._clock():
                self._hits += 1
                return entry[0]
            self._misses += 1
            epoch = self._epoch

        metadata = await self.registry.get_room(room_id)
        if metadata is None:
            raise RoomNotFound()

        members = frozenset(metadata.members)
        with self._lock:
            if self._epoch == epoch:
                self._entries[room_id] = (members, self._clock() + self.ttl)
        return members

    def invalidate(self, room_id: str) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.pop(room_id, None)

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
            for room_id in expired:
                del self._entries[room_id]
        return len(expired)

    def start_cleanup(self):
        """Start periodic sweep (every 5 minutes by default)"""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug(f"Swept {removed} expired membership entries")

    def dispose(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }
