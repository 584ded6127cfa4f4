"""State store interface definitions"""

from abc import ABC, abstractmethod
from typing import Optional


class StateStore(ABC):
    """Abstract key/value store with expiry.

    Values are strings (JSON documents or decimal integers). TTLs are in
    seconds; ``None`` means no expiry.
    """

    # Connection lifecycle
    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    # Basic operations
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store ``value`` only if ``key`` is absent. Returns True if written."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_many(self, keys: list[str]) -> None:
        """Delete all ``keys`` in a single atomic step"""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def scan_prefix(self, prefix: str) -> list[tuple[str, str]]:
        """Return every live ``(key, value)`` whose key starts with ``prefix``.

        O(keyspace): intended for administrative enumeration only.
        """
        pass

    # Counters
    @abstractmethod
    async def increment_with_expiry(self, key: str, ttl: int) -> int:
        """Atomically add 1 to the counter at ``key``.

        Creates the counter at 1 with ``ttl`` when absent; an existing
        counter keeps its TTL. Must hold under any number of concurrent
        callers.
        """
        pass

    @abstractmethod
    async def increment_gauge(self, key: str, cap: int, ttl: int) -> tuple[bool, int]:
        """Atomically increment the gauge at ``key`` unless it is at ``cap``.

        On success the TTL is reset to ``ttl``. On refusal nothing is
        written. Returns ``(allowed, count)``.
        """
        pass

    @abstractmethod
    async def decrement_gauge(self, key: str) -> int:
        """Atomically decrement the gauge at ``key``, never below 0"""
        pass
