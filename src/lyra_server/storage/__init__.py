"""State store backends"""

from .interface import StateStore
from .errors import (
    StorageError,
    StoreDegraded,
)
from .memory import MemoryStore
from .redis import RedisStore, RedisStoreStats
from .tiered import TieredStore

__all__ = [
    # Interface
    "StateStore",
    # Errors
    "StorageError",
    "StoreDegraded",
    # Backends
    "MemoryStore",
    "RedisStore",
    "RedisStoreStats",
    "TieredStore",
]
