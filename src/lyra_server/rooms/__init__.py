"""Room registry and membership cache"""

from .cache import MembershipCache
from .models import RoomCodeMapping, RoomMetadata
from .registry import (
    ROOM_TTL,
    RoomRegistry,
    room_code_key,
    room_metadata_key,
)

__all__ = [
    "MembershipCache",
    "ROOM_TTL",
    "RoomCodeMapping",
    "RoomMetadata",
    "RoomRegistry",
    "room_code_key",
    "room_metadata_key",
]
