"""
Authentication module for Lyra server
"""

from .jwt import (
    IssuedToken,
    Role,
    TokenAuthenticator,
    TokenIdentity,
    extract_room_id,
)

__all__ = [
    "IssuedToken",
    "Role",
    "TokenAuthenticator",
    "TokenIdentity",
    "extract_room_id",
]
