"""
JWT Authentication Module

Room-scoped session tokens. A token binds a user, a room and a role for a
fixed validity window. Tokens are stateless: there is no way to revoke one
before it expires.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from jose import jwt, JWTError

from ..errors import Expired, InvalidToken, MalformedTarget, MissingToken, RoomMismatch


# Document naming: room:{roomId}:main | room:{roomId}:turn:{n} | room:{roomId}:history
DOCUMENT_NAME_PATTERN = re.compile(r"^room:([^:]+):")

DEFAULT_TOKEN_TTL = timedelta(days=7)


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"


@dataclass(frozen=True)
class TokenIdentity:
    """Verified token claims"""

    user_id: str
    room_id: str
    role: Role


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime

    @property
    def expires_at_ms(self) -> int:
        return int(self.expires_at.timestamp() * 1000)


def extract_room_id(document_name: str) -> Optional[str]:
    """Extract the room id from a document name, or None if it has none"""
    match = DOCUMENT_NAME_PATTERN.match(document_name or "")
    return match.group(1) if match else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenAuthenticator:
    """Issues and verifies room-scoped JWTs.

    Expiry is checked against ``clock`` rather than by the JWT library so
    the boundary is exact: a token is valid up to and including its ``exp``
    second and expired strictly after it.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = ttl
        self._clock = clock

    def issue(self, user_id: str, room_id: str, role: Role | str) -> IssuedToken:
        """
        Generate a session token.

        The role is trusted as given; callers authorize it first
        (see ``RoomRegistry.issue_role_token``).

        Args:
            user_id: User identifier
            room_id: Room the token is bound to
            role: host or guest

        Returns:
            IssuedToken with the encoded JWT and its expiry instant
        """
        role = Role(role)
        now = self._clock()
        expires_at = (now + self.ttl).replace(microsecond=0)

        payload = {
            "userId": user_id,
            "roomId": room_id,
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }

        token = jwt.encode(payload, self._secret, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=expires_at)

    def verify(self, token: Optional[str]) -> TokenIdentity:
        """
        Verify and decode a session token.

        Raises:
            MissingToken: no token supplied
            InvalidToken: bad signature, malformed token or claims
            Expired: current time is past the token's expiry
        """
        if not token:
            raise MissingToken()

        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise InvalidToken() from e

        user_id = decoded.get("userId")
        room_id = decoded.get("roomId")
        exp = decoded.get("exp")
        if not user_id or not room_id or not isinstance(exp, int):
            raise InvalidToken("Invalid token payload")

        try:
            role = Role(decoded.get("role"))
        except ValueError as e:
            raise InvalidToken("Invalid token payload") from e

        if self._clock().timestamp() > exp:
            raise Expired()

        return TokenIdentity(user_id=user_id, room_id=room_id, role=role)

    def authorize_for_target(self, token: Optional[str], document_name: str) -> TokenIdentity:
        """
        Verify a token and check it grants access to ``document_name``.

        Raises:
            AuthError subclasses; additionally MalformedTarget when no room id
            can be parsed and RoomMismatch when the token is for another room.
        """
        identity = self.verify(token)

        room_id = extract_room_id(document_name)
        if not room_id:
            raise MalformedTarget()

        if identity.room_id != room_id:
            raise RoomMismatch()

        return identity
