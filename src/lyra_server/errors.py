"""Error taxonomy for admission, membership and registry failures.

Every error carries a stable ``code`` string and the HTTP status it maps to,
so the HTTP layer can render ``{"error": message, "code": code}`` bodies and
the WebSocket layer can pick a close reason.
"""


class LyraError(Exception):
    """Base error"""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None, code: str | None = None):
        super().__init__(message or self.default_message())
        self.message = str(self)
        if code is not None:
            self.code = code

    @classmethod
    def default_message(cls) -> str:
        return "Internal server error"

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class BadRequest(LyraError):
    code = "BAD_REQUEST"
    status_code = 400

    @classmethod
    def default_message(cls) -> str:
        return "Bad request"


# --- Authentication -------------------------------------------------------


class AuthError(LyraError):
    """Token authentication failure (terminal for the connection)"""

    code = "AUTH_FAILED"
    status_code = 401

    @classmethod
    def default_message(cls) -> str:
        return "Authentication failed"


class MissingToken(AuthError):
    code = "MISSING_TOKEN"

    @classmethod
    def default_message(cls) -> str:
        return "Missing authentication token"


class InvalidToken(AuthError):
    code = "INVALID_TOKEN"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid token"


class Expired(AuthError):
    code = "TOKEN_EXPIRED"

    @classmethod
    def default_message(cls) -> str:
        return "Token expired"


class RoomMismatch(AuthError):
    code = "ROOM_MISMATCH"

    @classmethod
    def default_message(cls) -> str:
        return "Room ID mismatch"


class MalformedTarget(AuthError):
    code = "MALFORMED_TARGET"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid document name format"


class AdminUnauthorized(AuthError):
    code = "UNAUTHORIZED"

    @classmethod
    def default_message(cls) -> str:
        return "Unauthorized"


# --- Admission ------------------------------------------------------------


class AdmissionError(LyraError):
    """Resource-governance refusal"""

    code = "ADMISSION_REFUSED"
    status_code = 429

    @classmethod
    def default_message(cls) -> str:
        return "Admission refused"


class IpCapExceeded(AdmissionError):
    code = "IP_CAP_EXCEEDED"

    @classmethod
    def default_message(cls) -> str:
        return "Too many connections from this IP"


class MessageRateLimited(AdmissionError):
    code = "MESSAGE_RATE_LIMITED"

    @classmethod
    def default_message(cls) -> str:
        return "Message rate limit exceeded"


class RateLimitExceeded(AdmissionError):
    """HTTP request rate exceeded"""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int, limit: int, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.limit = limit

    @classmethod
    def default_message(cls) -> str:
        return "Rate limit exceeded. Please try again later."

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body


# --- Membership -----------------------------------------------------------


class MembershipError(LyraError):
    code = "MEMBERSHIP_ERROR"
    status_code = 403


class RoomNotFound(MembershipError):
    code = "ROOM_NOT_FOUND"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Room not found or expired"


class NotAMember(MembershipError):
    code = "NOT_A_MEMBER"

    @classmethod
    def default_message(cls) -> str:
        return "User is not a member of this room"


class NotHost(MembershipError):
    code = "NOT_HOST"

    @classmethod
    def default_message(cls) -> str:
        return "Only the room creator can have host role"


# --- Registry -------------------------------------------------------------


class RegistryError(LyraError):
    code = "REGISTRY_ERROR"
    status_code = 409


class CodeConflict(RegistryError):
    code = "CODE_CONFLICT"

    @classmethod
    def default_message(cls) -> str:
        return "Room code already in use"
