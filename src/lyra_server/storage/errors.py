"""State store error types"""


class StorageError(Exception):
    """Base storage error"""
    def __init__(self, message: str, code: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.code = code
        self.cause = cause


class StoreDegraded(StorageError):
    """Networked backend unreachable or failing.

    Never surfaced to callers of the tiered store: it is the signal that
    switches routing to the in-process fallback.
    """
    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, "STORE_DEGRADED", cause)
