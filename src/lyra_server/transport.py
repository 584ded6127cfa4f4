"""
Transport capability interface

The collaborative-editing engine that owns sockets and documents is external.
The admission core only depends on this narrow query/control surface, never
on the engine's concrete type.
"""

from typing import Mapping, Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    def active_connection_count(self) -> int:
        """Number of open client connections"""
        ...

    def documents_by_target(self) -> Mapping[str, int]:
        """Open document names mapped to their connection counts"""
        ...

    async def close_document(self, document_name: str, reason: str = "") -> int:
        """Close every connection on ``document_name``. Returns how many."""
        ...
