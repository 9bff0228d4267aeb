from __future__ import annotations

from typing import Protocol

from afip_sdk.domain.model import AuthTicket, CacheStatistics


class TicketCachePort(Protocol):
    """In-memory store of WSAA tickets keyed by service name."""

    def get(self, service_name: str) -> AuthTicket | None:
        """Returns the ticket only if present and still valid."""
        ...

    def set(self, service_name: str, ticket: AuthTicket) -> None:
        """Unconditional upsert, last writer wins."""
        ...

    def clear(self) -> None: ...

    def statistics(self) -> CacheStatistics: ...
