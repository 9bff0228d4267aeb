from __future__ import annotations

import logging
import threading

from afip_sdk.application.ports.clock_port import Clock, SystemClock
from afip_sdk.application.ports.ticket_cache_port import TicketCachePort
from afip_sdk.domain.model import AuthTicket, CacheStatistics

logger = logging.getLogger(__name__)


class InMemoryTicketCache(TicketCachePort):
    """Process-local ticket store. Not persistent, lost on restart.

    Entries are replaced whole under a lock, so a lookup sees either the
    previous ticket or the new one, never a mix of both.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._tickets: dict[str, AuthTicket] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, service_name: str) -> AuthTicket | None:
        now = self._clock.now()
        with self._lock:
            ticket = self._tickets.get(service_name)
            if ticket is not None and ticket.is_valid(now):
                self._hits += 1
                return ticket
            self._misses += 1
        if ticket is not None:
            logger.debug("Cached ticket for %s is expired or incomplete", service_name)
        return None

    def set(self, service_name: str, ticket: AuthTicket) -> None:
        with self._lock:
            self._tickets[service_name] = ticket

    def clear(self) -> None:
        with self._lock:
            self._tickets.clear()
        logger.info("Ticket cache cleared")

    def statistics(self) -> CacheStatistics:
        with self._lock:
            return CacheStatistics(entries=len(self._tickets), hits=self._hits, misses=self._misses)
