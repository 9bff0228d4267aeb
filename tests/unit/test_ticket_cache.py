from __future__ import annotations
from datetime import timedelta
import threading

from afip_sdk.domain.model import AuthTicket
from afip_sdk.infrastructure.adapters.cache.memory_ticket_cache import InMemoryTicketCache
from tests.unit._fakes_auth import FixedClock


def _ticket(clock, token="tok", sign="sig", hours=12, service="wsfe"):
    now = clock.now()
    return AuthTicket(service, token, sign, now, now + timedelta(hours=hours))


def test_get_returns_last_set_ticket_while_valid():
    clock = FixedClock()
    cache = InMemoryTicketCache(clock=clock)
    first, second = _ticket(clock, token="A"), _ticket(clock, token="B")
    cache.set("wsfe", first)
    cache.set("wsfe", second)
    assert cache.get("wsfe") is second


def test_expired_ticket_is_absent_but_kept_until_next_set():
    clock = FixedClock()
    cache = InMemoryTicketCache(clock=clock)
    cache.set("wsfe", _ticket(clock, hours=1))
    clock.current += timedelta(hours=1)
    assert cache.get("wsfe") is None
    assert cache.statistics().entries == 1
    fresh = _ticket(clock)
    cache.set("wsfe", fresh)
    assert cache.get("wsfe") is fresh


def test_ticket_without_token_or_sign_is_never_returned():
    clock = FixedClock()
    cache = InMemoryTicketCache(clock=clock)
    cache.set("wsfe", _ticket(clock, token=""))
    cache.set("wsfex", _ticket(clock, sign="", service="wsfex"))
    assert cache.get("wsfe") is None
    assert cache.get("wsfex") is None


def test_clear_drops_everything_and_counts_hits_and_misses():
    clock = FixedClock()
    cache = InMemoryTicketCache(clock=clock)
    cache.set("wsfe", _ticket(clock))
    assert cache.get("wsfe") is not None
    assert cache.get("wsmtxca") is None
    cache.clear()
    assert cache.get("wsfe") is None
    stats = cache.statistics()
    assert (stats.entries, stats.hits, stats.misses) == (0, 1, 2)
    assert stats.hit_ratio == 1 / 3


def test_concurrent_set_and_get_never_tear():
    clock = FixedClock()
    cache = InMemoryTicketCache(clock=clock)
    tickets = [_ticket(clock, token=f"T{i}", sign=f"S{i}") for i in range(50)]
    seen = []

    def writer(t):
        cache.set("wsfe", t)

    def reader():
        t = cache.get("wsfe")
        if t is not None:
            seen.append(t)

    threads = [threading.Thread(target=writer, args=(t,)) for t in tickets]
    threads += [threading.Thread(target=reader) for _ in range(50)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    assert all(t in tickets and t.token[1:] == t.signature[1:] for t in seen)
    assert cache.get("wsfe") in tickets


def test_will_expire_soon():
    clock = FixedClock()
    t = _ticket(clock, hours=1)
    assert not t.will_expire_soon(minutes=10, now=clock.now())
    assert t.will_expire_soon(minutes=60, now=clock.now())
