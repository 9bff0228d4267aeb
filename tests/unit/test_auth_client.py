from __future__ import annotations
import base64
from concurrent.futures import CancelledError, ThreadPoolExecutor
from datetime import timedelta
import threading
import time

import httpx
import pytest
from lxml import etree

from afip_sdk.application.use_cases.auth_client import AuthClient, WSAA_DESTINATION
from afip_sdk.domain.errors import AuthenticationError
from afip_sdk.infrastructure.adapters.cache.memory_ticket_cache import InMemoryTicketCache
from tests.unit._fakes_auth import FakeSigner, FakeTransport, FixedClock


def _client(transport=None, signer=None, clock=None, **kwargs):
    clock = clock or FixedClock()
    return AuthClient(
        InMemoryTicketCache(clock=clock),
        signer or FakeSigner(),
        transport or FakeTransport(),
        cuit="20123456789",
        clock=clock,
        **kwargs,
    )


def test_get_valid_ticket_authenticates_then_hits_cache():
    transport = FakeTransport(token="T1", sign="S1")
    clock = FixedClock()
    client = _client(transport, clock=clock)

    first = client.get_valid_ticket("wsfe")
    second = client.get_valid_ticket("wsfe")

    assert (first.token, first.signature) == ("T1", "S1")
    assert first.service_name == "wsfe"
    assert first.expires_at == clock.now() + timedelta(hours=12)
    assert second is first
    assert transport.called == 1


def test_expired_ticket_triggers_new_round_trip():
    transport = FakeTransport()
    clock = FixedClock()
    client = _client(transport, clock=clock)
    client.get_valid_ticket("wsfe")
    clock.current += timedelta(hours=12)
    client.get_valid_ticket("wsfe")
    assert transport.called == 2


def test_login_ticket_request_is_signed_and_sent_as_base64():
    signer = FakeSigner()
    transport = FakeTransport()
    sent = []
    original = transport.login_cms

    def capture(cms_b64, *, cancel=None):
        sent.append(cms_b64)
        return original(cms_b64, cancel=cancel)

    transport.login_cms = capture  # type: ignore[method-assign]
    clock = FixedClock()
    _client(transport, signer, clock).get_valid_ticket("wsfex")

    tra = etree.fromstring(signer.payloads[0])
    assert tra.tag == "loginTicketRequest"
    assert tra.findtext("header/source") == "20123456789"
    assert tra.findtext("header/destination") == WSAA_DESTINATION
    assert tra.findtext("service") == "wsfex"
    assert int(tra.findtext("header/uniqueId")) < 2**32
    assert tra.findtext("header/generationTime") == clock.now().isoformat(timespec="seconds")
    assert tra.findtext("header/expirationTime") == (clock.now() + timedelta(hours=12)).isoformat(timespec="seconds")
    assert base64.b64decode(sent[0]) == b"CMS:" + signer.payloads[0]


@pytest.mark.parametrize("response", [
    "<loginTicketResponse><credentials><token>T</token></credentials></loginTicketResponse>",
    "<loginTicketResponse><credentials><token></token><sign>S</sign></credentials></loginTicketResponse>",
    "<loginTicketResponse><header/></loginTicketResponse>",
    "not xml at all",
])
def test_malformed_response_raises_authentication_error(response):
    client = _client(FakeTransport(response=response))
    with pytest.raises(AuthenticationError, match="malformed response") as exc:
        client.get_valid_ticket("wsfe")
    assert exc.value.service_name == "wsfe"
    assert client.cache.get("wsfe") is None


def test_transport_and_signing_failures_are_wrapped():
    cause = httpx.ConnectError("connection refused")
    client = _client(FakeTransport(error=cause))
    with pytest.raises(AuthenticationError) as exc:
        client.get_valid_ticket("wsfe")
    assert exc.value.__cause__ is cause
    assert exc.value.cause is cause

    client = _client(signer=FakeSigner(fail=True))
    with pytest.raises(AuthenticationError, match="bad key"):
        client.get_valid_ticket("wsfe")


def test_cancelled_before_round_trip_propagates_cancellation():
    transport = FakeTransport()
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(CancelledError):
        _client(transport).get_valid_ticket("wsfe", cancel)
    assert transport.called == 0


def test_single_flight_shares_one_round_trip():
    transport = FakeTransport(delay=0.05)
    client = _client(transport)
    with ThreadPoolExecutor(max_workers=8) as pool:
        tickets = list(pool.map(lambda _: client.get_valid_ticket("wsfe"), range(8)))
    assert transport.called == 1
    assert all(t is tickets[0] for t in tickets)


def test_clear_cache_forces_reauthentication():
    transport = FakeTransport()
    client = _client(transport)
    client.get_valid_ticket("wsfe")
    client.clear_cache()
    client.get_valid_ticket("wsfe")
    assert transport.called == 2


def test_blank_service_name_is_rejected():
    with pytest.raises(ValueError):
        _client().get_valid_ticket("  ")


def test_cancelled_waiter_does_not_wait_for_in_flight_round_trip():
    transport = FakeTransport(delay=2.0)
    client = _client(transport)
    holder = threading.Thread(target=client.get_valid_ticket, args=("wsfe",))
    holder.start()
    try:
        while transport.called == 0:
            time.sleep(0.01)
        cancel = threading.Event()
        cancel.set()
        started = time.monotonic()
        with pytest.raises(CancelledError):
            client.get_valid_ticket("wsfe", cancel)
        assert time.monotonic() - started < 1.0
    finally:
        holder.join()
    assert transport.called == 1


def test_waiter_cancelled_while_blocked_on_round_trip():
    transport = FakeTransport(delay=2.0)
    client = _client(transport)
    holder = threading.Thread(target=client.get_valid_ticket, args=("wsfe",))
    holder.start()
    try:
        while transport.called == 0:
            time.sleep(0.01)
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()
        started = time.monotonic()
        with pytest.raises(CancelledError):
            client.get_valid_ticket("wsfe", cancel)
        assert time.monotonic() - started < 1.0
    finally:
        holder.join()
