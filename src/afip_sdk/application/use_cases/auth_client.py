from __future__ import annotations

import base64
import logging
import secrets
import threading
from concurrent.futures import CancelledError
from datetime import datetime, timedelta
from threading import Event

from lxml import etree

from afip_sdk.application.ports.clock_port import Clock, SystemClock
from afip_sdk.application.ports.login_cms_port import LoginCmsPort
from afip_sdk.application.ports.signer_port import CmsSignerPort
from afip_sdk.application.ports.ticket_cache_port import TicketCachePort
from afip_sdk.domain.errors import AuthenticationError
from afip_sdk.domain.model import CUIT, AuthTicket

logger = logging.getLogger(__name__)

WSAA_DESTINATION = "cn=wsaa,o=afip,c=ar,serialNumber=CUIT 33693450239"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)
_LOCK_POLL_SECONDS = 0.05


class AuthClient:
    """Obtains WSAA tickets, preferring the cached one while it is valid.

    A cache miss triggers the full round trip: build the login ticket request
    (TRA), sign it as CMS, send it to ``loginCms`` and parse the returned
    credentials. With ``single_flight`` enabled, concurrent callers asking for
    the same service share one round trip.
    """

    def __init__(
        self,
        cache: TicketCachePort,
        signer: CmsSignerPort,
        transport: LoginCmsPort,
        *,
        cuit: str | int,
        ttl_hours: int = 12,
        clock: Clock | None = None,
        single_flight: bool = True,
    ) -> None:
        self.cache = cache
        self.signer = signer
        self.transport = transport
        self.cuit = CUIT(cuit)
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock or SystemClock()
        self.single_flight = single_flight
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get_valid_ticket(self, service_name: str, cancel: Event | None = None) -> AuthTicket:
        if not service_name or not service_name.strip():
            raise ValueError("service_name cannot be blank")
        ticket = self.cache.get(service_name)
        if ticket is not None:
            logger.debug("Using cached ticket for service: %s", service_name)
            return ticket
        if not self.single_flight:
            return self.authenticate(service_name, cancel)
        lock = self._lock_for(service_name)
        while not lock.acquire(timeout=_LOCK_POLL_SECONDS):
            _raise_if_cancelled(cancel, service_name)
        try:
            _raise_if_cancelled(cancel, service_name)
            # another caller may have refreshed it while we waited
            ticket = self.cache.get(service_name)
            if ticket is not None:
                return ticket
            return self.authenticate(service_name, cancel)
        finally:
            lock.release()

    def authenticate(self, service_name: str, cancel: Event | None = None) -> AuthTicket:
        """Forces a WSAA round trip and stores the resulting ticket."""
        logger.info("Starting authentication for service: %s", service_name)
        try:
            _raise_if_cancelled(cancel, service_name)
            now = self.clock.now()
            tra = self.build_login_ticket_request(service_name, now)
            cms = base64.b64encode(self.signer.sign(tra)).decode("ascii")
            _raise_if_cancelled(cancel, service_name)
            response_xml = self.transport.login_cms(cms, cancel=cancel)
            ticket = self.parse_login_ticket_response(service_name, response_xml, now)
        except (CancelledError, AuthenticationError):
            raise
        except Exception as e:
            logger.error("Authentication failed for service: %s (%s)", service_name, e)
            raise AuthenticationError(service_name, str(e) or type(e).__name__, cause=e) from e
        self.cache.set(service_name, ticket)
        logger.info("Authentication successful for service: %s, expires %s", service_name, ticket.expires_at.isoformat())
        return ticket

    def clear_cache(self) -> None:
        self.cache.clear()

    def build_login_ticket_request(self, service_name: str, now: datetime) -> bytes:
        root = etree.Element("loginTicketRequest", version="1.0")
        header = etree.SubElement(root, "header")
        etree.SubElement(header, "source").text = str(self.cuit)
        etree.SubElement(header, "destination").text = WSAA_DESTINATION
        # WSAA declares uniqueId as xs:unsignedInt
        etree.SubElement(header, "uniqueId").text = str(secrets.randbits(32))
        etree.SubElement(header, "generationTime").text = now.isoformat(timespec="seconds")
        etree.SubElement(header, "expirationTime").text = (now + self.ttl).isoformat(timespec="seconds")
        etree.SubElement(root, "service").text = service_name
        return etree.tostring(root, xml_declaration=True, encoding="UTF-8")

    def parse_login_ticket_response(self, service_name: str, response_xml: str, now: datetime) -> AuthTicket:
        try:
            root = etree.fromstring(response_xml.encode("utf-8"), parser=_PARSER)
        except etree.XMLSyntaxError as e:
            raise AuthenticationError(service_name, "malformed response (invalid XML)", cause=e) from e
        token = (root.findtext(".//credentials/token") or "").strip()
        sign = (root.findtext(".//credentials/sign") or "").strip()
        if not token or not sign:
            raise AuthenticationError(service_name, "malformed response (token or sign not found)")
        return AuthTicket(
            service_name=service_name,
            token=token,
            signature=sign,
            generated_at=now,
            expires_at=now + self.ttl,
        )

    def _lock_for(self, service_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(service_name, threading.Lock())


def _raise_if_cancelled(cancel: Event | None, service_name: str) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError(f"authentication for {service_name} cancelled")
