from __future__ import annotations

import logging
from concurrent.futures import CancelledError
from threading import Event

import httpx
from lxml import etree

from afip_sdk.application.ports.login_cms_port import LoginCmsPort

logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSAA_NS = "http://wsaa.view.sua.dvadac.desein.afip.gov"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


class WsaaFaultError(Exception):
    """WSAA answered with a SOAP fault (e.g. coe.alreadyAuthenticated)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}" if code else message)
        self.code = code


def build_login_cms_envelope(cms_b64: str) -> bytes:
    envelope = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap={"soapenv": SOAP_ENV_NS, "wsaa": WSAA_NS})
    etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    login = etree.SubElement(body, f"{{{WSAA_NS}}}loginCms")
    etree.SubElement(login, f"{{{WSAA_NS}}}in0").text = cms_b64
    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


class HttpxLoginCmsClient(LoginCmsPort):
    def __init__(self, url: str, *, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        """WSAA ``loginCms`` adapter backed by a persistent httpx.Client.

        Args:
            url (str): LoginCms endpoint for the configured environment.
            timeout (float, optional): Timeout for requests. Defaults to 30.0.
            client (httpx.Client | None, optional): Pre-built client, mainly for tests.
        """
        self.url = url
        self._client = client or httpx.Client(timeout=timeout, headers={
            "Content-Type": "text/xml; charset=utf-8",
            "Accept": "text/xml, application/soap+xml, application/xml",
            "User-Agent": "afip-sdk/0.1 httpx",
        })

    def login_cms(self, cms_b64: str, *, cancel: Event | None = None) -> str:
        """Posts the signed TRA and unwraps ``loginCmsReturn``.

        Args:
            cms_b64 (str): Base64 DER CMS of the login ticket request.
            cancel (Event | None, optional): Caller cancellation signal.

        Returns:
            str: The ``loginTicketResponse`` XML document.
        """
        if cancel is not None and cancel.is_set():
            raise CancelledError("loginCms cancelled before sending")
        logger.debug("POST %s (loginCms)", self.url)
        resp = self._client.post(self.url, content=build_login_cms_envelope(cms_b64), headers={"SOAPAction": '""'})
        root = self._parse_envelope(resp)
        if root is not None:
            fault = root.find(f".//{{{SOAP_ENV_NS}}}Fault")
            if fault is not None:
                raise WsaaFaultError(
                    (fault.findtext("faultcode") or "").strip(),
                    (fault.findtext("faultstring") or "unknown SOAP fault").strip(),
                )
        resp.raise_for_status()
        if root is None:
            raise ValueError("WSAA response is not XML")
        # loginCmsReturn is qualified or not depending on the WSAA deployment
        nodes = root.xpath("//*[local-name()='loginCmsReturn']")
        payload = nodes[0].text if nodes else None
        if not payload:
            raise ValueError("WSAA response has no loginCmsReturn")
        return payload

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpxLoginCmsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @staticmethod
    def _parse_envelope(resp: httpx.Response) -> etree._Element | None:
        if not resp.content:
            return None
        try:
            return etree.fromstring(resp.content, parser=_PARSER)
        except etree.XMLSyntaxError:
            return None
