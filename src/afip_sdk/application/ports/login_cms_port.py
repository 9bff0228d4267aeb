from __future__ import annotations

from threading import Event
from typing import Protocol


class LoginCmsPort(Protocol):
    """Transport for the WSAA ``loginCms`` operation."""

    def login_cms(self, cms_b64: str, *, cancel: Event | None = None) -> str:
        """Sends the base64 CMS and returns the raw ``loginTicketResponse`` XML.

        Raises on network failures, non-2xx responses and SOAP faults.
        """
        ...

    def close(self) -> None: ...
