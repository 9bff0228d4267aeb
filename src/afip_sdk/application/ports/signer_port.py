from __future__ import annotations

from typing import Protocol


class CmsSignerPort(Protocol):
    """Signing primitive for the WSAA login ticket request."""

    def sign(self, payload: bytes) -> bytes:
        """Returns a DER encoded CMS SignedData with ``payload`` attached.

        Raises on any key or certificate problem.
        """
        ...
