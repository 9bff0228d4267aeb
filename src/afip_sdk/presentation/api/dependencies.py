from __future__ import annotations

import threading

from afip_sdk.client import AfipClient
from afip_sdk.config import settings

# one client per process so tickets and pooled connections are shared
_client: AfipClient | None = None
_client_lock = threading.Lock()


def get_client() -> AfipClient:
    global _client
    with _client_lock:
        if _client is None:
            _client = AfipClient(settings)
        return _client


def close_client() -> None:
    global _client
    with _client_lock:
        client, _client = _client, None
    if client is not None:
        client.close()
