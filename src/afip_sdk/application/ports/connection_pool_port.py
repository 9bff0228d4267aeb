from __future__ import annotations

from collections.abc import Callable
from threading import Event
from typing import Protocol

import httpx

from afip_sdk.domain.model import PoolStatistics

RequestFn = Callable[[httpx.Client], httpx.Response]


class ConnectionPoolPort(Protocol):
    """Pooled HTTP clients per (service, base URL) with retry and statistics."""

    def get_client(self, service_name: str, base_url: str) -> httpx.Client: ...

    def execute(
        self,
        service_name: str,
        base_url: str,
        request_fn: RequestFn,
        *,
        cancel: Event | None = None,
    ) -> httpx.Response: ...

    def get_statistics(self) -> PoolStatistics: ...

    def clear_statistics(self) -> None: ...

    def close(self) -> None: ...
