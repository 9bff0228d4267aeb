from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

import httpx

# =========================
# Value Objects
# =========================
class CUIT(str):
    """Value Object para CUIT (11 dígitos)."""
    def __new__(cls, value: str | int) -> "CUIT":
        text = str(value).replace("-", "").strip()
        if not (text.isdigit() and len(text) == 11):
            raise ValueError(f"CUIT inválido: {value!r}")
        return str.__new__(cls, text)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy applied by the connection pool.

    ``max_retries`` counts the attempts made after the first one, so a request
    is tried at most ``max_retries + 1`` times. The delay before retry ``n``
    (1-based) is ``base_delay * multiplier ** (n - 1)`` capped at ``max_delay``.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    retryable_status_codes: frozenset[int] = frozenset({503, 408, 429})
    retryable_exceptions: tuple[type[BaseException], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
        ConnectionError,
        TimeoutError,
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable_error(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retryable_exceptions)

    def is_retryable_response(self, response: httpx.Response) -> bool:
        return response.status_code in self.retryable_status_codes


# =========================
# Entities
# =========================
@dataclass(frozen=True)
class AuthTicket:
    """Ticket de acceso (TA) returned by WSAA for one service."""

    service_name: str
    token: str
    signature: str
    generated_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime | None = None) -> bool:
        if not self.token or not self.signature:
            return False
        return (now or datetime.now(UTC)) < self.expires_at

    def will_expire_soon(self, minutes: int = 10, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) + timedelta(minutes=minutes) >= self.expires_at


@dataclass(frozen=True)
class CacheStatistics:
    entries: int
    hits: int
    misses: int

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


@dataclass(frozen=True)
class ServiceStatistics:
    service_name: str
    total_requests: int = 0
    failed_requests: int = 0
    retried_requests: int = 0
    total_response_time: float = 0.0  # seconds, summed over attempts

    @property
    def average_response_time(self) -> float:
        return self.total_response_time / self.total_requests if self.total_requests else 0.0

    @property
    def failure_ratio(self) -> float:
        return self.failed_requests / self.total_requests if self.total_requests else 0.0


@dataclass(frozen=True)
class PoolStatistics:
    active_connections: int
    total_connections_created: int
    services: dict[str, ServiceStatistics] = field(default_factory=dict)

    @property
    def total_requests(self) -> int:
        return sum(s.total_requests for s in self.services.values())

    @property
    def failed_requests(self) -> int:
        return sum(s.failed_requests for s in self.services.values())

    @property
    def retried_requests(self) -> int:
        return sum(s.retried_requests for s in self.services.values())

    @property
    def average_response_time(self) -> float:
        total = self.total_requests
        if not total:
            return 0.0
        return sum(s.total_response_time for s in self.services.values()) / total

    @property
    def pool_efficiency(self) -> float:
        total = self.total_requests
        return 1.0 - (self.total_connections_created / total) if total else 0.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ServiceHealth:
    service_name: str
    status: HealthStatus
    average_response_time: float
    failure_ratio: float
    message: str = ""


@dataclass(frozen=True)
class HealthReport:
    overall: HealthStatus
    services: dict[str, ServiceHealth]
    checked_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.overall.value,
            "checked_at": self.checked_at.isoformat(),
            "services": {
                name: {
                    "status": h.status.value,
                    "avg_response_time": h.average_response_time,
                    "failure_ratio": h.failure_ratio,
                    "message": h.message,
                }
                for name, h in self.services.items()
            },
        }
