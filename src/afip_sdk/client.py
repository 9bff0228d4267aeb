from __future__ import annotations

import logging
from threading import Event

import httpx

from afip_sdk.application.ports.clock_port import Clock
from afip_sdk.application.ports.connection_pool_port import RequestFn
from afip_sdk.application.ports.login_cms_port import LoginCmsPort
from afip_sdk.application.ports.signer_port import CmsSignerPort
from afip_sdk.application.ports.ticket_cache_port import TicketCachePort
from afip_sdk.application.use_cases.auth_client import AuthClient
from afip_sdk.application.use_cases.check_health import HealthMonitor
from afip_sdk.config import AfipEnvironment, Settings
from afip_sdk.domain.errors import ConfigurationError
from afip_sdk.domain.model import CUIT, AuthTicket, HealthReport, PoolStatistics
from afip_sdk.infrastructure.adapters.cache.memory_ticket_cache import InMemoryTicketCache
from afip_sdk.infrastructure.adapters.crypto.pkcs7_signer import Pkcs7CmsSigner
from afip_sdk.infrastructure.adapters.http.connection_pool import HttpxConnectionPool
from afip_sdk.infrastructure.adapters.wsaa.login_cms_client import HttpxLoginCmsClient

logger = logging.getLogger(__name__)


class AfipClient:
    """Entry point wiring authentication, pooled execution and health checks.

    Everything is built eagerly in dependency order: ticket cache, signer and
    WSAA transport feed the AuthClient; the connection pool feeds the
    HealthMonitor. Any collaborator can be injected, which is how the tests
    replace the network-facing pieces.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        signer: CmsSignerPort | None = None,
        transport: LoginCmsPort | None = None,
        cache: TicketCachePort | None = None,
        pool: HttpxConnectionPool | None = None,
        clock: Clock | None = None,
    ) -> None:
        if signer is None:
            settings.validate()
            signer = _load_signer(settings)
        try:
            cuit = CUIT(settings.afip_cuit)
        except ValueError as e:
            raise ConfigurationError("CUIT must be exactly 11 digits") from e
        self.settings = settings
        self.cache = cache or InMemoryTicketCache(clock=clock)
        self.transport = transport or HttpxLoginCmsClient(settings.url_for("wsaa"), timeout=settings.http_timeout)
        self.auth = AuthClient(
            self.cache,
            signer,
            self.transport,
            cuit=cuit,
            ttl_hours=settings.ticket_ttl_hours,
            clock=clock,
        )
        self.pool = pool or HttpxConnectionPool(timeout=settings.http_timeout, retry_policy=settings.retry_policy())
        self.health = HealthMonitor(self.pool, clock=clock)
        logger.info("AfipClient initialized for CUIT %s in %s environment", settings.afip_cuit, settings.environment.value)

    @classmethod
    def create_for_testing(cls, cuit: str, cert_path: str, cert_password: str, **kwargs: object) -> "AfipClient":
        return cls(
            Settings(afip_cuit=cuit, environment=AfipEnvironment.TESTING, cert_path=cert_path, cert_password=cert_password),
            **kwargs,  # type: ignore[arg-type]
        )

    @classmethod
    def create_for_production(cls, cuit: str, cert_path: str, cert_password: str, **kwargs: object) -> "AfipClient":
        return cls(
            Settings(afip_cuit=cuit, environment=AfipEnvironment.PRODUCTION, cert_path=cert_path, cert_password=cert_password),
            **kwargs,  # type: ignore[arg-type]
        )

    def get_valid_ticket(self, service_name: str, cancel: Event | None = None) -> AuthTicket:
        return self.auth.get_valid_ticket(service_name, cancel)

    def execute(self, service_name: str, request_fn: RequestFn, *, cancel: Event | None = None) -> httpx.Response:
        """Runs ``request_fn`` against the pooled client for the service's configured endpoint."""
        return self.pool.execute(service_name, self.settings.url_for(service_name), request_fn, cancel=cancel)

    def check_health(self) -> HealthReport:
        return self.health.check_health()

    def statistics(self) -> PoolStatistics:
        return self.pool.get_statistics()

    def close(self) -> None:
        """Drops cached tickets and closes every HTTP client, even if one close fails."""
        self.auth.clear_cache()
        try:
            self.transport.close()
        finally:
            self.pool.close()
        logger.info("AfipClient closed")

    def __enter__(self) -> "AfipClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _load_signer(settings: Settings) -> Pkcs7CmsSigner:
    if settings.uses_pkcs12:
        return Pkcs7CmsSigner.from_pkcs12(settings.cert_path, settings.cert_password)
    return Pkcs7CmsSigner.from_pem(settings.cert_path, settings.key_path, settings.cert_password or None)
