from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

from afip_sdk.domain.errors import ConfigurationError
from afip_sdk.domain.model import RetryPolicy

# Load .env if present
load_dotenv()


class AfipEnvironment(str, Enum):
    TESTING = "testing"
    PRODUCTION = "production"


# service -> (testing, production)
ENDPOINTS: dict[str, tuple[str, str]] = {
    "wsaa": (
        "https://wsaahomo.afip.gov.ar/ws/services/LoginCms",
        "https://wsaa.afip.gov.ar/ws/services/LoginCms",
    ),
    "wsfe": (
        "https://wswhomo.afip.gov.ar/wsfev1/service.asmx",
        "https://servicios1.afip.gov.ar/wsfev1/service.asmx",
    ),
    "wsfex": (
        "https://wswhomo.afip.gov.ar/wsfex/service.asmx",
        "https://servicios1.afip.gov.ar/wsfex/service.asmx",
    ),
    "wsmtxca": (
        "https://wswhomo.afip.gov.ar/wsmtxca/service.asmx",
        "https://servicios1.afip.gov.ar/wsmtxca/service.asmx",
    ),
}

# services a WSAA ticket can be requested for
TICKET_SERVICES = frozenset(ENDPOINTS) - {"wsaa"}

PKCS12_SUFFIXES = {".p12", ".pfx"}


@dataclass(frozen=True)
class Settings:
    afip_cuit: str = os.getenv("AFIP_CUIT", "")
    environment: AfipEnvironment = AfipEnvironment(os.getenv("AFIP_ENVIRONMENT", "testing").lower())
    cert_path: str = os.getenv("AFIP_CERT_PATH", "")
    cert_password: str = os.getenv("AFIP_CERT_PASSWORD", "")
    key_path: str = os.getenv("AFIP_KEY_PATH", "")
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "30"))
    ticket_ttl_hours: int = int(os.getenv("TICKET_TTL_HOURS", "12"))
    wsaa_url: str = os.getenv("AFIP_WSAA_URL", "")
    wsfev1_url: str = os.getenv("AFIP_WSFEV1_URL", "")
    wsfex_url: str = os.getenv("AFIP_WSFEX_URL", "")
    wsmtxca_url: str = os.getenv("AFIP_WSMTXCA_URL", "")
    retry_max_retries: int = int(os.getenv("RETRY_MAX_RETRIES", "3"))
    retry_base_delay: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    retry_multiplier: float = float(os.getenv("RETRY_MULTIPLIER", "2.0"))

    def url_for(self, service_name: str) -> str:
        """Endpoint for ``service_name``, honoring the AFIP_*_URL overrides."""
        overrides = {
            "wsaa": self.wsaa_url,
            "wsfe": self.wsfev1_url,
            "wsfev1": self.wsfev1_url,
            "wsfex": self.wsfex_url,
            "wsmtxca": self.wsmtxca_url,
        }
        key = "wsfe" if service_name == "wsfev1" else service_name
        if key not in ENDPOINTS:
            raise ConfigurationError(f"Unknown AFIP service: {service_name}", service_name=service_name)
        if overrides[key]:
            return overrides[key]
        testing, production = ENDPOINTS[key]
        return production if self.environment is AfipEnvironment.PRODUCTION else testing

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
        )

    @property
    def uses_pkcs12(self) -> bool:
        return Path(self.cert_path).suffix.lower() in PKCS12_SUFFIXES

    def validate(self) -> None:
        cuit = self.afip_cuit.replace("-", "")
        if not (cuit.isdigit() and len(cuit) == 11):
            raise ConfigurationError("CUIT must be exactly 11 digits")
        if not self.cert_path:
            raise ConfigurationError("Certificate path is required")
        if not Path(self.cert_path).is_file():
            raise ConfigurationError(f"Certificate file not found: {self.cert_path}")
        if self.uses_pkcs12:
            if not self.cert_password:
                raise ConfigurationError("Certificate password is required for PKCS#12 files")
        elif not self.key_path:
            raise ConfigurationError("Private key path is required for PEM certificates")
        elif not Path(self.key_path).is_file():
            raise ConfigurationError(f"Private key file not found: {self.key_path}")
        if not 0 < self.http_timeout <= 300:
            raise ConfigurationError("Timeout must be greater than 0 and at most 300 seconds")


settings = Settings()
