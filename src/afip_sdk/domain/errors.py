from __future__ import annotations


class AfipError(Exception):
    """Base error for every failure raised by the SDK core."""

    def __init__(self, message: str, *, service_name: str | None = None) -> None:
        super().__init__(message)
        self.service_name = service_name


class ConfigurationError(AfipError):
    """Settings are incomplete or inconsistent."""


class AuthenticationError(AfipError):
    """WSAA ticket acquisition failed (signing, transport or malformed response).

    The underlying exception is chained as ``__cause__`` and exposed as ``cause``.
    """

    def __init__(self, service_name: str, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(f"Authentication failed for service {service_name}: {message}", service_name=service_name)
        self.cause = cause


class RequestFailedError(AfipError):
    """A pooled request did not succeed within the retry policy."""

    def __init__(
        self,
        service_name: str,
        attempts: int,
        *,
        cause: BaseException | None = None,
        status_code: int | None = None,
    ) -> None:
        if status_code is not None:
            reason = f"last status {status_code}"
        elif cause is not None:
            reason = f"{type(cause).__name__}: {cause}"
        else:
            reason = "no response"
        super().__init__(
            f"Request failed after {attempts} attempt(s) for service {service_name} ({reason})",
            service_name=service_name,
        )
        self.attempts = attempts
        self.cause = cause
        self.status_code = status_code


class PoolClosedError(AfipError):
    """The connection pool was used after close()."""

    def __init__(self) -> None:
        super().__init__("Connection pool is closed")
