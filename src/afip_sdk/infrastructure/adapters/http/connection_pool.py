from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import CancelledError
from threading import Event

import httpx
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from afip_sdk.application.ports.connection_pool_port import ConnectionPoolPort, RequestFn
from afip_sdk.domain.errors import PoolClosedError, RequestFailedError
from afip_sdk.domain.model import PoolStatistics, RetryPolicy, ServiceStatistics

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "afip-sdk/0.1 httpx",
    "Accept": "application/xml, text/xml, */*",
}

ClientFactory = Callable[[str, str], httpx.Client]


class _PooledConnection:
    def __init__(self, service_name: str, base_url: str, client: httpx.Client, now: float) -> None:
        self.service_name = service_name
        self.base_url = base_url
        self.client = client
        self.created_at = now
        self.last_used_at = now
        self.in_flight = 0


class _ServiceCounters:
    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        self._lock = threading.Lock()
        self._total = 0
        self._failed = 0
        self._retried = 0
        self._response_time = 0.0

    def add_request(self) -> None:
        with self._lock:
            self._total += 1

    def add_failure(self) -> None:
        with self._lock:
            self._failed += 1

    def add_retry(self) -> None:
        with self._lock:
            self._retried += 1

    def add_response_time(self, seconds: float) -> None:
        with self._lock:
            self._response_time += seconds

    def snapshot(self) -> ServiceStatistics:
        with self._lock:
            return ServiceStatistics(
                service_name=self.service_name,
                total_requests=self._total,
                failed_requests=self._failed,
                retried_requests=self._retried,
                total_response_time=self._response_time,
            )


class HttpxConnectionPool(ConnectionPoolPort):
    """One persistent httpx.Client per (service, base URL), shared across threads.

    ``execute`` runs the caller's request function under the retry policy and
    feeds the per-service statistics that the health monitor reads.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        default_headers: Mapping[str, str] | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_headers = dict(default_headers or DEFAULT_HEADERS)
        self._client_factory = client_factory or self._create_client
        self._sleep = sleep
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._connections: dict[tuple[str, str], _PooledConnection] = {}
        self._counters: dict[str, _ServiceCounters] = {}
        self._connections_created = 0
        self._closed = False

    # ---------- clients ----------
    def get_client(self, service_name: str, base_url: str) -> httpx.Client:
        _require(service_name, "service_name")
        _require(base_url, "base_url")
        with self._lock:
            self._ensure_open()
            conn = self._get_or_create(service_name, base_url)
            conn.last_used_at = self._monotonic()
            return conn.client

    def _get_or_create(self, service_name: str, base_url: str) -> _PooledConnection:
        key = (service_name, base_url)
        conn = self._connections.get(key)
        if conn is None:
            conn = _PooledConnection(service_name, base_url, self._client_factory(service_name, base_url), self._monotonic())
            self._connections[key] = conn
            self._connections_created += 1
            logger.debug("Created new HTTP client for service: %s, URL: %s", service_name, base_url)
        return conn

    def _create_client(self, service_name: str, base_url: str) -> httpx.Client:
        return httpx.Client(base_url=base_url, timeout=self.timeout, headers=self.default_headers)

    # ---------- execution ----------
    def execute(
        self,
        service_name: str,
        base_url: str,
        request_fn: RequestFn,
        *,
        cancel: Event | None = None,
    ) -> httpx.Response:
        _require(service_name, "service_name")
        _require(base_url, "base_url")
        if request_fn is None:
            raise ValueError("request_fn is required")

        with self._lock:
            self._ensure_open()
            conn = self._get_or_create(service_name, base_url)
            conn.in_flight += 1
            stats = self._counters_for(service_name)
        stats.add_request()

        policy = self.retry_policy
        attempts = 0

        def attempt() -> httpx.Response:
            nonlocal attempts
            _raise_if_cancelled(cancel, service_name)
            self._ensure_open()
            attempts += 1
            if attempts > 1:
                stats.add_retry()
            started = self._monotonic()
            try:
                return request_fn(conn.client)
            except Exception as e:
                if cancel is not None and cancel.is_set():
                    raise CancelledError(f"request to {service_name} cancelled") from e
                if self._closed:
                    raise PoolClosedError() from e
                raise
            finally:
                stats.add_response_time(self._monotonic() - started)

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.base_delay, exp_base=policy.multiplier, max=policy.max_delay),
            retry=retry_if_exception(policy.is_retryable_error) | retry_if_result(policy.is_retryable_response),
            sleep=self._sleeper(cancel, service_name),
            before_sleep=self._before_sleep(service_name),
        )
        try:
            response = retrying(attempt)
            logger.debug("Request successful for service: %s, attempts: %d", service_name, attempts)
            return response
        except RetryError as e:
            stats.add_failure()
            last = e.last_attempt
            if last.failed:
                cause = last.exception()
                logger.error("Request failed for service: %s after %d attempts: %s", service_name, attempts, cause)
                raise RequestFailedError(service_name, attempts, cause=cause) from cause
            last_response: httpx.Response = last.result()
            last_response.close()
            logger.error(
                "Request failed for service: %s after %d attempts with status %d",
                service_name, attempts, last_response.status_code,
            )
            raise RequestFailedError(service_name, attempts, status_code=last_response.status_code) from None
        except CancelledError:
            logger.info("Request for service: %s cancelled after %d attempt(s)", service_name, attempts)
            raise
        except PoolClosedError:
            logger.info("Request for service: %s aborted, pool closed after %d attempt(s)", service_name, attempts)
            raise
        except Exception as e:
            stats.add_failure()
            logger.error("Request failed for service: %s with non-retryable error: %s", service_name, e)
            raise RequestFailedError(service_name, attempts, cause=e) from e
        finally:
            with self._lock:
                conn.in_flight -= 1
                conn.last_used_at = self._monotonic()

    def _sleeper(self, cancel: Event | None, service_name: str) -> Callable[[float], None]:
        def sleep(seconds: float) -> None:
            if cancel is None:
                self._sleep(seconds)
            elif cancel.wait(seconds):
                raise CancelledError(f"request to {service_name} cancelled during backoff")
            self._ensure_open()
        return sleep

    def _before_sleep(self, service_name: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            outcome = state.outcome
            delay = state.next_action.sleep if state.next_action else 0.0
            if outcome is None:
                return
            if outcome.failed:
                logger.warning(
                    "Request failed for service: %s, attempt: %d (%s), retrying in %.2fs",
                    service_name, state.attempt_number, outcome.exception(), delay,
                )
            else:
                response: httpx.Response = outcome.result()
                logger.warning(
                    "Request failed with status %d for service: %s, attempt: %d, retrying in %.2fs",
                    response.status_code, service_name, state.attempt_number, delay,
                )
                response.close()
        return before_sleep

    # ---------- statistics ----------
    def _counters_for(self, service_name: str) -> _ServiceCounters:
        counters = self._counters.get(service_name)
        if counters is None:
            counters = self._counters[service_name] = _ServiceCounters(service_name)
        return counters

    def get_statistics(self) -> PoolStatistics:
        with self._lock:
            self._ensure_open()
            counters = list(self._counters.values())
            active = len(self._connections)
            created = self._connections_created
        return PoolStatistics(
            active_connections=active,
            total_connections_created=created,
            services={c.service_name: c.snapshot() for c in counters},
        )

    def clear_statistics(self) -> None:
        with self._lock:
            self._counters.clear()

    # ---------- lifecycle ----------
    def clear_idle_connections(self, max_idle_seconds: float = 300.0) -> int:
        """Closes connections unused for ``max_idle_seconds`` with no request in flight."""
        now = self._monotonic()
        with self._lock:
            self._ensure_open()
            idle = [
                key for key, conn in self._connections.items()
                if conn.in_flight == 0 and now - conn.last_used_at >= max_idle_seconds
            ]
            evicted = [self._connections.pop(key) for key in idle]
        for conn in evicted:
            conn.client.close()
            logger.debug("Evicted idle HTTP client for service: %s, URL: %s", conn.service_name, conn.base_url)
        return len(evicted)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            connections = list(self._connections.values())
            self._connections.clear()
        for conn in connections:
            conn.client.close()
        logger.debug("Connection pool closed (%d clients)", len(connections))

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "HttpxConnectionPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise PoolClosedError()


def _require(value: str, name: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"{name} cannot be blank")


def _raise_if_cancelled(cancel: Event | None, service_name: str) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError(f"request to {service_name} cancelled")
