from __future__ import annotations

from collections.abc import Iterator

from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from afip_sdk.application.ports.connection_pool_port import ConnectionPoolPort


class ConnectionPoolCollector:
    """Exposes connection pool statistics as Prometheus metrics at scrape time."""

    def __init__(self, pool: ConnectionPoolPort) -> None:
        self.pool = pool

    def collect(self) -> Iterator[Metric]:
        stats = self.pool.get_statistics()
        requests = CounterMetricFamily("afip_requests", "Requests executed through the pool", labels=["service"])
        failed = CounterMetricFamily("afip_failed_requests", "Requests that ended in a terminal failure", labels=["service"])
        retried = CounterMetricFamily("afip_retried_requests", "Retry attempts performed", labels=["service"])
        latency = GaugeMetricFamily("afip_avg_response_seconds", "Average response time per request", labels=["service"])
        for name, s in sorted(stats.services.items()):
            requests.add_metric([name], s.total_requests)
            failed.add_metric([name], s.failed_requests)
            retried.add_metric([name], s.retried_requests)
            latency.add_metric([name], s.average_response_time)
        yield requests
        yield failed
        yield retried
        yield latency
        yield GaugeMetricFamily("afip_pool_active_connections", "Pooled HTTP clients", value=stats.active_connections)


def build_registry(pool: ConnectionPoolPort) -> CollectorRegistry:
    registry = CollectorRegistry()
    registry.register(ConnectionPoolCollector(pool))  # type: ignore[arg-type]
    return registry
