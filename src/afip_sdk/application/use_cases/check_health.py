from __future__ import annotations

from afip_sdk.application.ports.clock_port import Clock, SystemClock
from afip_sdk.application.ports.connection_pool_port import ConnectionPoolPort
from afip_sdk.domain.model import HealthReport, HealthStatus, ServiceHealth, ServiceStatistics


class HealthMonitor:
    """Derives a per-service verdict from connection pool statistics.

    A service is only judged once it has handled more than ``min_requests``
    calls. Past that point it is unhealthy when its failure ratio exceeds
    ``unhealthy_ratio`` and degraded when it exceeds ``degraded_ratio`` or its
    average latency exceeds ``slow_response_seconds``.
    """

    def __init__(
        self,
        pool: ConnectionPoolPort,
        *,
        min_requests: int = 10,
        unhealthy_ratio: float = 0.5,
        degraded_ratio: float = 0.2,
        slow_response_seconds: float = 10.0,
        clock: Clock | None = None,
    ) -> None:
        self.pool = pool
        self.min_requests = min_requests
        self.unhealthy_ratio = unhealthy_ratio
        self.degraded_ratio = degraded_ratio
        self.slow_response_seconds = slow_response_seconds
        self.clock = clock or SystemClock()

    def check_health(self) -> HealthReport:
        stats = self.pool.get_statistics()
        services = {name: self.evaluate(s) for name, s in stats.services.items()}
        statuses = {h.status for h in services.values()}
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY
        return HealthReport(overall=overall, services=services, checked_at=self.clock.now())

    def evaluate(self, stats: ServiceStatistics) -> ServiceHealth:
        ratio = stats.failure_ratio
        avg = stats.average_response_time
        status, message = HealthStatus.HEALTHY, ""
        if stats.total_requests > self.min_requests:
            if ratio > self.unhealthy_ratio:
                status, message = HealthStatus.UNHEALTHY, f"High failure rate: {ratio:.1%}"
            elif ratio > self.degraded_ratio or avg > self.slow_response_seconds:
                status = HealthStatus.DEGRADED
                message = f"Degraded performance: {ratio:.1%} failure rate, {avg:.2f}s avg response time"
        return ServiceHealth(
            service_name=stats.service_name,
            status=status,
            average_response_time=avg,
            failure_ratio=ratio,
            message=message,
        )
