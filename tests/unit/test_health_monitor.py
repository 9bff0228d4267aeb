from __future__ import annotations
from datetime import datetime, timezone

import pytest

from afip_sdk.application.use_cases.check_health import HealthMonitor
from afip_sdk.domain.model import HealthStatus, PoolStatistics, ServiceStatistics
from tests.unit._fakes_auth import FixedClock


class FakePool:
    def __init__(self, *services: ServiceStatistics) -> None:
        self.stats = PoolStatistics(
            active_connections=len(services),
            total_connections_created=len(services),
            services={s.service_name: s for s in services},
        )

    def get_statistics(self):
        return self.stats


def _svc(name="wsfe", total=0, failed=0, response_time=0.0):
    return ServiceStatistics(name, total_requests=total, failed_requests=failed, total_response_time=response_time)


def test_majority_failures_above_threshold_is_unhealthy():
    report = HealthMonitor(FakePool(_svc(total=11, failed=6))).check_health()
    assert report.overall is HealthStatus.UNHEALTHY
    assert report.services["wsfe"].message.startswith("High failure rate")


def test_small_sample_is_always_healthy():
    report = HealthMonitor(FakePool(_svc(total=10, failed=6, response_time=500.0))).check_health()
    assert report.overall is HealthStatus.HEALTHY
    assert report.services["wsfe"].failure_ratio == pytest.approx(0.6)


def test_exactly_half_failures_is_not_unhealthy():
    report = HealthMonitor(FakePool(_svc(total=20, failed=10))).check_health()
    assert report.services["wsfe"].status is HealthStatus.DEGRADED


@pytest.mark.parametrize("failed,response_time", [(3, 0.0), (0, 121.0)])
def test_elevated_failures_or_slow_responses_degrade(failed, response_time):
    report = HealthMonitor(FakePool(_svc(total=12, failed=failed, response_time=response_time))).check_health()
    assert report.overall is HealthStatus.DEGRADED
    assert report.services["wsfe"].message.startswith("Degraded performance")


def test_overall_is_worst_service():
    pool = FakePool(_svc("wsfe", total=50), _svc("wsfex", total=12, failed=3), _svc("wsmtxca", total=30, failed=20))
    report = HealthMonitor(pool).check_health()
    assert {n: h.status for n, h in report.services.items()} == {
        "wsfe": HealthStatus.HEALTHY,
        "wsfex": HealthStatus.DEGRADED,
        "wsmtxca": HealthStatus.UNHEALTHY,
    }
    assert report.overall is HealthStatus.UNHEALTHY


def test_no_traffic_is_healthy_and_serializable():
    clock = FixedClock(datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc))
    report = HealthMonitor(FakePool(), clock=clock).check_health()
    assert report.to_dict() == {"status": "healthy", "checked_at": "2025-03-01T09:30:00+00:00", "services": {}}


def test_thresholds_are_configurable():
    monitor = HealthMonitor(FakePool(_svc(total=5, failed=2)), min_requests=4, unhealthy_ratio=0.3)
    assert monitor.check_health().overall is HealthStatus.UNHEALTHY
