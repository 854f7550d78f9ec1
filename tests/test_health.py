"""Tests for the liveness channel and its Prometheus rendering."""

from __future__ import annotations

from helpers import make_metric
from pipeline.errors import AuthRejected, BufferOverflow
from pipeline.health import HealthMonitor
from pipeline.models import Domain
from pipeline.sample_buffer import SampleBuffer


class TestHealthMonitor:
    def test_status_transitions(self) -> None:
        health = HealthMonitor()
        assert health.snapshot()["status"] == "starting"

        health.record_metric(make_metric(1, watts=12.5))
        assert health.snapshot()["status"] == "healthy"

        health.record_publish_failure(AuthRejected("401 unauthorized", 401))
        state = health.snapshot()
        assert state["status"] == "degraded"
        assert state["last_error"] == "AuthRejected: 401 unauthorized"
        assert state["publish_failures"] == 1

        health.record_publish(3)
        state = health.snapshot()
        assert state["status"] == "healthy"
        assert state["last_error"] is None
        assert state["points_published"] == 3
        assert state["last_successful_publish"] is not None

    def test_buffer_figures(self) -> None:
        health = HealthMonitor()
        buffer = SampleBuffer(2, on_overflow=health.record_error)
        for ts in range(3):
            buffer.enqueue(make_metric(ts))

        state = health.snapshot(buffer)

        assert state["buffer_depth"] == 2
        assert state["buffer_dropped"] == 1
        assert state["buffer_capacity"] == 2
        assert state["last_error"].startswith(BufferOverflow.__name__)

    def test_disabled_domains(self) -> None:
        health = HealthMonitor()
        health.record_domain_disabled(Domain.core(2), "permission denied")
        assert health.snapshot()["disabled_domains"] == {"core2": "permission denied"}


def test_prometheus_families() -> None:
    """The exporter's custom collector renders the health snapshot."""
    from exporter import PipelineCollector
    from helpers import FakeCollector, make_config
    from pipeline.scheduler import Scheduler

    scheduler = Scheduler(make_config(), FakeCollector({}))
    scheduler.buffer.enqueue(make_metric(1))
    scheduler.health.record_metric(make_metric(1, watts=33.0, domain=Domain.package(0)))

    families = {family.name: family for family in PipelineCollector(scheduler).collect()}

    assert families["ryzenmon_buffer_depth"].samples[0].value == 1
    assert families["ryzenmon_points_dropped"].samples[0].value == 0
    power = families["ryzenmon_domain_power_watts"].samples[0]
    assert power.labels == {"domain": "package0"}
    assert power.value == 33.0
    assert "ryzenmon_last_successful_publish_timestamp_seconds" not in families
