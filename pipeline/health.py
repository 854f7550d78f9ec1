"""
Liveness and error channel read by the management API and Prometheus.
"""
import time
from datetime import datetime
from threading import Lock
from typing import Dict, Optional

from .models import Domain, Metric


class HealthMonitor:
    """
    Thread-safe record of what the pipeline is doing.

    The pipeline only writes here; rendering happens in exporter.py.
    """

    def __init__(self):
        self._lock = Lock()
        self.start_time = datetime.now()
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[datetime] = None
        self.last_successful_publish: Optional[datetime] = None
        self.last_sample_at: Optional[datetime] = None
        self.points_published = 0
        self.publish_failures = 0
        self.conversion_skips = 0
        self.disabled_domains: Dict[str, str] = {}
        self.latest_power: Dict[str, float] = {}

    def record_error(self, error: Exception) -> None:
        with self._lock:
            self.last_error = f"{error.__class__.__name__}: {error}"
            self.last_error_at = datetime.now()

    def record_publish_failure(self, error: Exception) -> None:
        with self._lock:
            self.publish_failures += 1
        self.record_error(error)

    def record_publish(self, count: int) -> None:
        with self._lock:
            self.points_published += count
            self.last_successful_publish = datetime.now()
            # delivery works again; drop the stale error
            self.last_error = None
            self.last_error_at = None

    def record_metric(self, metric: Metric) -> None:
        with self._lock:
            self.latest_power[metric.domain.id] = metric.power_watts
            self.last_sample_at = datetime.now()

    def record_conversion_skip(self) -> None:
        with self._lock:
            self.conversion_skips += 1

    def record_domain_disabled(self, domain: Domain, reason: str) -> None:
        with self._lock:
            self.disabled_domains[domain.id] = reason

    def snapshot(self, buffer=None) -> Dict:
        """
        Current state as a JSON-serialisable dict.

        Args:
            buffer: SampleBuffer whose depth and loss counter are included
        """
        with self._lock:
            if self.last_error:
                status = "degraded"
            elif self.last_successful_publish or self.last_sample_at:
                status = "healthy"
            else:
                status = "starting"

            data = {
                "status": status,
                "uptime_seconds": int((datetime.now() - self.start_time).total_seconds()),
                "last_error": self.last_error,
                "last_error_at": _iso(self.last_error_at),
                "last_successful_publish": _iso(self.last_successful_publish),
                "last_successful_publish_timestamp": (
                    self.last_successful_publish.timestamp()
                    if self.last_successful_publish else None
                ),
                "last_sample_at": _iso(self.last_sample_at),
                "points_published": self.points_published,
                "publish_failures": self.publish_failures,
                "conversion_skips": self.conversion_skips,
                "disabled_domains": dict(self.disabled_domains),
                "latest_power_watts": dict(self.latest_power),
                "checked_at": time.time(),
            }

        if buffer is not None:
            data["buffer_depth"] = buffer.depth
            data["buffer_dropped"] = buffer.dropped
            data["buffer_capacity"] = buffer.capacity
        return data


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
