"""
Sampling and publishing loops.

Two daemon threads share the SampleBuffer:
- sampling: every sampling_interval_seconds, read -> convert -> enqueue
- publishing: every publish_interval_seconds, drain -> publish -> ack/requeue

Shutdown is cooperative through a threading.Event that every wait observes.
"""
import logging
import threading
import time
from typing import Dict, List, Optional

from .backoff import ExponentialBackoff
from .config import Config
from .errors import (
    HardwareUnavailable,
    MalformedRequest,
    PermanentPublishError,
    PermissionDenied,
    PublishError,
    TransientPublishError,
    UnsupportedDomain,
)
from .health import HealthMonitor
from .models import CORE, Domain, Metric
from .publisher import InfluxPublisher
from .rate_converter import RateConverter
from .sample_buffer import SampleBuffer


class Scheduler:
    """
    Drives the pipeline.

    Usage:
        scheduler = Scheduler(config, collector)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        config: Config,
        collector,
        converter: Optional[RateConverter] = None,
        buffer: Optional[SampleBuffer] = None,
        publisher: Optional[InfluxPublisher] = None,
        health: Optional[HealthMonitor] = None,
        backoff: Optional[ExponentialBackoff] = None,
    ):
        self.config = config
        self.collector = collector
        self.health = health or HealthMonitor()
        self.converter = converter or RateConverter(config.conversion_ceiling_seconds)
        self.buffer = buffer or SampleBuffer(
            config.buffer_capacity,
            eviction_policy=config.eviction_policy,
            on_overflow=self.health.record_error,
        )
        self.publisher = publisher or InfluxPublisher(config)
        self.backoff = backoff or ExponentialBackoff(
            config.backoff_initial_seconds, config.backoff_max_seconds
        )

        self.domains: List[Domain] = []
        self.disabled: Dict[Domain, str] = {}
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._closed = False
        self._stop_lock = threading.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def enabled_domains(self) -> List[Domain]:
        return [d for d in self.domains if d not in self.disabled]

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def discover(self) -> List[Domain]:
        """Fix the domain set for the lifetime of the process."""
        self.domains = list(self.collector.discover_domains())
        if not self.domains:
            self.logger.warning("No energy domains discovered, nothing will be sampled")
        else:
            self.logger.info(f"Monitoring domains: {', '.join(d.id for d in self.domains)}")
        return self.domains

    def start(self) -> None:
        """Discover domains and launch the sampling and publishing threads."""
        if self._threads:
            raise RuntimeError("Scheduler already started")
        if not self.domains:
            self.discover()

        self._threads = [
            threading.Thread(target=self._run_sampling, name="SamplingThread", daemon=True),
            threading.Thread(target=self._run_publishing, name="PublishThread", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        self.logger.info(
            f"Sampling every {self.config.sampling_interval_seconds}s, "
            f"publishing every {self.config.publish_interval_seconds}s"
        )

    def request_stop(self) -> None:
        """Ask the loops to stop; safe to call from a signal handler."""
        self._stop_event.set()

    def run_forever(self) -> None:
        """Start and block until request_stop() or stop() is called."""
        self.start()
        self._stop_event.wait()

    def stop(self) -> None:
        """
        Stop ticking, flush what is left within shutdown_timeout_seconds,
        then release the publisher and collector whatever happens.
        """
        with self._stop_lock:
            if self._closed:
                return
            self._stop_event.set()
            try:
                join_timeout = self.config.request_timeout_seconds + 1.0
                for thread in self._threads:
                    if thread is threading.current_thread():
                        continue
                    thread.join(timeout=join_timeout)
                    if thread.is_alive():
                        self.logger.warning(
                            f"{thread.name} did not stop within {join_timeout}s"
                        )
                self.flush(self.config.shutdown_timeout_seconds)
            finally:
                self._closed = True
                self._release()

    # Sampling

    def sample_once(self) -> List[Metric]:
        """
        Read every enabled domain and enqueue the resulting metrics.

        Returns:
            Metrics enqueued by this tick
        """
        produced: List[Metric] = []

        for domain in self.enabled_domains:
            try:
                sample = self.collector.read(domain)
            except (PermissionDenied, UnsupportedDomain) as e:
                self._disable(domain, e)
                continue
            except HardwareUnavailable as e:
                self.logger.warning(f"Read failed, retrying next tick: {e}")
                self.health.record_error(e)
                continue

            skipped = self.converter.skipped
            metric = self.converter.update(sample)
            if self.converter.skipped != skipped:
                self.health.record_conversion_skip()
            if metric is not None:
                produced.append(metric)

        aggregate = self._core_sum(produced)
        if aggregate is not None:
            produced.append(aggregate)

        for metric in produced:
            self.buffer.enqueue(metric)
            self.health.record_metric(metric)
        return produced

    def _core_sum(self, metrics: List[Metric]) -> Optional[Metric]:
        """Total core power, only when every enabled core reported."""
        cores = [m for m in metrics if m.domain.kind == CORE]
        enabled_cores = [d for d in self.enabled_domains if d.kind == CORE]
        if not cores or len(cores) != len(enabled_cores):
            return None

        return Metric(
            domain=Domain.core_sum(),
            timestamp=max(m.timestamp for m in cores),
            power_watts=sum(m.power_watts for m in cores),
            interval_seconds=sum(m.interval_seconds for m in cores) / len(cores),
        )

    def _disable(self, domain: Domain, error: Exception) -> None:
        self.disabled[domain] = str(error)
        self.converter.reset(domain)
        self.health.record_domain_disabled(domain, str(error))
        self.health.record_error(error)
        self.logger.error(f"Disabling domain {domain} for this process: {error}")

    def _run_sampling(self) -> None:
        interval = self.config.sampling_interval_seconds
        deadline = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self.sample_once()
            except Exception as e:
                self.logger.exception(f"Sampling tick failed: {e}")
                self.health.record_error(e)

            deadline += interval
            now = time.monotonic()
            if deadline < now:
                missed = int((now - deadline) // interval) + 1
                self.logger.warning(f"Sampling overran, skipping {missed} tick(s)")
                deadline += missed * interval
            self._stop_event.wait(deadline - now)

    # Publishing

    def publish_pending(self) -> bool:
        """
        Drain the buffer batch by batch until it is empty.

        Returns:
            True when everything pending was delivered, False after a failed
            batch (already requeued and backed off) or on shutdown
        """
        while not self._stop_event.is_set():
            batch = self.buffer.drain(self.config.batch_size)
            if not batch:
                return True

            try:
                self.publisher.publish(batch)
            except TransientPublishError as e:
                self.buffer.requeue(batch)
                self.health.record_publish_failure(e)
                delay = self.backoff.next_delay(e.retry_after)
                self.logger.warning(
                    f"Publish of {len(batch)} points failed ({e}), retry in {delay:.1f}s"
                )
                self._stop_event.wait(delay)
                return False
            except MalformedRequest as e:
                # resending the same body cannot succeed
                lost = self.buffer.discard(batch)
                self.health.record_publish_failure(e)
                self.logger.error(f"❌ Dropped batch of {lost} points rejected by InfluxDB: {e}")
                continue
            except PermanentPublishError as e:
                self.buffer.requeue(batch)
                self.health.record_publish_failure(e)
                delay = self.backoff.maximum
                self.logger.error(
                    f"❌ Publish rejected ({e}); keeping {self.buffer.depth} points, "
                    f"retry in {delay:.0f}s"
                )
                self._stop_event.wait(delay)
                return False
            except Exception:
                # unexpected error from the publisher: keep the data
                self.buffer.requeue(batch)
                raise

            self.buffer.acknowledge(batch)
            self.backoff.reset()
            self.health.record_publish(len(batch))
        return False

    def _run_publishing(self) -> None:
        while not self._stop_event.is_set():
            try:
                delivered = self.publish_pending()
            except Exception as e:
                self.logger.exception(f"Publish tick failed: {e}")
                self.health.record_error(e)
                delivered = False
                self._stop_event.wait(self.backoff.next_delay())
            if delivered:
                self._stop_event.wait(self.config.publish_interval_seconds)

    # Shutdown

    def flush(self, timeout: float) -> int:
        """
        Best-effort final publish that gives up after `timeout` seconds.

        Returns:
            Number of points delivered
        """
        deadline = time.monotonic() + timeout
        delivered = 0

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            batch = self.buffer.drain(self.config.batch_size)
            if not batch:
                break
            request_timeout = min(remaining, self.config.request_timeout_seconds)
            try:
                self.publisher.publish(batch, timeout=request_timeout)
            except MalformedRequest as e:
                self.buffer.discard(batch)
                self.health.record_publish_failure(e)
                self.logger.error(f"❌ Dropped batch rejected by InfluxDB: {e}")
                continue
            except PublishError as e:
                self.buffer.requeue(batch)
                self.health.record_publish_failure(e)
                self.logger.warning(f"Final flush failed: {e}")
                break
            except Exception as e:
                self.buffer.requeue(batch)
                self.logger.exception(f"Final flush failed: {e}")
                break
            self.buffer.acknowledge(batch)
            self.health.record_publish(len(batch))
            delivered += len(batch)

        left = self.buffer.depth
        if left:
            self.logger.warning(f"Shutting down with {left} undelivered points")
        elif delivered:
            self.logger.info(f"Flushed {delivered} points on shutdown")
        return delivered

    def _release(self) -> None:
        try:
            self.publisher.close()
        except Exception as e:
            self.logger.warning(f"Closing publisher failed: {e}")
        try:
            self.collector.close()
        except Exception as e:
            self.logger.warning(f"Closing collector failed: {e}")
