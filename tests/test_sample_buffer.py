"""Tests for the bounded sample buffer."""

from __future__ import annotations

import threading

import pytest

from helpers import make_metric
from pipeline.errors import BufferOverflow
from pipeline.models import Domain
from pipeline.sample_buffer import SampleBuffer


def timestamps(buffer: SampleBuffer) -> list[int]:
    return [metric.timestamp for metric in buffer.snapshot()]


class TestCapacity:
    """Overflow and eviction."""

    def test_six_into_five_keeps_most_recent(self) -> None:
        """capacity=5 with six metrics holds the five newest, one lost."""
        overflows: list[BufferOverflow] = []
        buffer = SampleBuffer(5, on_overflow=overflows.append)

        for ts in range(1, 7):
            buffer.enqueue(make_metric(ts))

        assert timestamps(buffer) == [2, 3, 4, 5, 6]
        assert buffer.dropped == 1
        assert len(overflows) == 1
        assert overflows[0].dropped == 1

    def test_never_exceeds_capacity(self) -> None:
        buffer = SampleBuffer(3)
        for ts in range(50):
            buffer.enqueue(make_metric(ts))
            assert len(buffer) <= 3

        assert buffer.dropped == 47
        assert timestamps(buffer) == [47, 48, 49]

    def test_drop_newest_policy(self) -> None:
        """drop_newest keeps the start of the outage instead."""
        buffer = SampleBuffer(2, eviction_policy="drop_newest")
        for ts in (1, 2, 3, 4):
            buffer.enqueue(make_metric(ts))

        assert timestamps(buffer) == [1, 2]
        assert buffer.dropped == 2

    def test_invalid_arguments(self) -> None:
        with pytest.raises(ValueError):
            SampleBuffer(0)
        with pytest.raises(ValueError):
            SampleBuffer(5, eviction_policy="drop_random")


class TestDrainCycle:
    """drain / acknowledge / requeue."""

    @pytest.fixture
    def buffer(self) -> SampleBuffer:
        buffer = SampleBuffer(10)
        for ts in range(1, 6):
            buffer.enqueue(make_metric(ts))
        return buffer

    def test_drain_takes_oldest_first(self, buffer: SampleBuffer) -> None:
        batch = buffer.drain(3)

        assert [m.timestamp for m in batch.metrics] == [1, 2, 3]
        assert buffer.pending == 2
        assert buffer.in_flight == 3
        assert buffer.depth == 5

    def test_acknowledge_removes_exactly_drained(self, buffer: SampleBuffer) -> None:
        batch = buffer.drain(3)
        buffer.acknowledge(batch)

        assert timestamps(buffer) == [4, 5]
        assert buffer.depth == 2
        assert buffer.dropped == 0

    def test_requeue_restores_original_order(self, buffer: SampleBuffer) -> None:
        batch = buffer.drain(3)
        buffer.requeue(batch)

        assert timestamps(buffer) == [1, 2, 3, 4, 5]
        assert buffer.in_flight == 0
        assert all(entry.retry_count == 1 for entry in batch)

    def test_requeue_goes_before_newer_entries(self, buffer: SampleBuffer) -> None:
        batch = buffer.drain(5)
        buffer.enqueue(make_metric(6))
        buffer.requeue(batch)

        assert timestamps(buffer) == [1, 2, 3, 4, 5, 6]

    def test_repeated_failures_count_retries(self, buffer: SampleBuffer) -> None:
        for _ in range(3):
            buffer.requeue(buffer.drain(2))

        batch = buffer.drain(2)
        assert [entry.retry_count for entry in batch] == [3, 3]

    def test_in_flight_entries_count_against_capacity(self) -> None:
        buffer = SampleBuffer(3)
        for ts in (1, 2, 3):
            buffer.enqueue(make_metric(ts))
        batch = buffer.drain(2)
        buffer.enqueue(make_metric(4))

        assert buffer.depth == 3
        assert buffer.dropped == 1

        buffer.requeue(batch)

        assert timestamps(buffer) == [1, 2, 4]
        assert buffer.depth == 3

    def test_full_of_in_flight_drops_incoming(self) -> None:
        buffer = SampleBuffer(2)
        buffer.enqueue(make_metric(1))
        buffer.enqueue(make_metric(2))
        batch = buffer.drain(2)

        buffer.enqueue(make_metric(3))

        assert buffer.depth == 2
        assert buffer.dropped == 1
        buffer.acknowledge(batch)
        assert buffer.depth == 0

    @pytest.mark.parametrize("policy", ["drop_oldest", "drop_newest"])
    def test_depth_never_exceeds_capacity(self, policy: str) -> None:
        buffer = SampleBuffer(5, eviction_policy=policy)
        for ts in range(30):
            buffer.enqueue(make_metric(ts))
            if ts % 4 == 0:
                batch = buffer.drain(3)
                buffer.enqueue(make_metric(ts))
                assert buffer.depth <= 5
                buffer.requeue(batch)
            assert buffer.depth <= 5

    def test_discard_counts_batch_as_lost(self, buffer: SampleBuffer) -> None:
        batch = buffer.drain(2)

        assert buffer.discard(batch) == 2
        assert buffer.dropped == 2
        assert buffer.in_flight == 0
        assert timestamps(buffer) == [3, 4, 5]
        assert buffer.discard(batch) == 0

    def test_empty_drain(self) -> None:
        buffer = SampleBuffer(3)
        batch = buffer.drain(10)

        assert not batch
        assert len(batch) == 0
        buffer.acknowledge(batch)
        buffer.requeue(batch)
        assert buffer.depth == 0

    def test_settling_a_batch_twice_is_ignored(self, buffer: SampleBuffer) -> None:
        batch = buffer.drain(2)
        buffer.acknowledge(batch)
        buffer.acknowledge(batch)
        buffer.requeue(batch)

        assert timestamps(buffer) == [3, 4, 5]

    def test_drain_rejects_non_positive_size(self, buffer: SampleBuffer) -> None:
        with pytest.raises(ValueError):
            buffer.drain(0)


def test_per_domain_order_survives_failures() -> None:
    """Drained batches stay in non-decreasing timestamp order per domain."""
    buffer = SampleBuffer(100)
    domains = [Domain.package(0), Domain.core(0)]
    for ts in range(20):
        buffer.enqueue(make_metric(ts, domain=domains[ts % 2]))

    delivered = []
    attempt = 0
    while buffer.depth:
        batch = buffer.drain(3)
        attempt += 1
        if attempt % 2:
            buffer.requeue(batch)
        else:
            buffer.acknowledge(batch)
            delivered.extend(batch.metrics)

    for domain in domains:
        series = [m.timestamp for m in delivered if m.domain == domain]
        assert series == sorted(series)
        assert len(series) == 10


def test_concurrent_enqueue_and_drain_accounting() -> None:
    """Every enqueued metric ends up delivered, pending or dropped."""
    buffer = SampleBuffer(50)
    total = 2000
    delivered: list[int] = []
    done = threading.Event()

    def produce() -> None:
        for ts in range(total):
            buffer.enqueue(make_metric(ts))
        done.set()

    def consume() -> None:
        while not done.is_set() or buffer.pending:
            batch = buffer.drain(7)
            if batch:
                buffer.acknowledge(batch)
                delivered.extend(batch.metrics)

    producer = threading.Thread(target=produce)
    consumer = threading.Thread(target=consume)
    producer.start()
    consumer.start()
    producer.join()
    consumer.join()

    assert len(delivered) + buffer.dropped + buffer.depth == total
    assert [m.timestamp for m in delivered] == sorted(m.timestamp for m in delivered)
