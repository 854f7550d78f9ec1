"""
Bounded, ordered queue of metric points awaiting delivery.

Shared between the sampling and publishing threads. Every operation holds
the lock only for in-memory bookkeeping; overflow callbacks run after the
lock is released.
"""
import itertools
import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict, List, Optional

from .errors import BufferOverflow
from .models import BufferEntry, Metric, PublishBatch


DROP_OLDEST = "drop_oldest"
DROP_NEWEST = "drop_newest"


class SampleBuffer:
    """
    FIFO buffer with in-flight tracking and overflow eviction.

    Entries move from the pending queue into the in-flight table on drain().
    acknowledge() discards them; requeue() puts them back at the front in
    their original order; discard() drops them as lost.

    Capacity bounds pending and in-flight entries together. In-flight
    entries are never evicted.
    """

    def __init__(
        self,
        capacity: int,
        eviction_policy: str = DROP_OLDEST,
        on_overflow: Optional[Callable[[BufferOverflow], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            capacity: Maximum number of entries held, pending or in flight
            eviction_policy: "drop_oldest" or "drop_newest"
            on_overflow: Called with a BufferOverflow after entries are dropped
            clock: Monotonic clock used for first_enqueued_at
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if eviction_policy not in (DROP_OLDEST, DROP_NEWEST):
            raise ValueError(f"Unknown eviction policy: {eviction_policy}")

        self.capacity = capacity
        self.eviction_policy = eviction_policy
        self.on_overflow = on_overflow
        self._clock = clock
        self._pending: Deque[BufferEntry] = deque()
        self._in_flight: Dict[int, PublishBatch] = {}
        self._in_flight_count = 0
        self._batch_ids = itertools.count(1)
        self._dropped = 0
        self._lock = Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def enqueue(self, metric: Metric) -> None:
        """Append a metric, dropping one entry if the buffer is full."""
        entry = BufferEntry(metric=metric, first_enqueued_at=self._clock())

        with self._lock:
            full = len(self._pending) + self._in_flight_count >= self.capacity
            if full:
                self._dropped += 1
                total = self._dropped
                # with everything in flight there is nothing older to evict
                if self.eviction_policy == DROP_OLDEST and self._pending:
                    self._pending.popleft()
                    self._pending.append(entry)
            else:
                self._pending.append(entry)

        if full:
            self._report_overflow(1, total)

    def drain(self, max_batch_size: int) -> PublishBatch:
        """
        Take up to `max_batch_size` of the oldest pending entries.

        Returns:
            PublishBatch, empty when nothing is pending. Empty batches are
            not tracked and need no acknowledge/requeue.
        """
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")

        with self._lock:
            count = min(max_batch_size, len(self._pending))
            if count == 0:
                return PublishBatch(batch_id=0)
            entries = tuple(self._pending.popleft() for _ in range(count))
            batch = PublishBatch(batch_id=next(self._batch_ids), entries=entries)
            self._in_flight[batch.batch_id] = batch
            self._in_flight_count += count
        return batch

    def acknowledge(self, batch: PublishBatch) -> None:
        """Discard a delivered batch."""
        if not batch:
            return
        with self._lock:
            settled = self._settle_locked(batch)
        if settled is None:
            self.logger.warning(f"Acknowledge of unknown batch {batch.batch_id} ignored")

    def discard(self, batch: PublishBatch) -> int:
        """
        Drop a batch that can never be delivered and count it as lost.

        Returns:
            Number of entries dropped
        """
        if not batch:
            return 0
        with self._lock:
            settled = self._settle_locked(batch)
            if settled is None:
                self.logger.warning(f"Discard of unknown batch {batch.batch_id} ignored")
                return 0
            self._dropped += len(settled)
            total = self._dropped

        self.logger.warning(f"Dropped {len(settled)} undeliverable points, {total} lost in total")
        return len(settled)

    def requeue(self, batch: PublishBatch) -> None:
        """
        Return a failed batch to the front of the queue.

        Entries keep their relative order and get retry_count incremented.
        They were counted against capacity while in flight, so nothing is
        evicted here.
        """
        if not batch:
            return

        with self._lock:
            settled = self._settle_locked(batch)
            if settled is not None:
                for entry in reversed(settled.entries):
                    entry.retry_count += 1
                    self._pending.appendleft(entry)

        if settled is None:
            self.logger.warning(f"Requeue of unknown batch {batch.batch_id} ignored")

    def snapshot(self) -> List[Metric]:
        """Pending metrics, oldest first."""
        with self._lock:
            return [entry.metric for entry in self._pending]

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight_count

    @property
    def depth(self) -> int:
        """Entries not yet delivered: pending plus in flight."""
        with self._lock:
            return len(self._pending) + self._in_flight_count

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        return self.pending

    def _settle_locked(self, batch: PublishBatch) -> Optional[PublishBatch]:
        settled = self._in_flight.pop(batch.batch_id, None)
        if settled is not None:
            self._in_flight_count -= len(settled)
        return settled

    def _report_overflow(self, dropped: int, total: int) -> None:
        overflow = BufferOverflow(dropped, total, self.eviction_policy)
        self.logger.warning(str(overflow))
        if self.on_overflow:
            self.on_overflow(overflow)
