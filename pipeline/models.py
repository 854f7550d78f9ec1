"""
Data model shared by collectors and the pipeline.
"""
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple


PACKAGE = "package"
CORE = "core"
CORE_SUM = "cores"


@dataclass(frozen=True, order=True)
class Domain:
    """
    Identity of a monitored energy counter.

    The set of domains is fixed at startup from collector discovery.
    """

    kind: str
    index: int = 0

    @classmethod
    def package(cls, index: int) -> "Domain":
        return cls(PACKAGE, index)

    @classmethod
    def core(cls, index: int) -> "Domain":
        return cls(CORE, index)

    @classmethod
    def core_sum(cls) -> "Domain":
        return cls(CORE_SUM, 0)

    @property
    def id(self) -> str:
        """Stable identifier used as the `domain` tag, e.g. package0, core3."""
        if self.kind == CORE_SUM:
            return CORE_SUM
        return f"{self.kind}{self.index}"

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class RawSample:
    """
    One read of a hardware energy accumulator.

    Attributes:
        domain: Domain the counter belongs to
        timestamp: Monotonic clock reading (seconds) taken with the counter
        raw_energy_counter: Unsigned counter value in hardware units
        counter_width_bits: Counter width, it wraps at 2**bits
        energy_unit_joules: Joules per counter unit
        wall_time_ns: Epoch nanoseconds captured with the counter
        wrap_modulus: Wrap range when the hardware does not wrap at 2**bits
    """

    domain: Domain
    timestamp: float
    raw_energy_counter: int
    counter_width_bits: int
    energy_unit_joules: float = 1.0
    wall_time_ns: int = 0
    wrap_modulus: Optional[int] = None

    @property
    def modulus(self) -> int:
        if self.wrap_modulus:
            return self.wrap_modulus
        return 1 << self.counter_width_bits


@dataclass(frozen=True)
class Metric:
    """Average power of a domain over one sampling interval."""

    domain: Domain
    timestamp: int
    power_watts: float
    interval_seconds: float


@dataclass
class BufferEntry:
    """A metric waiting for delivery, owned by the sample buffer."""

    metric: Metric
    first_enqueued_at: float
    retry_count: int = 0


@dataclass(frozen=True)
class PublishBatch:
    """Ordered snapshot of buffer entries for a single write attempt."""

    batch_id: int
    entries: Tuple[BufferEntry, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[BufferEntry]:
        return iter(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    @property
    def metrics(self) -> Tuple[Metric, ...]:
        return tuple(entry.metric for entry in self.entries)
