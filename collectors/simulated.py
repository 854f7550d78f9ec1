"""
Simulated collector for machines without MSR or powercap access.
Counters advance at a constant power so the whole pipeline can be run
and tested end to end.
"""
import time
from typing import Callable, List, Optional

from .base import BaseCollector
from pipeline.errors import UnsupportedDomain
from pipeline.models import PACKAGE, Domain, RawSample


COUNTER_WIDTH_BITS = 32
ENERGY_UNIT_JOULES = 1.0 / 65536  # ESU=16, typical for Zen


class SimulatedCollector(BaseCollector):
    """
    Synthetic 32-bit energy counters.

    Config keys (section `simulated`):
    - packages: number of packages (default 1)
    - cores: physical cores per package (default 4)
    - package_watts: constant package power (default 45.0)
    - core_watts: constant power per core (default 6.0)
    """

    def __init__(self, config, clock: Optional[Callable[[], float]] = None):
        super().__init__(config)
        options = getattr(config, "simulated", None) or {}
        self.packages = int(options.get("packages", 1))
        self.cores = int(options.get("cores", 4))
        self.package_watts = float(options.get("package_watts", 45.0))
        self.core_watts = float(options.get("core_watts", 6.0))
        self.per_core = getattr(config, "per_core", True)
        self._clock = clock or time.monotonic
        self._origin = self._clock()
        self._domains: List[Domain] = []

    def discover_domains(self) -> List[Domain]:
        self._domains = [Domain.package(i) for i in range(self.packages)]
        if self.per_core:
            self._domains += [Domain.core(i) for i in range(self.packages * self.cores)]
        self.logger.info(f"Simulating {len(self._domains)} domains")
        return list(self._domains)

    def read(self, domain: Domain) -> RawSample:
        if domain not in self._domains:
            raise UnsupportedDomain(domain, "not simulated")

        now = self._clock()
        watts = self.package_watts if domain.kind == PACKAGE else self.core_watts
        joules = watts * (now - self._origin)
        raw = int(joules / ENERGY_UNIT_JOULES) % (1 << COUNTER_WIDTH_BITS)

        return RawSample(
            domain=domain,
            timestamp=now,
            raw_energy_counter=raw,
            counter_width_bits=COUNTER_WIDTH_BITS,
            energy_unit_joules=ENERGY_UNIT_JOULES,
            wall_time_ns=time.time_ns(),
        )
