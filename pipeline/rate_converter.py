"""
Turns successive raw energy counter reads into average power.
"""
import logging
import math
from typing import Dict, Optional

from .errors import ConversionAnomaly
from .models import Domain, Metric, RawSample


class RateConverter:
    """
    Differentiates energy counters into watts.

    Keeps the previous sample of every domain in an explicit map; that map is
    the only mutable state of the converter. A conversion that cannot yield a
    valid rate is skipped (returns None), logged and counted, never raised.
    """

    def __init__(self, max_interval_seconds: float):
        """
        Args:
            max_interval_seconds: Longest elapsed time accepted between two
                                  samples; anything longer means a missed
                                  sampling window
        """
        self.max_interval_seconds = max_interval_seconds
        self.skipped = 0
        self._previous: Dict[Domain, RawSample] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def convert(self, previous: Optional[RawSample], current: RawSample) -> Optional[Metric]:
        """
        Compute the average power between two samples of one domain.

        Args:
            previous: Earlier sample, None on the first tick
            current: Latest sample

        Returns:
            Metric, or None when the pair has to be skipped
        """
        if previous is None:
            self.logger.debug(f"Baseline established for {current.domain}")
            return None

        try:
            return self._rate(previous, current)
        except ConversionAnomaly as e:
            self.skipped += 1
            self.logger.warning(f"Skipping {current.domain}: {e}")
            return None

    def update(self, sample: RawSample) -> Optional[Metric]:
        """
        Convert against the stored baseline and make `sample` the new one.

        Args:
            sample: Latest raw sample of its domain

        Returns:
            Metric, or None when skipped
        """
        previous = self._previous.get(sample.domain)
        self._previous[sample.domain] = sample
        return self.convert(previous, sample)

    def reset(self, domain: Optional[Domain] = None) -> None:
        """Forget the baseline of one domain, or of all domains."""
        if domain is None:
            self._previous.clear()
        else:
            self._previous.pop(domain, None)

    def _rate(self, previous: RawSample, current: RawSample) -> Metric:
        if previous.domain != current.domain:
            raise ConversionAnomaly(
                f"domain mismatch ({previous.domain} vs {current.domain})"
            )
        if previous.modulus != current.modulus:
            raise ConversionAnomaly("counter width changed between samples")

        elapsed = current.timestamp - previous.timestamp
        if not elapsed > 0:
            raise ConversionAnomaly(f"non-positive elapsed time ({elapsed:.6f}s)")
        if elapsed > self.max_interval_seconds:
            raise ConversionAnomaly(
                f"interval {elapsed:.1f}s exceeds {self.max_interval_seconds:.1f}s, "
                f"sampling window missed"
            )

        # modular subtraction covers counter wraparound
        delta = (current.raw_energy_counter - previous.raw_energy_counter) % current.modulus
        power = delta * current.energy_unit_joules / elapsed

        if not math.isfinite(power) or power < 0:
            raise ConversionAnomaly(f"invalid power value {power!r}")

        return Metric(
            domain=current.domain,
            timestamp=current.wall_time_ns,
            power_watts=power,
            interval_seconds=elapsed,
        )
