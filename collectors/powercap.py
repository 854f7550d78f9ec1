"""
Powercap collector reading package energy from the Linux RAPL sysfs tree.

AMD Zen CPUs are exposed under the intel-rapl name by the kernel's
intel_rapl_msr driver:
/sys/class/powercap/intel-rapl:0/energy_uj
/sys/class/powercap/intel-rapl:0/max_energy_range_uj
"""
from pathlib import Path
from typing import Dict, List

from .base import BaseCollector
from pipeline.errors import HardwareUnavailable, PermissionDenied, UnsupportedDomain
from pipeline.models import PACKAGE, Domain, RawSample


DEFAULT_POWERCAP_ROOT = "/sys/class/powercap"
MICROJOULE = 1e-6


class PowercapCollector(BaseCollector):
    """
    Package-level counters in microjoules. No per-core domains.

    The kernel counter wraps at max_energy_range_uj, which is not a power
    of two, so samples carry an explicit wrap modulus.
    """

    def __init__(self, config, root: str = DEFAULT_POWERCAP_ROOT):
        super().__init__(config)
        self.root = Path(root)
        self._zones: Dict[Domain, Path] = {}
        self._ranges: Dict[Domain, int] = {}

    def discover_domains(self) -> List[Domain]:
        self._zones.clear()
        self._ranges.clear()

        for zone in sorted(self.root.glob("intel-rapl:*")):
            # Top-level zones only: intel-rapl:0, not intel-rapl:0:0
            if zone.name.count(":") != 1 or not (zone / "energy_uj").exists():
                continue

            name_file = zone / "name"
            name = name_file.read_text().strip() if name_file.exists() else zone.name
            if not name.startswith("package"):
                continue

            try:
                index = int(name.rsplit("-", 1)[-1])
            except ValueError:
                index = int(zone.name.split(":")[1])

            domain = Domain.package(index)
            self._zones[domain] = zone
            max_file = zone / "max_energy_range_uj"
            try:
                self._ranges[domain] = int(max_file.read_text().strip()) + 1
            except (OSError, ValueError):
                # 32-bit counter of microjoules as a fallback
                self._ranges[domain] = 1 << 32

            self.logger.info(f"Found powercap zone {zone} ({name})")

        if not self._zones:
            self.logger.warning(f"No readable RAPL package zones under {self.root}")
        return sorted(self._zones)

    def read(self, domain: Domain) -> RawSample:
        zone = self._zones.get(domain)
        if zone is None or domain.kind != PACKAGE:
            raise UnsupportedDomain(domain, "no powercap zone for this domain")

        energy_file = zone / "energy_uj"
        try:
            text = energy_file.read_text()
        except PermissionError as e:
            # energy_uj is root-only on kernels patched for CVE-2020-8694
            raise PermissionDenied(domain, f"cannot read {energy_file}: {e}") from e
        except OSError as e:
            raise HardwareUnavailable(domain, f"cannot read {energy_file}: {e}") from e
        monotonic, wall_ns = self._timestamps()

        try:
            raw = int(text.strip())
        except ValueError as e:
            raise HardwareUnavailable(domain, f"garbage in {energy_file}: {text!r}") from e

        modulus = self._ranges[domain]
        return RawSample(
            domain=domain,
            timestamp=monotonic,
            raw_energy_counter=raw,
            counter_width_bits=(modulus - 1).bit_length(),
            energy_unit_joules=MICROJOULE,
            wall_time_ns=wall_ns,
            wrap_modulus=modulus,
        )
