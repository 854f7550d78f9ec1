"""
AMD Ryzen/EPYC collector reading RAPL energy MSRs through /dev/cpu/N/msr.

Needs the msr kernel module and root (or CAP_SYS_RAWIO).

Registers (AMD Family 17h and later):
- 0xC0010299 MSR_PWR_UNIT: bits 12:8 hold the energy status unit (ESU),
  one counter tick = 0.5 ** ESU joules
- 0xC001029A MSR_CORE_ENERGY_STAT: per-core accumulator, 32 bits
- 0xC001029B MSR_PKG_ENERGY_STAT: per-package accumulator, 32 bits
"""
import errno
import os
import struct
from pathlib import Path
from typing import Dict, List, Tuple

from .base import BaseCollector
from pipeline.errors import HardwareUnavailable, PermissionDenied, UnsupportedDomain
from pipeline.models import CORE, PACKAGE, Domain, RawSample


MSR_PWR_UNIT = 0xC0010299
MSR_CORE_ENERGY = 0xC001029A
MSR_PACKAGE_ENERGY = 0xC001029B
ENERGY_UNIT_MASK = 0x1F00
COUNTER_WIDTH_BITS = 32

MAX_CPUS = 1024
DEFAULT_CPU_ROOT = "/sys/devices/system/cpu"
DEFAULT_MSR_PATH = "/dev/cpu/{cpu}/msr"


class AmdMsrCollector(BaseCollector):
    """
    Energy counters of every package and physical core via MSR reads.

    Domains map to the first logical CPU that belongs to them; SMT siblings
    share the same core counter and are skipped.
    """

    def __init__(self, config, cpu_root: str = DEFAULT_CPU_ROOT,
                 msr_path: str = DEFAULT_MSR_PATH):
        super().__init__(config)
        self.cpu_root = Path(cpu_root)
        self.msr_path = msr_path
        self.per_core = getattr(config, "per_core", True)

        self._cpu_of: Dict[Domain, int] = {}
        self._package_of: Dict[Domain, int] = {}
        self._fds: Dict[int, int] = {}
        self._energy_units: Dict[int, float] = {}

    def discover_domains(self) -> List[Domain]:
        """
        Walk /sys/devices/system/cpu/cpuN/topology until the first gap.

        Returns:
            Package domains, then core domains numbered in CPU order
        """
        packages: Dict[int, int] = {}
        cores: Dict[Tuple[int, int], int] = {}

        for cpu in range(MAX_CPUS):
            topology = self.cpu_root / f"cpu{cpu}" / "topology"
            try:
                package_id = int((topology / "physical_package_id").read_text().strip())
                core_id = int((topology / "core_id").read_text().strip())
            except FileNotFoundError:
                break
            except (OSError, ValueError) as e:
                self.logger.warning(f"Skipping cpu{cpu}: unreadable topology ({e})")
                continue

            packages.setdefault(package_id, cpu)
            cores.setdefault((package_id, core_id), cpu)

        self._cpu_of.clear()
        self._package_of.clear()

        domains = []
        for package_id in sorted(packages):
            domain = Domain.package(package_id)
            self._cpu_of[domain] = packages[package_id]
            self._package_of[domain] = package_id
            domains.append(domain)

        if self.per_core:
            by_cpu = sorted(cores.items(), key=lambda item: item[1])
            for index, ((package_id, _), cpu) in enumerate(by_cpu):
                domain = Domain.core(index)
                self._cpu_of[domain] = cpu
                self._package_of[domain] = package_id
                domains.append(domain)

        self.logger.info(
            f"Detected {len(packages)} package(s), {len(cores)} physical core(s)"
        )
        return domains

    def read(self, domain: Domain) -> RawSample:
        cpu = self._cpu_of.get(domain)
        if cpu is None or domain.kind not in (PACKAGE, CORE):
            raise UnsupportedDomain(domain, "no MSR counter for this domain")

        register = MSR_PACKAGE_ENERGY if domain.kind == PACKAGE else MSR_CORE_ENERGY
        fd = self._open(domain, cpu)
        unit = self._energy_unit(domain, fd)

        raw = self._read_msr(domain, fd, register)
        monotonic, wall_ns = self._timestamps()

        return RawSample(
            domain=domain,
            timestamp=monotonic,
            raw_energy_counter=raw & ((1 << COUNTER_WIDTH_BITS) - 1),
            counter_width_bits=COUNTER_WIDTH_BITS,
            energy_unit_joules=unit,
            wall_time_ns=wall_ns,
        )

    def close(self) -> None:
        for cpu, fd in list(self._fds.items()):
            try:
                os.close(fd)
            except OSError as e:
                self.logger.debug(f"Closing msr fd of cpu{cpu} failed: {e}")
        self._fds.clear()

    def _open(self, domain: Domain, cpu: int) -> int:
        fd = self._fds.get(cpu)
        if fd is not None:
            return fd

        path = self.msr_path.format(cpu=cpu)
        try:
            fd = os.open(path, os.O_RDONLY)
        except PermissionError as e:
            raise PermissionDenied(domain, f"cannot open {path}: {e}") from e
        except FileNotFoundError as e:
            raise HardwareUnavailable(
                domain, f"{path} not found, is the msr kernel module loaded?"
            ) from e
        except OSError as e:
            raise HardwareUnavailable(domain, f"cannot open {path}: {e}") from e

        self._fds[cpu] = fd
        return fd

    def _energy_unit(self, domain: Domain, fd: int) -> float:
        package_id = self._package_of[domain]
        unit = self._energy_units.get(package_id)
        if unit is None:
            units = self._read_msr(domain, fd, MSR_PWR_UNIT)
            esu = (units & ENERGY_UNIT_MASK) >> 8
            unit = 0.5 ** esu
            self._energy_units[package_id] = unit
            self.logger.info(f"Package {package_id} energy unit: {unit:.3e} J (ESU={esu})")
        return unit

    def _read_msr(self, domain: Domain, fd: int, register: int) -> int:
        try:
            data = os.pread(fd, 8, register)
        except OSError as e:
            if e.errno in (errno.EACCES, errno.EPERM):
                raise PermissionDenied(domain, f"MSR {register:#x} read denied") from e
            if e.errno == errno.EIO:
                raise UnsupportedDomain(
                    domain, f"MSR {register:#x} not implemented by this CPU"
                ) from e
            raise HardwareUnavailable(domain, f"MSR {register:#x} read failed: {e}") from e

        if len(data) != 8:
            raise HardwareUnavailable(
                domain, f"short MSR read ({len(data)} bytes) from {register:#x}"
            )
        return struct.unpack("<Q", data)[0]
