"""
Base collector abstract class for energy counter reads.
"""
from abc import ABC, abstractmethod
from typing import List
import logging
import time

from pipeline.models import Domain, RawSample


class BaseCollector(ABC):
    """
    Abstract base class for all energy counter backends.
    Each backend must implement discover_domains() and read().
    """

    def __init__(self, config):
        """
        Initialize collector with configuration.

        Args:
            config: Validated pipeline Config
        """
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def discover_domains(self) -> List[Domain]:
        """
        Return the domains this machine exposes.

        Called once at startup; the result is not changed at runtime.

        Returns:
            List of Domain, packages first.
            Example: [Domain.package(0), Domain.core(0), Domain.core(1)]
        """
        pass

    @abstractmethod
    def read(self, domain: Domain) -> RawSample:
        """
        Read the energy accumulator of one domain.

        Returns:
            RawSample with the counter and a timestamp taken right after it

        Raises:
            HardwareUnavailable: Counter could not be read this time
            PermissionDenied: Counter is not readable by this process
            UnsupportedDomain: Backend has no such counter
        """
        pass

    def close(self) -> None:
        """Release open handles. Safe to call more than once."""
        pass

    @staticmethod
    def _timestamps():
        """Monotonic seconds and epoch nanoseconds, read back to back."""
        return time.monotonic(), time.time_ns()
