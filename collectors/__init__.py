"""
Collector factory for loading the energy counter backend.
"""
from .base import BaseCollector
from pipeline.errors import ConfigurationInvalid


def get_collector(backend: str, config) -> BaseCollector:
    """
    Factory function to get the collector for a counter backend.

    Args:
        backend: Backend name ("msr", "powercap", "simulated")
        config: Validated pipeline Config

    Returns:
        Initialized collector instance

    Raises:
        ConfigurationInvalid: If backend is not supported
    """
    backend = backend.lower()

    if backend == "msr":
        from .amd_msr import AmdMsrCollector
        return AmdMsrCollector(config)

    elif backend == "powercap":
        from .powercap import PowercapCollector
        return PowercapCollector(config)

    elif backend == "simulated":
        from .simulated import SimulatedCollector
        return SimulatedCollector(config)

    else:
        raise ConfigurationInvalid(
            f"Unsupported backend: {backend}. "
            f"Supported backends: msr, powercap, simulated",
            field="backend",
        )


__all__ = ["BaseCollector", "get_collector"]
