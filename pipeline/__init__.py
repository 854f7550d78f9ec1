"""
Sampling, conversion, buffering and publishing of CPU energy telemetry.
"""
from .config import Config
from .errors import ConfigurationInvalid
from .health import HealthMonitor
from .models import BufferEntry, Domain, Metric, PublishBatch, RawSample
from .publisher import InfluxPublisher
from .rate_converter import RateConverter
from .sample_buffer import SampleBuffer
from .scheduler import Scheduler


__all__ = [
    "BufferEntry",
    "Config",
    "ConfigurationInvalid",
    "Domain",
    "HealthMonitor",
    "InfluxPublisher",
    "Metric",
    "PublishBatch",
    "RateConverter",
    "RawSample",
    "SampleBuffer",
    "Scheduler",
]
