"""
Validated configuration record consumed by the pipeline.

The loader (config_loader.py) turns a YAML file into a plain dict; this
module checks it and fills in defaults. Connection credentials are never
defaulted.
"""
import math
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .errors import ConfigurationInvalid


EVICTION_POLICIES = ("drop_oldest", "drop_newest")
BACKENDS = ("msr", "powercap", "simulated")
AUTH_SCHEMES = ("Token", "Bearer")

DEFAULT_SAMPLING_INTERVAL = 10.0
DEFAULT_PUBLISH_INTERVAL = 10.0
DEFAULT_BUFFER_CAPACITY = 10000


@dataclass(frozen=True)
class Config:
    influxdb_host: str
    organization: str
    token: str = field(repr=False)
    bucket: str
    sampling_interval_seconds: float = DEFAULT_SAMPLING_INTERVAL
    publish_interval_seconds: float = DEFAULT_PUBLISH_INTERVAL
    buffer_capacity: int = DEFAULT_BUFFER_CAPACITY
    batch_size: int = 500
    request_timeout_seconds: float = 5.0
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    max_interval_seconds: Optional[float] = None
    shutdown_timeout_seconds: float = 5.0
    eviction_policy: str = "drop_oldest"
    backend: str = "msr"
    per_core: bool = True
    measurement: str = "power"
    tags: Dict[str, str] = field(default_factory=dict)
    auth_scheme: str = "Token"
    health_port: Optional[int] = 9101
    metrics_port: Optional[int] = 9100
    simulated: Dict[str, Any] = field(default_factory=dict)

    @property
    def conversion_ceiling_seconds(self) -> float:
        """Longest interval still accepted as a valid sampling window."""
        if self.max_interval_seconds is not None:
            return self.max_interval_seconds
        return max(5 * self.sampling_interval_seconds, 60.0)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Config":
        """
        Build a Config from a parsed config file.

        Args:
            raw: Dictionary with an `influxdb` section and optional
                 top-level tuning keys

        Returns:
            Validated Config

        Raises:
            ConfigurationInvalid: If a required field is missing or any
                                  field has the wrong type or range
        """
        if not isinstance(raw, dict):
            raise ConfigurationInvalid("config must be a mapping")

        influx = raw.get("influxdb")
        if not isinstance(influx, dict):
            raise ConfigurationInvalid("section is missing", field="influxdb")

        host = _required_str(influx, "host", "influxdb.host")
        parsed = urlparse(host)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationInvalid(
                f"expected an http(s) URL, got {host!r}", field="influxdb.host"
            )

        sampling = _positive_number(raw, "sampling_interval_seconds", DEFAULT_SAMPLING_INTERVAL)

        tags = raw.get("tags")
        if tags is None:
            tags = {"host": socket.gethostname(), "service": "ryzen-rapl"}
        elif not isinstance(tags, dict):
            raise ConfigurationInvalid("must be a mapping", field="tags")
        tags = {str(k): str(v) for k, v in tags.items()}

        simulated = raw.get("simulated") or {}
        if not isinstance(simulated, dict):
            raise ConfigurationInvalid("must be a mapping", field="simulated")

        max_interval = raw.get("max_interval_seconds")
        if max_interval is not None:
            max_interval = _positive_number(raw, "max_interval_seconds", None)
            if max_interval <= sampling:
                raise ConfigurationInvalid(
                    "must be larger than sampling_interval_seconds",
                    field="max_interval_seconds",
                )

        return cls(
            influxdb_host=host.rstrip("/"),
            organization=_required_str(influx, "org", "influxdb.org"),
            token=_required_str(influx, "token", "influxdb.token"),
            bucket=_required_str(influx, "bucket", "influxdb.bucket"),
            sampling_interval_seconds=sampling,
            publish_interval_seconds=_positive_number(
                raw, "publish_interval_seconds", DEFAULT_PUBLISH_INTERVAL
            ),
            buffer_capacity=_positive_int(raw, "buffer_capacity", DEFAULT_BUFFER_CAPACITY),
            batch_size=_positive_int(raw, "batch_size", 500),
            request_timeout_seconds=_positive_number(raw, "request_timeout_seconds", 5.0),
            backoff_initial_seconds=_positive_number(raw, "backoff_initial_seconds", 1.0),
            backoff_max_seconds=_positive_number(raw, "backoff_max_seconds", 60.0),
            max_interval_seconds=max_interval,
            shutdown_timeout_seconds=_positive_number(raw, "shutdown_timeout_seconds", 5.0),
            eviction_policy=_choice(raw, "eviction_policy", EVICTION_POLICIES, "drop_oldest"),
            backend=_choice(raw, "backend", BACKENDS, "msr"),
            per_core=_bool(raw, "per_core", True),
            measurement=_optional_str(raw, "measurement", "power"),
            tags=tags,
            auth_scheme=_choice(influx, "auth_scheme", AUTH_SCHEMES, "Token"),
            health_port=_port(raw, "health_port", 9101),
            metrics_port=_port(raw, "metrics_port", 9100),
            simulated=dict(simulated),
        )


def _required_str(section: Dict[str, Any], key: str, name: str) -> str:
    value = section.get(key)
    if value is None:
        raise ConfigurationInvalid("is required", field=name)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationInvalid("must be a non-empty string", field=name)
    return value.strip()


def _optional_str(section: Dict[str, Any], key: str, default: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigurationInvalid("must be a non-empty string", field=key)
    return value


def _positive_number(section: Dict[str, Any], key: str, default):
    value = section.get(key)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationInvalid(f"expected a number, got {value!r}", field=key)
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationInvalid(f"must be a finite positive number, got {value!r}", field=key)
    return float(value)


def _positive_int(section: Dict[str, Any], key: str, default: int) -> int:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationInvalid(f"expected an integer, got {value!r}", field=key)
    if value <= 0:
        raise ConfigurationInvalid(f"must be positive, got {value!r}", field=key)
    return value


def _port(section: Dict[str, Any], key: str, default: int) -> Optional[int]:
    if key in section and section[key] is None:
        return None
    value = _positive_int(section, key, default)
    if value > 65535:
        raise ConfigurationInvalid(f"not a valid port: {value}", field=key)
    return value


def _bool(section: Dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationInvalid(f"expected true/false, got {value!r}", field=key)
    return value


def _choice(section: Dict[str, Any], key: str, choices, default: str) -> str:
    value = section.get(key, default)
    if value not in choices:
        raise ConfigurationInvalid(
            f"expected one of {', '.join(choices)}, got {value!r}", field=key
        )
    return value
