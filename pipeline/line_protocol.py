"""
Metric to InfluxDB point conversion.

Points are built with influxdb_client's Point and serialized to line
protocol for the /api/v2/write body.
"""
from typing import Dict, Iterable

from influxdb_client import Point, WritePrecision

from .models import CORE_SUM, PACKAGE, Metric


# Field names written by earlier ryzenmon releases, kept so existing
# dashboards keep working
LEGACY_FIELDS = {
    PACKAGE: "package-power",
    CORE_SUM: "core-power",
}


def metric_to_point(metric: Metric, measurement: str, tags: Dict[str, str]) -> Point:
    """
    Build the point for one metric.

    Args:
        metric: Converted power metric
        measurement: Measurement name, "power" by default
        tags: Static tags from config; a "domain" tag is added

    Returns:
        Point with nanosecond timestamp
    """
    point = Point(measurement)
    for key, value in tags.items():
        point.tag(key, value)
    point.tag("domain", metric.domain.id)

    watts = float(metric.power_watts)
    point.field("power_watts", watts)
    point.field("interval_seconds", float(metric.interval_seconds))
    legacy = LEGACY_FIELDS.get(metric.domain.kind)
    if legacy:
        point.field(legacy, watts)

    return point.time(metric.timestamp, WritePrecision.NS)


def encode_metrics(
    metrics: Iterable[Metric],
    measurement: str,
    tags: Dict[str, str],
) -> str:
    """Encode metrics as a newline separated write body."""
    lines = []
    for metric in metrics:
        line = metric_to_point(metric, measurement, tags).to_line_protocol()
        # Point drops non-finite fields; a point without fields encodes to ""
        if line:
            lines.append(line)
    return "\n".join(lines)
