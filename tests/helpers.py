"""Shared fakes for the test suite."""

from __future__ import annotations

import json
from typing import Any

import requests

from pipeline.config import Config
from pipeline.models import Domain, Metric, RawSample


BASE_INFLUX = {
    "host": "http://influx.local:8086",
    "org": "lab",
    "token": "secret-token",
    "bucket": "cpu",
}


def make_config(**overrides: Any) -> Config:
    """Valid Config with test-friendly defaults; keyword args override keys."""
    raw: dict[str, Any] = {
        "influxdb": dict(BASE_INFLUX),
        "tags": {"host": "testhost", "service": "ryzen-rapl"},
        "health_port": None,
        "metrics_port": None,
    }
    raw.update(overrides)
    return Config.from_dict(raw)


def make_sample(
    raw: int,
    t: float,
    domain: Domain | None = None,
    width: int = 32,
    unit: float = 1.0,
) -> RawSample:
    return RawSample(
        domain=domain or Domain.package(0),
        timestamp=t,
        raw_energy_counter=raw,
        counter_width_bits=width,
        energy_unit_joules=unit,
        wall_time_ns=int(t * 1_000_000_000),
    )


def make_metric(ts: int, watts: float = 1.0, domain: Domain | None = None) -> Metric:
    return Metric(
        domain=domain or Domain.package(0),
        timestamp=ts,
        power_watts=watts,
        interval_seconds=10.0,
    )


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int, body: str = "", headers: dict | None = None) -> None:
        self.status_code = status_code
        self.text = body
        self.headers = headers or {}

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Records POSTs and replays scripted responses or exceptions."""

    def __init__(self, *responses: Any) -> None:
        self.headers: dict[str, str] = {}
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        outcome = self.responses.pop(0) if self.responses else FakeResponse(204)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return FakeResponse(outcome)
        return outcome

    def close(self) -> None:
        self.closed = True

    def bodies(self) -> list[str]:
        return [call["data"].decode("utf-8") for call in self.calls]


class FakeCollector:
    """
    Scripted counter reader.

    readings maps a domain to a list of (timestamp, raw) pairs or exceptions,
    consumed one per read().
    """

    def __init__(self, readings: dict[Domain, list[Any]], width: int = 32) -> None:
        self.readings = {domain: list(values) for domain, values in readings.items()}
        self.width = width
        self.read_calls: dict[Domain, int] = {domain: 0 for domain in readings}
        self.closed = False

    def discover_domains(self) -> list[Domain]:
        return list(self.readings)

    def read(self, domain: Domain) -> RawSample:
        self.read_calls[domain] += 1
        outcome = self.readings[domain].pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        t, raw = outcome
        return make_sample(raw, t, domain=domain, width=self.width)

    def close(self) -> None:
        self.closed = True


connection_refused = requests.exceptions.ConnectionError("connection refused")
