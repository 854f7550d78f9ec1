"""Tests for the rate converter."""

from __future__ import annotations

import math

import pytest

from helpers import make_sample
from pipeline.models import Domain
from pipeline.rate_converter import RateConverter


@pytest.fixture
def converter() -> RateConverter:
    return RateConverter(max_interval_seconds=60.0)


class TestConvert:
    """Tests for RateConverter.convert()."""

    def test_constant_growth(self, converter: RateConverter) -> None:
        """raw 100 at t=0 and 150 at t=10 on a 32-bit counter is 5 W."""
        metric = converter.convert(make_sample(100, 0.0), make_sample(150, 10.0))

        assert metric is not None
        assert metric.power_watts == pytest.approx(5.0)
        assert metric.interval_seconds == pytest.approx(10.0)
        assert metric.timestamp == 10_000_000_000
        assert metric.domain == Domain.package(0)

    def test_wraparound_16_bit(self, converter: RateConverter) -> None:
        """65530 -> 10 on a 16-bit counter is a delta of 16 units."""
        metric = converter.convert(
            make_sample(65530, 0.0, width=16), make_sample(10, 1.0, width=16)
        )

        assert metric is not None
        assert metric.power_watts == pytest.approx(16.0)

    @pytest.mark.parametrize("width", [8, 16, 32, 48, 64])
    @pytest.mark.parametrize("delta", [1, 7, 200])
    def test_wrapping_equals_non_wrapping(
        self, converter: RateConverter, width: int, delta: int
    ) -> None:
        """A wrap from near 2**b yields the same rate as plain growth."""
        modulus = 1 << width
        start = modulus - 3
        wrapped = converter.convert(
            make_sample(start, 0.0, width=width),
            make_sample((start + delta) % modulus, 2.0, width=width),
        )
        plain = converter.convert(
            make_sample(0, 0.0, width=width),
            make_sample(delta, 2.0, width=width),
        )

        assert wrapped is not None and plain is not None
        assert wrapped.power_watts == plain.power_watts == pytest.approx(delta / 2.0)

    def test_energy_unit_scaling(self, converter: RateConverter) -> None:
        """Counter ticks are multiplied by the energy unit."""
        unit = 0.5 ** 16
        metric = converter.convert(
            make_sample(0, 0.0, unit=unit), make_sample(65536 * 20, 2.0, unit=unit)
        )

        assert metric is not None
        assert metric.power_watts == pytest.approx(10.0)

    def test_idle_counter_is_zero_watts(self, converter: RateConverter) -> None:
        metric = converter.convert(make_sample(42, 0.0), make_sample(42, 1.0))
        assert metric is not None
        assert metric.power_watts == 0.0

    def test_first_sample_is_skipped(self, converter: RateConverter) -> None:
        assert converter.convert(None, make_sample(100, 0.0)) is None
        assert converter.skipped == 0

    @pytest.mark.parametrize("t_current", [5.0, 4.0])
    def test_non_positive_elapsed_skips(self, converter: RateConverter, t_current: float) -> None:
        """Clock anomalies produce no metric."""
        assert converter.convert(make_sample(100, 5.0), make_sample(150, t_current)) is None
        assert converter.skipped == 1

    def test_interval_above_ceiling_skips(self, converter: RateConverter) -> None:
        """A gap longer than the ceiling means a missed window."""
        assert converter.convert(make_sample(100, 0.0), make_sample(150, 61.0)) is None
        assert converter.skipped == 1

    def test_interval_at_ceiling_is_accepted(self, converter: RateConverter) -> None:
        assert converter.convert(make_sample(0, 0.0), make_sample(600, 60.0)) is not None

    @pytest.mark.parametrize("unit", [float("inf"), float("nan"), -1.0])
    def test_invalid_rate_is_never_emitted(self, converter: RateConverter, unit: float) -> None:
        """Negative or non-finite rates are suppressed."""
        metric = converter.convert(
            make_sample(0, 0.0, unit=unit), make_sample(10, 1.0, unit=unit)
        )
        assert metric is None
        assert converter.skipped == 1

    def test_domain_mismatch_skips(self, converter: RateConverter) -> None:
        previous = make_sample(0, 0.0, domain=Domain.core(0))
        current = make_sample(10, 1.0, domain=Domain.core(1))
        assert converter.convert(previous, current) is None

    def test_width_change_skips(self, converter: RateConverter) -> None:
        previous = make_sample(0, 0.0, width=32)
        current = make_sample(10, 1.0, width=16)
        assert converter.convert(previous, current) is None


class TestUpdate:
    """Tests for the per-domain baseline map."""

    def test_baseline_then_metric(self, converter: RateConverter) -> None:
        assert converter.update(make_sample(100, 0.0)) is None
        metric = converter.update(make_sample(150, 10.0))
        assert metric is not None
        assert metric.power_watts == pytest.approx(5.0)

    def test_domains_are_independent(self, converter: RateConverter) -> None:
        core0, core1 = Domain.core(0), Domain.core(1)
        converter.update(make_sample(0, 0.0, domain=core0))
        converter.update(make_sample(1000, 0.0, domain=core1))

        m0 = converter.update(make_sample(20, 2.0, domain=core0))
        m1 = converter.update(make_sample(1002, 2.0, domain=core1))

        assert m0 is not None and m1 is not None
        assert m0.power_watts == pytest.approx(10.0)
        assert m1.power_watts == pytest.approx(1.0)

    def test_skipped_sample_becomes_new_baseline(self, converter: RateConverter) -> None:
        """After a missed window the next regular interval converts again."""
        converter.update(make_sample(0, 0.0))
        assert converter.update(make_sample(5000, 500.0)) is None

        metric = converter.update(make_sample(5100, 510.0))
        assert metric is not None
        assert metric.power_watts == pytest.approx(10.0)

    def test_reset_forgets_baseline(self, converter: RateConverter) -> None:
        converter.update(make_sample(0, 0.0))
        converter.reset(Domain.package(0))
        assert converter.update(make_sample(10, 1.0)) is None

    def test_metrics_are_always_finite(self, converter: RateConverter) -> None:
        readings = [(0, 0.0), (2**32 - 1, 1.0), (5, 2.0), (5, 2.0), (100, 3.0)]
        for raw, t in readings:
            metric = converter.update(make_sample(raw, t))
            if metric is not None:
                assert math.isfinite(metric.power_watts)
                assert metric.power_watts >= 0
