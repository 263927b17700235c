"""
tests/unit/test_math.py - Tests for core/math.py

Critical tests for:
- Smallest-unit conversions
- BPS calculations
- Slippage floors
- Error statistics
"""

import pytest
from decimal import Decimal

from core.math import (
    apply_bps,
    bps_to_decimal,
    from_units,
    mean,
    percent_to_bps,
    population_stddev,
    profit_ratio,
    safe_decimal,
    slippage_floor,
    to_units,
)


class TestSafeDecimal:

    def test_accepts_str(self):
        assert safe_decimal("123.456") == Decimal("123.456")

    def test_float_goes_through_str(self):
        assert safe_decimal(0.1) == Decimal("0.1")

    def test_default_on_garbage(self):
        assert safe_decimal("not a number") == Decimal("0")
        assert safe_decimal(None, Decimal("7")) == Decimal("7")


class TestUnits:

    def test_to_units(self):
        assert to_units("1.5", 18) == 1_500_000_000_000_000_000
        assert to_units(Decimal("2000"), 6) == 2_000_000_000

    def test_to_units_truncates(self):
        assert to_units("0.0000001", 6) == 0

    def test_from_units(self):
        assert from_units(1_500_000, 6) == Decimal("1.5")
        assert from_units(10**18, 18) == Decimal("1")


class TestBps:

    def test_bps_to_decimal(self):
        assert bps_to_decimal(50) == Decimal("0.005")

    @pytest.mark.parametrize("percent,bps", [("0.5", 50), ("1", 100), ("0.3", 30), (0, 0)])
    def test_percent_to_bps(self, percent, bps):
        assert percent_to_bps(percent) == bps

    def test_apply_bps_rounds_down(self):
        assert apply_bps(10**18, 9) == 900_000_000_000_000
        assert apply_bps(1_111, 10) == 1

    def test_slippage_floor(self):
        assert slippage_floor(10_000, 50) == 9_950
        assert slippage_floor(10_000, 0) == 10_000
        assert slippage_floor(999, 50) == 994

    def test_profit_ratio(self):
        assert profit_ratio(5, 100) == Decimal("0.05")
        assert profit_ratio(-5, 100) == Decimal("-0.05")
        assert profit_ratio(5, 0) == Decimal("0")


class TestStatistics:

    def test_mean(self):
        assert mean([0.1, 0.3]) == pytest.approx(0.2)
        assert mean([]) == 0.0

    def test_population_stddev(self):
        assert population_stddev([0.1, 0.6]) == pytest.approx(0.25)
        assert population_stddev([0.2] * 5) == pytest.approx(0.0)
        assert population_stddev([]) == 0.0
