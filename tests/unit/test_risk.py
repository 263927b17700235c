"""
tests/unit/test_risk.py - Risk classification and calibration tests.
"""

import json
from decimal import Decimal

import pytest

from core.constants import RiskLevel
from monitoring.risk import RiskCalibrator, classify_risk, recommend_for


@pytest.fixture
def calibrator(tmp_path):
    return RiskCalibrator(
        base_slippage_bps=50,
        base_min_profit_pct=Decimal("0.5"),
        base_mev_protection=False,
        path=tmp_path / "profit_history.json",
    )


def feed(calibrator, error_ratio: float, count: int) -> None:
    for i in range(count):
        calibrator.analyze_estimation(estimated=100.0, actual=100.0 * (1 - error_ratio), pair="WETH/USDC",
                                      timestamp=float(i))


class TestClassifyRisk:
    def test_too_few_samples(self):
        assert classify_risk([0.5] * 4).level == RiskLevel.UNKNOWN

    @pytest.mark.parametrize("errors,expected", [
        ([0.05] * 5, RiskLevel.LOW),
        ([0.15] * 5, RiskLevel.MEDIUM),
        ([0.40] * 5, RiskLevel.HIGH),
        ([0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.9], RiskLevel.MEDIUM),
    ])
    def test_levels(self, errors, expected):
        assert classify_risk(errors).level == expected

    def test_mean_beats_volatility(self):
        # mean 0.35, stddev 0.25: HIGH, not the volatility MEDIUM
        errors = [0.10, 0.60] * 5
        assessment = classify_risk(errors)
        assert assessment.stddev > 0.2
        assert assessment.level == RiskLevel.HIGH

    @pytest.mark.parametrize("spread", [0.0, 0.1, 0.25, 0.4])
    def test_monotonic_in_mean(self, spread):
        deviations = [-spread, spread] * 5
        previous = 0
        for step in range(0, 61):
            mean = step / 100
            level = classify_risk([mean + d for d in deviations]).level
            assert level.rank >= previous
            previous = level.rank


class TestRecommendation:
    @pytest.mark.parametrize("level,slippage,min_pct,mev", [
        (RiskLevel.HIGH, 20, Decimal("1.0"), True),
        (RiskLevel.MEDIUM, 50, Decimal("0.75"), True),
        (RiskLevel.LOW, 100, Decimal("0.5"), False),
        (RiskLevel.UNKNOWN, 50, Decimal("0.5"), False),
    ])
    def test_table(self, level, slippage, min_pct, mev):
        thresholds = recommend_for(level, 50, Decimal("0.5"), False)
        assert thresholds.slippage_bps == slippage
        assert thresholds.min_profit_pct == min_pct
        assert thresholds.use_mev_protection is mev
        assert thresholds.risk_level == level

    def test_low_keeps_baseline_mev(self):
        assert recommend_for(RiskLevel.LOW, 50, Decimal("0.5"), True).use_mev_protection is True


class TestCalibrator:
    def test_analyze_estimation(self, calibrator):
        result = calibrator.analyze_estimation(10.0, 8.5, "WETH/USDC")
        assert result.error_ratio == pytest.approx(0.15)
        assert not result.accurate
        assert not result.critical
        assert len(calibrator.samples) == 1

    def test_missing_actual_not_recorded(self, calibrator):
        assert calibrator.analyze_estimation(10.0, None, "WETH/USDC") is None
        assert calibrator.analyze_estimation(0.0, 1.0, "WETH/USDC") is None
        assert calibrator.samples == []

    def test_decimal_inputs(self, calibrator):
        result = calibrator.analyze_estimation(Decimal("10"), Decimal("9"), "WETH/USDC")
        assert result.error_ratio == pytest.approx(0.1)

    def test_thresholds_follow_history(self, calibrator):
        assert calibrator.thresholds.risk_level == RiskLevel.UNKNOWN
        assert calibrator.thresholds.slippage_bps == 50

        feed(calibrator, 0.5, 10)
        thresholds = calibrator.thresholds
        assert thresholds.risk_level == RiskLevel.HIGH
        assert thresholds.slippage_bps == 20
        assert thresholds.use_mev_protection is True

        feed(calibrator, 0.02, 10)
        assert calibrator.thresholds.risk_level == RiskLevel.LOW
        assert calibrator.thresholds.slippage_bps == 100

    def test_history_bounded(self, tmp_path):
        calibrator = RiskCalibrator(50, Decimal("0.5"), False, path=tmp_path / "h.json", history_limit=5)
        feed(calibrator, 0.1, 8)
        assert len(calibrator.samples) == 5
        assert calibrator.samples[0].timestamp == 3.0

    def test_persisted_on_update_and_reloaded(self, calibrator):
        feed(calibrator, 0.2, 3)
        data = json.loads(calibrator.path.read_text())
        assert len(data) == 3

        reloaded = RiskCalibrator(50, Decimal("0.5"), False, path=calibrator.path)
        assert reloaded.load() == 3
        assert reloaded.samples[0].pair == "WETH/USDC"

    def test_corrupt_history_ignored(self, calibrator):
        calibrator.path.write_text("not json")
        assert calibrator.load() == 0

    def test_slippage_check(self, calibrator):
        assert calibrator.analyze_slippage(1_000, 996).acceptable is True
        assert calibrator.analyze_slippage(1_000, 990).acceptable is False
        assert calibrator.analyze_slippage(0, 5) is None

    def test_frontrunning(self, calibrator):
        assert calibrator.detect_frontrunning(160, 100).suspected is True
        assert calibrator.detect_frontrunning(150, 100).suspected is False
        assert calibrator.detect_frontrunning(1, 0).suspected is False

    def test_report(self, calibrator):
        assert "error" in calibrator.generate_report()
        feed(calibrator, 0.05, 6)
        report = calibrator.generate_report()
        assert report["trade_count"] == 6
        assert report["risk"]["level"] == "low"
        assert report["top_pairs"][0]["pair"] == "WETH/USDC"
        assert report["recommendation"]["slippage_bps"] == 100
