# PATH: monitoring/risk.py
"""
Risk & calibration.

Compares estimated vs realized profit per execution and turns the rolling
error statistics into thresholds for the next scan cycle.

RISK CONTRACT:
==============

  error_ratio = |estimated - actual| / estimated
    accurate  error_ratio <= 0.10
    critical  error_ratio >  0.30

  Risk level over the last 10 samples (fewer than 5 -> UNKNOWN):
    mean > 0.30    -> HIGH
    mean > 0.10    -> MEDIUM
    stddev > 0.20  -> MEDIUM
    otherwise      -> LOW
  Mean thresholds win over volatility, so for a fixed stddev the level
  never drops as the mean grows.

  Recommendation (pure function of the level):
    HIGH     slippage 20 bps,  min profit x2.0, MEV protection on
    MEDIUM   slippage 50 bps,  min profit x1.5, MEV protection on
    LOW      slippage 100 bps, min profit x1.0, MEV protection = baseline
    UNKNOWN  baseline slippage, baseline min profit, baseline MEV protection

  Front-running suspected when realized gas price > 1.5x expected.
==============
"""

import json
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.constants import (
    ESTIMATION_CRITICAL,
    ESTIMATION_TOLERANCE,
    FRONTRUN_GAS_RATIO,
    PROFIT_HISTORY_LIMIT,
    RISK_MIN_SAMPLES,
    RISK_WINDOW,
    VOLATILITY_BOUND,
    RiskLevel,
)
from core.logging import get_logger
from core.math import bps_to_decimal, mean, population_stddev
from core.models import CalibrationThresholds, ProfitSample
from core.time import now_timestamp

logger = get_logger(__name__)

# level -> (slippage_bps, min-profit multiple, forces MEV protection)
_RECOMMENDATIONS = {
    RiskLevel.HIGH: (20, Decimal("2"), True),
    RiskLevel.MEDIUM: (50, Decimal("1.5"), True),
    RiskLevel.LOW: (100, Decimal("1"), False),
}


@dataclass(frozen=True)
class EstimationResult:
    error_ratio: float
    accurate: bool
    critical: bool

    @property
    def error_percent(self) -> float:
        return self.error_ratio * 100


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    mean_error: float = 0.0
    stddev: float = 0.0
    message: str = ""


@dataclass(frozen=True)
class FrontrunCheck:
    suspected: bool
    gas_price_ratio: float


@dataclass(frozen=True)
class SlippageCheck:
    acceptable: bool
    slippage_ratio: float


def classify_risk(errors: List[float]) -> RiskAssessment:
    """Risk level for a window of error ratios."""
    if len(errors) < RISK_MIN_SAMPLES:
        return RiskAssessment(RiskLevel.UNKNOWN, message="Not enough historical data")

    avg = mean(errors)
    std = population_stddev(errors)
    if avg > ESTIMATION_CRITICAL:
        level, message = RiskLevel.HIGH, "Large average estimation error"
    elif avg > ESTIMATION_TOLERANCE:
        level, message = RiskLevel.MEDIUM, "Significant estimation error"
    elif std > VOLATILITY_BOUND:
        level, message = RiskLevel.MEDIUM, "Volatile estimation accuracy"
    else:
        level, message = RiskLevel.LOW, "Consistent estimation accuracy"
    return RiskAssessment(level, mean_error=avg, stddev=std, message=message)


def recommend_for(
    level: RiskLevel,
    base_slippage_bps: int,
    base_min_profit_pct: Decimal,
    base_mev_protection: bool,
) -> CalibrationThresholds:
    if level not in _RECOMMENDATIONS:
        return CalibrationThresholds(
            slippage_bps=base_slippage_bps,
            min_profit_pct=base_min_profit_pct,
            use_mev_protection=base_mev_protection,
            risk_level=level,
        )
    slippage_bps, multiple, force_mev = _RECOMMENDATIONS[level]
    return CalibrationThresholds(
        slippage_bps=slippage_bps,
        min_profit_pct=base_min_profit_pct * multiple,
        use_mev_protection=force_mev or base_mev_protection,
        risk_level=level,
    )


class RiskCalibrator:
    """
    Owns the ProfitSample history and publishes CalibrationThresholds.

    Usage:
        calibrator = RiskCalibrator(50, Decimal("0.5"), True, path=Path("data/profit_history.json"))
        calibrator.load()
        calibrator.analyze_estimation(estimated=12.0, actual=10.5, pair="WETH/USDC")
        thresholds = calibrator.thresholds
    """

    def __init__(
        self,
        base_slippage_bps: int,
        base_min_profit_pct: Decimal,
        base_mev_protection: bool,
        path: Optional[Path] = None,
        history_limit: int = PROFIT_HISTORY_LIMIT,
    ):
        self.base_slippage_bps = base_slippage_bps
        self.base_min_profit_pct = base_min_profit_pct
        self.base_mev_protection = base_mev_protection
        self.path = path
        self.history_limit = history_limit
        self.samples: List[ProfitSample] = []

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load(self) -> int:
        if self.path is None or not self.path.exists():
            return 0
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            self.samples = [ProfitSample.from_dict(d) for d in data][-self.history_limit:]
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load profit history: {e}", extra={"context": {"path": str(self.path)}})
            self.samples = []
            return 0
        logger.info(f"Loaded {len(self.samples)} historical profit records")
        return len(self.samples)

    def save(self) -> bool:
        if self.path is None:
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump([s.to_dict() for s in self.samples], f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save profit history: {e}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze_estimation(
        self,
        estimated: float,
        actual: Optional[float],
        pair: str,
        timestamp: Optional[float] = None,
    ) -> Optional[EstimationResult]:
        """
        Record one estimated/actual pair.

        Returns None (nothing recorded) without a positive estimate or
        without a realized figure.
        """
        if actual is None or not estimated or estimated <= 0:
            return None

        estimated, actual = float(estimated), float(actual)
        ratio = abs(estimated - actual) / estimated
        self.samples.append(ProfitSample(
            timestamp=now_timestamp() if timestamp is None else timestamp,
            pair=pair,
            estimated=float(estimated),
            actual=float(actual),
            error_ratio=ratio,
        ))
        if len(self.samples) > self.history_limit:
            self.samples = self.samples[-self.history_limit:]
        self.save()

        result = EstimationResult(
            error_ratio=ratio,
            accurate=ratio <= ESTIMATION_TOLERANCE,
            critical=ratio > ESTIMATION_CRITICAL,
        )
        log = logger.warning if result.critical else logger.info
        log(
            f"Estimation accuracy: {100 - result.error_percent:.2f}%",
            extra={"context": {"pair": pair, "estimated": estimated, "actual": actual}},
        )
        return result

    def analyze_slippage(self, expected: int, received: int, symbol: str = "") -> Optional[SlippageCheck]:
        if not expected or expected <= 0:
            return None
        ratio = (expected - received) / expected
        tolerance = float(bps_to_decimal(self.base_slippage_bps))
        check = SlippageCheck(acceptable=ratio <= tolerance, slippage_ratio=ratio)
        logger.debug(f"Slippage for {symbol}: {ratio * 100:.2f}%")
        return check

    def assess_risk(self) -> RiskAssessment:
        window = [s.error_ratio for s in self.samples[-RISK_WINDOW:]]
        return classify_risk(window)

    def recommend_strategy(self) -> CalibrationThresholds:
        return recommend_for(
            self.assess_risk().level,
            self.base_slippage_bps,
            self.base_min_profit_pct,
            self.base_mev_protection,
        )

    @property
    def thresholds(self) -> CalibrationThresholds:
        return self.recommend_strategy()

    def detect_frontrunning(self, gas_price: int, expected_gas_price: int) -> FrontrunCheck:
        if expected_gas_price <= 0:
            return FrontrunCheck(suspected=False, gas_price_ratio=0.0)
        ratio = gas_price / expected_gas_price
        check = FrontrunCheck(suspected=ratio > FRONTRUN_GAS_RATIO, gas_price_ratio=ratio)
        if check.suspected:
            logger.warning(
                f"Possible frontrunning detected: gas price {ratio:.2f}x higher than expected",
                extra={"context": {"gas_price": gas_price, "expected": expected_gas_price}},
            )
        return check

    def generate_report(self) -> Dict[str, Any]:
        if not self.samples:
            return {"error": "No historical data available"}

        recent = self.samples[-RISK_WINDOW:]
        total_estimated = sum(s.estimated for s in recent)
        total_actual = sum(s.actual for s in recent)

        by_pair: Dict[str, List[ProfitSample]] = defaultdict(list)
        for s in self.samples:
            by_pair[s.pair].append(s)
        ranking = sorted(
            (
                {
                    "pair": pair,
                    "count": len(items),
                    "avg_profit": mean([s.actual for s in items]),
                    "avg_error": mean([s.error_ratio for s in items]),
                }
                for pair, items in by_pair.items()
            ),
            key=lambda row: row["avg_profit"],
            reverse=True,
        )

        risk = self.assess_risk()
        recommendation = self.recommend_strategy()
        return {
            "trade_count": len(self.samples),
            "recent": {
                "count": len(recent),
                "total_estimated": total_estimated,
                "total_actual": total_actual,
                "avg_error_pct": round(mean([s.error_ratio for s in recent]) * 100, 2),
                "profit_accuracy_pct": (
                    round(total_actual / total_estimated * 100, 2) if total_estimated else None
                ),
            },
            "top_pairs": ranking[:5],
            "risk": {
                "level": risk.level.value,
                "mean_error": risk.mean_error,
                "stddev": risk.stddev,
                "message": risk.message,
            },
            "recommendation": {
                "slippage_bps": recommendation.slippage_bps,
                "min_profit_pct": str(recommendation.min_profit_pct),
                "use_mev_protection": recommendation.use_mev_protection,
            },
        }
