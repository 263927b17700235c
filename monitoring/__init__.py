# PATH: monitoring/__init__.py
"""
Monitoring package for flashloop.

- risk: estimation-error tracking, risk level, calibrated thresholds
"""

from monitoring.risk import (
    EstimationResult,
    FrontrunCheck,
    RiskAssessment,
    RiskCalibrator,
    SlippageCheck,
    classify_risk,
    recommend_for,
)

__all__ = [
    "EstimationResult",
    "FrontrunCheck",
    "RiskAssessment",
    "RiskCalibrator",
    "SlippageCheck",
    "classify_risk",
    "recommend_for",
]
