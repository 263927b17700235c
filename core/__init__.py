"""
core - Core utilities and models for flashloop.

This package contains:
- models.py: Data models (Token, Route, RouteCandidate, ExecutionRecord, ProfitSample)
- constants.py: Enums and defaults
- exceptions.py: Typed exceptions with error codes
- math.py: Integer/Decimal amount helpers (no float money)
- time.py: Wall clock and freshness helpers
- logging.py: Structured JSON logging
- validators.py: Address and token metadata checks
- format_money.py: Report formatting
"""

from core.constants import (
    BundleResolution,
    ErrorCode,
    ExecutionStatus,
    GasBasis,
    RevertReason,
    RiskLevel,
    SubmissionMode,
    UnitState,
    VenueFamily,
)
from core.exceptions import (
    ConfigError,
    FlashloopError,
    InfraError,
    QuoteError,
    RelayError,
    RPCError,
    UnitRevert,
    VenueUnavailableError,
)
from core.logging import get_logger, setup_logging
from core.models import (
    CalibrationThresholds,
    ExecutionRecord,
    GasQuote,
    ProfitSample,
    Route,
    RouteCandidate,
    Token,
)

__all__ = [
    # Constants
    "BundleResolution",
    "ErrorCode",
    "ExecutionStatus",
    "GasBasis",
    "RevertReason",
    "RiskLevel",
    "SubmissionMode",
    "UnitState",
    "VenueFamily",
    # Exceptions
    "ConfigError",
    "FlashloopError",
    "InfraError",
    "QuoteError",
    "RelayError",
    "RPCError",
    "UnitRevert",
    "VenueUnavailableError",
    # Models
    "CalibrationThresholds",
    "ExecutionRecord",
    "GasQuote",
    "ProfitSample",
    "Route",
    "RouteCandidate",
    "Token",
    # Logging
    "get_logger",
    "setup_logging",
]
