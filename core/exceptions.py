# PATH: core/exceptions.py
"""
Typed exceptions for flashloop.

Infra errors (RPC, relay) are skipped or retried by the calling layer.
UnitRevert and its subclasses model a reverted execution unit call and
always carry a RevertReason.
"""

from typing import Optional

from core.constants import ErrorCode, RevertReason


class FlashloopError(Exception):
    """Base exception for flashloop."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str = "",
        code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class ConfigError(FlashloopError):
    """Invalid or incomplete configuration."""
    code = ErrorCode.CONFIG_INVALID


class InfraError(FlashloopError):
    """Infrastructure-related errors (RPC, timeouts, relays)."""
    code = ErrorCode.INFRA_RPC_ERROR


class RPCError(InfraError):
    """RPC call failed on every endpoint."""


class RelayError(InfraError):
    """Private relay rejected or failed a submission."""
    code = ErrorCode.RELAY_ERROR


class QuoteError(FlashloopError):
    """Quote call reverted or returned garbage."""
    code = ErrorCode.QUOTE_REVERT


class VenueUnavailableError(QuoteError):
    """Venue has no pool for the requested pair."""
    code = ErrorCode.VENUE_UNAVAILABLE


class VenueSwapError(FlashloopError):
    """Venue refused a swap (no pool, or output below the caller's floor)."""
    code = ErrorCode.SWAP_REJECTED


class LedgerError(FlashloopError):
    """Ledger-level transfer failure."""


class InsufficientBalanceError(LedgerError):
    code = ErrorCode.LEDGER_BALANCE


class InsufficientAllowanceError(LedgerError):
    code = ErrorCode.LEDGER_ALLOWANCE


class RateLimitError(FlashloopError):
    """Hourly execution cap reached."""
    code = ErrorCode.RATE_LIMITED


class InvalidTransitionError(FlashloopError):
    """Raised when an invalid state transition is attempted."""
    code = ErrorCode.INVALID_TRANSITION


class UnitRevert(FlashloopError):
    """The execution unit reverted; no state change except gas."""

    code = ErrorCode.UNIT_REVERT

    def __init__(self, reason: RevertReason, details: Optional[dict] = None):
        super().__init__(reason.value, details=details)
        self.reason = reason

    def __str__(self):
        return self.reason.value


class PreconditionViolation(UnitRevert):
    """Rejected before any funds move."""


class SimulationNegative(UnitRevert):
    """Authoritative re-simulation found no profit; no swap attempted."""


class SwapExecutionFailed(UnitRevert):
    """A hop failed or delivered less than its floor."""


class RepaymentShortfall(UnitRevert):
    """Final balance cannot cover loan + premium (+ threshold)."""
