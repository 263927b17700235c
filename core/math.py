# PATH: core/math.py
"""
Math utilities for flashloop.

On-chain amounts are integers in the token's smallest unit. Human-scale
amounts and USD values are Decimal. No float money.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Sequence, Union

from core.constants import BPS_DENOMINATOR

Number = Union[str, int, float, Decimal, None]


def safe_decimal(value: Number, default: Decimal = Decimal("0")) -> Decimal:
    """
    Safely convert value to Decimal.

    Args:
        value: Value to convert
        default: Default if conversion fails

    Returns:
        Decimal value
    """
    if value is None:
        return default

    try:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def bps_to_decimal(bps: Number) -> Decimal:
    """Convert basis points to a fraction (50 bps -> 0.005)."""
    return safe_decimal(bps) / Decimal(BPS_DENOMINATOR)


def percent_to_bps(percent: Number) -> int:
    """Convert a percentage to basis points (0.5 -> 50)."""
    return int(safe_decimal(percent) * 100)


def apply_bps(amount: int, bps: int) -> int:
    """Return amount * bps / 10_000, rounded down."""
    return amount * bps // BPS_DENOMINATOR


def slippage_floor(expected: int, slippage_bps: int) -> int:
    """Minimum acceptable output for an expected amount."""
    return expected * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def to_units(amount: Number, decimals: int) -> int:
    """
    Denormalize amount from token units to smallest units.

    Args:
        amount: Amount in token units (e.g. "1.5")
        decimals: Token decimals

    Returns:
        Amount in smallest units (int)
    """
    return int(safe_decimal(amount) * (Decimal(10) ** decimals))


def from_units(amount: Union[int, str, Decimal], decimals: int) -> Decimal:
    """Normalize amount from smallest units to token units."""
    return safe_decimal(amount) / (Decimal(10) ** decimals)


def profit_ratio(profit: int, amount_in: int) -> Decimal:
    """Profit as a fraction of the input amount."""
    if amount_in == 0:
        return Decimal("0")
    return Decimal(profit) / Decimal(amount_in)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def population_stddev(values: Sequence[float]) -> float:
    """Population standard deviation (divides by N)."""
    if not values:
        return 0.0
    avg = mean(values)
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance)
