# PATH: core/format_money.py
"""
Money formatting for logs, reports and CSV export.

No float money: every value is routed through Decimal and rounded
ROUND_HALF_UP.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from core.math import from_units, safe_decimal

Money = Union[str, Decimal, int, float, None]


def _quantize(value: Decimal, places: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def format_money(value: Money, decimals: int = 6) -> str:
    """
    Format a money value with a fixed number of decimal places.

    Example:
        >>> format_money("123.45", 2)
        '123.45'
        >>> format_money(None)
        '0.000000'
    """
    if isinstance(value, bool):
        value = int(value)
    return f"{_quantize(safe_decimal(value), decimals):f}"


def format_usd(value: Money) -> str:
    """USD with two decimals and a dollar sign ("-$1.50" for losses)."""
    amount = _quantize(safe_decimal(value), 2)
    if amount < 0:
        return f"-${-amount:f}"
    return f"${amount:f}"


def format_token_amount(amount: int, decimals: int, symbol: str = "", places: int = 6) -> str:
    """Smallest-unit integer as a human amount, e.g. '1.020000 WETH'."""
    text = format_money(from_units(amount, decimals), places)
    return f"{text} {symbol}".strip()


def format_pct(value: Money, places: int = 2) -> str:
    """Percentage value (already scaled by 100) as '0.50%'."""
    return f"{format_money(value, places)}%"


def format_bps(bps: int) -> str:
    """Basis points as a percentage string (50 -> '0.50%')."""
    return format_pct(Decimal(bps) / 100)
