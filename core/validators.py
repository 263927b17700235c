# PATH: core/validators.py
"""
Validators for flashloop.

CONTRACTS:
- normalize_address(): lower-case, 0x-prefixed; never validates length
- is_address(): strict 20-byte hex check
- check_token_metadata(): (passed, reason) for discovered tokens

USAGE:
    from core.validators import is_address, check_token_metadata

    ok, reason = check_token_metadata(symbol, name, decimals)
"""

import re
from typing import Optional, Tuple

from core.constants import ZERO_ADDRESS

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

MAX_SYMBOL_LENGTH = 30
MAX_NAME_LENGTH = 50
MAX_DECIMALS = 36


def normalize_address(address: str) -> str:
    """Lower-case, 0x-prefixed form used as a key everywhere."""
    address = address.strip().lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return address


def is_address(value: Optional[str]) -> bool:
    """True for a 20-byte hex address (any case)."""
    if not value or not isinstance(value, str):
        return False
    return bool(_ADDRESS_RE.match(value.strip()))


def is_zero_address(value: Optional[str]) -> bool:
    """True for None, empty, or the zero address."""
    if not value:
        return True
    return normalize_address(value) == ZERO_ADDRESS


def check_token_metadata(
    symbol: Optional[str],
    name: Optional[str],
    decimals: Optional[int],
) -> Tuple[bool, Optional[str]]:
    """
    Sanity-check metadata of a newly discovered token.

    Tokens with empty or oversized symbol/name strings are almost always
    spam deployments and are never added to the token list.

    Returns:
        (passed, reason) where reason is None when passed
    """
    if not symbol or not symbol.strip():
        return False, "empty_symbol"
    if len(symbol) > MAX_SYMBOL_LENGTH:
        return False, "symbol_too_long"
    if not name or not name.strip():
        return False, "empty_name"
    if len(name) > MAX_NAME_LENGTH:
        return False, "name_too_long"
    if decimals is None or decimals < 0 or decimals > MAX_DECIMALS:
        return False, "bad_decimals"
    return True, None
