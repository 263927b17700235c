"""
dex/adapters/erc20.py - ERC20 reads over eth_call.

symbol()/name() are decoded as ABI strings, with a bytes32 fallback for
older tokens (MKR-style).
"""

from typing import Optional, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from core.exceptions import InfraError
from core.logging import get_logger

logger = get_logger(__name__)

SELECTOR_SYMBOL = "0x" + function_signature_to_4byte_selector("symbol()").hex()
SELECTOR_NAME = "0x" + function_signature_to_4byte_selector("name()").hex()
SELECTOR_DECIMALS = "0x" + function_signature_to_4byte_selector("decimals()").hex()
SELECTOR_BALANCE_OF = function_signature_to_4byte_selector("balanceOf(address)")


def hex_to_bytes(value: str) -> bytes:
    data = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(data)


def decode_uint(hex_result: str) -> int:
    data = hex_to_bytes(hex_result)
    if len(data) < 32:
        return 0
    return int.from_bytes(data[:32], "big")


def decode_address(hex_result: str) -> str:
    data = hex_to_bytes(hex_result)
    if len(data) < 32:
        return "0x" + "0" * 40
    return "0x" + data[12:32].hex()


def decode_text(hex_result: str) -> str:
    """ABI string, or a right-padded bytes32."""
    data = hex_to_bytes(hex_result)
    if len(data) == 32:
        return data.rstrip(b"\x00").decode("utf-8", errors="ignore")
    if len(data) < 64:
        return ""
    (text,) = decode(["string"], data)
    return text


def encode_balance_of(holder: str) -> str:
    return "0x" + (SELECTOR_BALANCE_OF + encode(["address"], [holder.lower()])).hex()


async def balance_of(provider, token: str, holder: str) -> int:
    result = await provider.eth_call(to=token, data=encode_balance_of(holder))
    return decode_uint(result)


async def read_metadata(provider, token: str) -> Optional[Tuple[str, str, int]]:
    """(symbol, name, decimals), or None when the token does not answer."""
    try:
        symbol = decode_text(await provider.eth_call(to=token, data=SELECTOR_SYMBOL))
        name = decode_text(await provider.eth_call(to=token, data=SELECTOR_NAME))
        decimals = decode_uint(await provider.eth_call(to=token, data=SELECTOR_DECIMALS))
    except (InfraError, DecodingError, ValueError) as e:
        logger.debug(f"Token metadata unavailable for {token}: {e}")
        return None
    return symbol, name, decimals
