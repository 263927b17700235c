"""
dex/adapters/uniswap_v3.py - Uniswap V3 quoting adapter.

One adapter instance prices one fee tier:
- Quotes via QuoterV2 quoteExactInputSingle
- Pool lookup via factory getPool(tokenA, tokenB, fee)
- Reserves are the pool's token balances
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from chains.providers import RPCProvider
from core.constants import VenueFamily
from core.exceptions import InfraError, VenueUnavailableError
from core.logging import get_logger
from core.validators import is_zero_address, normalize_address
from dex.adapters.erc20 import balance_of, decode_address, hex_to_bytes
from dex.venue import VenueQuoter

logger = get_logger(__name__)


# =============================================================================
# ABI ENCODING
# =============================================================================

SELECTOR_QUOTE_EXACT_INPUT_SINGLE = function_signature_to_4byte_selector(
    "quoteExactInputSingle((address,address,uint256,uint24,uint160))"
)
SELECTOR_GET_POOL = function_signature_to_4byte_selector("getPool(address,address,uint24)")


def encode_quote_exact_input_single(
    token_in: str,
    token_out: str,
    amount_in: int,
    fee: int,
    sqrt_price_limit_x96: int = 0,
) -> str:
    """
    Encode quoteExactInputSingle call data for QuoterV2.

    The params struct is all static types, so it encodes inline:
    selector + 5 words.
    """
    args = encode(
        ["(address,address,uint256,uint24,uint160)"],
        [(token_in.lower(), token_out.lower(), amount_in, fee, sqrt_price_limit_x96)],
    )
    return "0x" + (SELECTOR_QUOTE_EXACT_INPUT_SINGLE + args).hex()


def decode_quote_response(hex_result: str) -> Tuple[int, int, int, int]:
    """
    Decode quoteExactInputSingle response.

    Returns:
        (amountOut, sqrtPriceX96After, initializedTicksCrossed, gasEstimate)
    """
    data = hex_to_bytes(hex_result or "0x")
    if len(data) < 128:
        raise VenueUnavailableError(
            f"Quote response too short: {len(data)} bytes",
            details={"raw": (hex_result or "")[:100]},
        )
    return decode(["uint256", "uint160", "uint32", "uint256"], data)


def encode_get_pool(token_a: str, token_b: str, fee: int) -> str:
    args = encode(["address", "address", "uint24"], [token_a.lower(), token_b.lower(), fee])
    return "0x" + (SELECTOR_GET_POOL + args).hex()


# =============================================================================
# ADAPTER
# =============================================================================

@dataclass
class UniswapV3QuoteResult:
    """Raw QuoterV2 result."""
    amount_out: int
    sqrt_price_x96_after: int
    ticks_crossed: int
    gas_estimate: int


class UniswapV3Adapter(VenueQuoter):
    """
    Adapter for Uniswap V3 quoting via QuoterV2.

    Usage:
        adapter = UniswapV3Adapter(provider, quoter, factory, fee=500)
        amount_out = await adapter.quote(weth, usdc, 10**18)
    """

    family = VenueFamily.UNISWAP_V3

    def __init__(
        self,
        provider: RPCProvider,
        quoter_address: str,
        factory: str,
        fee: int = 3000,
        name: str = "uniswap_v3",
    ):
        self.provider = provider
        self.quoter_address = normalize_address(quoter_address)
        self.factory = normalize_address(factory)
        self.fee = fee
        self.name = name

    async def get_quote_raw(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        block_number: Optional[int] = None,
    ) -> UniswapV3QuoteResult:
        call_data = encode_quote_exact_input_single(token_in, token_out, amount_in, self.fee)
        block_tag = hex(block_number) if block_number else "latest"
        try:
            response = await self.provider.eth_call(
                to=self.quoter_address,
                data=call_data,
                block=block_tag,
            )
            amount_out, sqrt_price, ticks, gas = decode_quote_response(response)
        except (InfraError, DecodingError) as e:
            raise VenueUnavailableError(
                f"Quote call failed: {e}",
                details={
                    "venue": self.name,
                    "token_in": token_in,
                    "token_out": token_out,
                    "amount_in": amount_in,
                    "fee": self.fee,
                },
            )
        return UniswapV3QuoteResult(
            amount_out=amount_out,
            sqrt_price_x96_after=sqrt_price,
            ticks_crossed=ticks,
            gas_estimate=gas,
        )

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        result = await self.get_quote_raw(token_in, token_out, amount_in)
        return result.amount_out

    async def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        result = await self.provider.eth_call(
            to=self.factory,
            data=encode_get_pool(token_a, token_b, self.fee),
        )
        pool = decode_address(result)
        return None if is_zero_address(pool) else normalize_address(pool)

    async def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        pool = await self.get_pool(token_a, token_b)
        if pool is None:
            return None
        reserve_a, reserve_b = await asyncio.gather(
            balance_of(self.provider, token_a, pool),
            balance_of(self.provider, token_b, pool),
        )
        return reserve_a, reserve_b
