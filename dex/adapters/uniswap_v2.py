"""
dex/adapters/uniswap_v2.py - Uniswap V2 style quoting adapter.

Covers every V2 fork (Uniswap V2, SushiSwap, ...):
- Quotes via router getAmountsOut(amountIn, path)
- Pool lookup via factory getPair(tokenA, tokenB)
- Reserves via pair getReserves() + token0()
- Recent pairs via factory allPairsLength() / allPairs(i)
"""

import asyncio
from typing import List, Optional, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from chains.providers import RPCProvider
from core.constants import VenueFamily
from core.exceptions import InfraError, VenueUnavailableError
from core.logging import get_logger
from core.validators import is_zero_address, normalize_address
from dex.adapters.erc20 import decode_address, decode_uint, hex_to_bytes
from dex.venue import VenueQuoter

logger = get_logger(__name__)


# =============================================================================
# ABI ENCODING
# =============================================================================

SELECTOR_GET_AMOUNTS_OUT = function_signature_to_4byte_selector("getAmountsOut(uint256,address[])")
SELECTOR_GET_PAIR = function_signature_to_4byte_selector("getPair(address,address)")
SELECTOR_ALL_PAIRS = function_signature_to_4byte_selector("allPairs(uint256)")
SELECTOR_ALL_PAIRS_LENGTH = "0x" + function_signature_to_4byte_selector("allPairsLength()").hex()
SELECTOR_GET_RESERVES = "0x" + function_signature_to_4byte_selector("getReserves()").hex()
SELECTOR_TOKEN0 = "0x" + function_signature_to_4byte_selector("token0()").hex()
SELECTOR_TOKEN1 = "0x" + function_signature_to_4byte_selector("token1()").hex()


def encode_get_amounts_out(amount_in: int, path: List[str]) -> str:
    args = encode(["uint256", "address[]"], [amount_in, [p.lower() for p in path]])
    return "0x" + (SELECTOR_GET_AMOUNTS_OUT + args).hex()


def decode_amounts(hex_result: str) -> List[int]:
    """Decode the uint256[] returned by getAmountsOut."""
    (amounts,) = decode(["uint256[]"], hex_to_bytes(hex_result))
    return list(amounts)


def encode_get_pair(token_a: str, token_b: str) -> str:
    args = encode(["address", "address"], [token_a.lower(), token_b.lower()])
    return "0x" + (SELECTOR_GET_PAIR + args).hex()


def encode_all_pairs(index: int) -> str:
    return "0x" + (SELECTOR_ALL_PAIRS + encode(["uint256"], [index])).hex()


def decode_reserves(hex_result: str) -> Tuple[int, int]:
    reserve0, reserve1, _ = decode(["uint112", "uint112", "uint32"], hex_to_bytes(hex_result))
    return reserve0, reserve1


# =============================================================================
# ADAPTER
# =============================================================================

class UniswapV2Adapter(VenueQuoter):
    """
    Adapter for V2-style routers and factories.

    Usage:
        adapter = UniswapV2Adapter(provider, router, factory, name="sushiswap")
        amount_out = await adapter.quote(weth, usdc, 10**18)
    """

    family = VenueFamily.UNISWAP_V2

    def __init__(
        self,
        provider: RPCProvider,
        router: str,
        factory: str,
        name: str = "uniswap_v2",
    ):
        self.provider = provider
        self.router = normalize_address(router)
        self.factory = normalize_address(factory)
        self.name = name

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        call_data = encode_get_amounts_out(amount_in, [token_in, token_out])
        try:
            response = await self.provider.eth_call(to=self.router, data=call_data)
            amounts = decode_amounts(response)
        except (InfraError, DecodingError) as e:
            raise VenueUnavailableError(
                f"getAmountsOut failed on {self.name}: {e}",
                details={"venue": self.name, "token_in": token_in, "token_out": token_out},
            )
        if len(amounts) < 2:
            raise VenueUnavailableError(
                f"Short getAmountsOut response on {self.name}",
                details={"venue": self.name, "amounts": amounts},
            )
        return amounts[-1]

    async def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        result = await self.provider.eth_call(to=self.factory, data=encode_get_pair(token_a, token_b))
        pair = decode_address(result)
        return None if is_zero_address(pair) else normalize_address(pair)

    async def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        pair = await self.get_pool(token_a, token_b)
        if pair is None:
            return None
        reserves_hex, token0_hex = await asyncio.gather(
            self.provider.eth_call(to=pair, data=SELECTOR_GET_RESERVES),
            self.provider.eth_call(to=pair, data=SELECTOR_TOKEN0),
        )
        reserve0, reserve1 = decode_reserves(reserves_hex)
        if normalize_address(decode_address(token0_hex)) == normalize_address(token_a):
            return reserve0, reserve1
        return reserve1, reserve0

    async def pair_tokens(self, pair: str) -> Tuple[str, str]:
        token0_hex, token1_hex = await asyncio.gather(
            self.provider.eth_call(to=pair, data=SELECTOR_TOKEN0),
            self.provider.eth_call(to=pair, data=SELECTOR_TOKEN1),
        )
        return normalize_address(decode_address(token0_hex)), normalize_address(decode_address(token1_hex))

    async def recent_pairs(self, limit: int) -> List[Tuple[str, str]]:
        total = decode_uint(await self.provider.eth_call(to=self.factory, data=SELECTOR_ALL_PAIRS_LENGTH))
        pairs: List[Tuple[str, str]] = []
        for index in range(max(0, total - limit), total):
            try:
                pair = decode_address(
                    await self.provider.eth_call(to=self.factory, data=encode_all_pairs(index))
                )
                pairs.append(await self.pair_tokens(pair))
            except InfraError as e:
                logger.debug(f"Skipping pair #{index} on {self.name}: {e}")
        return pairs
