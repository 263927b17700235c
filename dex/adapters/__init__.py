"""
dex/adapters/ - Venue families.

Adapters:
- constant_product: ledger-backed x*y=k venue (execution + quoting)
- uniswap_v2: router/factory RPC quoter for V2 forks
- uniswap_v3: QuoterV2 RPC quoter, one fee tier per instance
"""

from dex.adapters.constant_product import ConstantProductVenue, get_amount_out
from dex.adapters.uniswap_v2 import UniswapV2Adapter
from dex.adapters.uniswap_v3 import UniswapV3Adapter, UniswapV3QuoteResult

__all__ = [
    "ConstantProductVenue",
    "get_amount_out",
    "UniswapV2Adapter",
    "UniswapV3Adapter",
    "UniswapV3QuoteResult",
]
