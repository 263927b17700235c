"""
dex/adapters/constant_product.py - Ledger-backed x*y=k venue.

Pools hold their reserves as ordinary ledger balances at the pool
address, so the execution unit's balance checks and the min-reserve
check see the same numbers the venue prices from.

Pricing (Uniswap V2 getAmountOut, fee in bps):
    in_with_fee = amount_in * (10_000 - fee_bps)
    amount_out  = in_with_fee * reserve_out / (reserve_in * 10_000 + in_with_fee)

Swaps price the amount that actually arrived at the pool, so
fee-on-transfer tokens are handled like the V2 "supporting fee on
transfer" router path.
"""

from typing import Dict, Optional, Tuple

from eth_utils import keccak, to_checksum_address

from core.constants import BPS_DENOMINATOR, VenueFamily
from core.exceptions import VenueSwapError, VenueUnavailableError
from core.logging import get_logger
from core.models import pair_key
from core.validators import normalize_address
from dex.venue import Venue
from execution.ledger import Ledger

logger = get_logger(__name__)


def pool_address(venue_address: str, token_a: str, token_b: str) -> str:
    """Deterministic pool address for (venue, pair)."""
    a, b = pair_key(token_a, token_b)
    digest = keccak(bytes.fromhex(venue_address[2:] + a[2:] + b[2:]))
    return normalize_address(to_checksum_address(digest[-20:]))


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    in_with_fee = amount_in * (BPS_DENOMINATOR - fee_bps)
    return in_with_fee * reserve_out // (reserve_in * BPS_DENOMINATOR + in_with_fee)


class ConstantProductVenue(Venue):
    """
    Constant-product venue over a Ledger.

    Usage:
        venue = ConstantProductVenue(ledger, "dex_a", "0x...", fee_bps=30)
        venue.create_pool(weth, usdc, 100 * 10**18, 200_000 * 10**6)
        out = venue.quote(weth, usdc, 10**18)
    """

    family = VenueFamily.CONSTANT_PRODUCT

    def __init__(self, ledger: Ledger, name: str, address: str, fee_bps: int = 30):
        super().__init__(name, address)
        self.ledger = ledger
        self.fee_bps = fee_bps
        self._pools: Dict[Tuple[str, str], str] = {}

    def create_pool(
        self,
        token_a: str,
        token_b: str,
        reserve_a: int,
        reserve_b: int,
    ) -> str:
        """Create (or top up) a pool; reserves are minted to the pool address."""
        key = pair_key(token_a, token_b)
        pool = self._pools.get(key) or pool_address(self.address, token_a, token_b)
        self._pools[key] = pool
        self.ledger.mint(token_a, pool, reserve_a)
        self.ledger.mint(token_b, pool, reserve_b)
        return pool

    def set_reserves(self, token_a: str, token_b: str, reserve_a: int, reserve_b: int) -> None:
        """Force exact reserves (moves the price); used to model market moves."""
        pool = self._require_pool(token_a, token_b)
        for token, target in ((token_a, reserve_a), (token_b, reserve_b)):
            current = self.ledger.balance_of(token, pool)
            if target > current:
                self.ledger.mint(token, pool, target - current)
            elif target < current:
                self.ledger.transfer(token, pool, self.address, current - target)

    def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        return self._pools.get(pair_key(token_a, token_b))

    def pairs(self) -> list:
        """Token pairs with a pool, in creation order."""
        return list(self._pools.keys())

    def _require_pool(self, token_a: str, token_b: str) -> str:
        pool = self.get_pool(token_a, token_b)
        if pool is None:
            raise VenueUnavailableError(
                f"No pool on {self.name}",
                details={"venue": self.name, "token_a": token_a, "token_b": token_b},
            )
        return pool

    def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        pool = self.get_pool(token_a, token_b)
        if pool is None:
            return None
        return self.ledger.balance_of(token_a, pool), self.ledger.balance_of(token_b, pool)

    def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        pool = self._require_pool(token_in, token_out)
        reserve_in = self.ledger.balance_of(token_in, pool)
        reserve_out = self.ledger.balance_of(token_out, pool)
        return get_amount_out(amount_in, reserve_in, reserve_out, self.fee_bps)

    def swap(
        self,
        sender: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_out: int,
        recipient: str,
    ) -> int:
        pool = self.get_pool(token_in, token_out)
        if pool is None:
            raise VenueSwapError(
                f"No pool on {self.name}",
                details={"venue": self.name, "token_in": token_in, "token_out": token_out},
            )

        reserve_in = self.ledger.balance_of(token_in, pool)
        reserve_out = self.ledger.balance_of(token_out, pool)
        self.ledger.transfer_from(token_in, self.address, sender, pool, amount_in)
        actual_in = self.ledger.balance_of(token_in, pool) - reserve_in

        amount_out = get_amount_out(actual_in, reserve_in, reserve_out, self.fee_bps)
        if amount_out < min_out:
            raise VenueSwapError(
                "INSUFFICIENT_OUTPUT_AMOUNT",
                details={"venue": self.name, "amount_out": amount_out, "min_out": min_out},
            )

        self.ledger.transfer(token_out, pool, recipient, amount_out)
        logger.debug(
            "Swap executed",
            extra={"context": {
                "venue": self.name,
                "amount_in": actual_in,
                "amount_out": amount_out,
            }},
        )
        return amount_out
