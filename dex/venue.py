"""
dex/venue.py - Venue capability interface.

A venue is one liquidity source (a DEX deployment). The execution unit
and the local quote adapter depend only on this interface:

  quote(token_in, token_out, amount_in) -> amount_out
      Deterministic output for the current pool state.
      Raises VenueUnavailableError when the venue has no pool for the pair.

  swap(sender, token_in, token_out, amount_in, min_out, recipient) -> amount_out
      Pulls amount_in from sender via allowance, delivers to recipient.
      Raises VenueSwapError when it cannot deliver at least min_out.

  get_pool(token_a, token_b) -> pool address or None

VenueQuoter is the async, read-only view used by the quote gateway; RPC
adapters implement it directly, LocalVenueQuoter wraps a Venue.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from core.constants import VenueFamily
from core.validators import normalize_address


class Venue(ABC):
    """Swap-execution and pool-lookup capability of one venue family."""

    family: VenueFamily = VenueFamily.CONSTANT_PRODUCT

    def __init__(self, name: str, address: str):
        self.name = name
        self.address = normalize_address(address)

    @abstractmethod
    def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        ...

    @abstractmethod
    def swap(
        self,
        sender: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_out: int,
        recipient: str,
    ) -> int:
        ...

    @abstractmethod
    def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        ...

    def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        """(reserve_a, reserve_b) of the pair's pool, None without a pool."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, address={self.address})"


class VenueQuoter(ABC):
    """
    Async pricing capability of one venue, as seen by the off-chain side.

    quote() raises QuoteError when the venue cannot price the pair; the
    gateway turns that into "unavailable".
    """

    family: VenueFamily = VenueFamily.CONSTANT_PRODUCT
    name: str = ""

    @abstractmethod
    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        ...

    @abstractmethod
    async def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        ...

    async def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        return None

    async def recent_pairs(self, limit: int) -> List[Tuple[str, str]]:
        """Most recently created pairs, oldest first."""
        return []


class LocalVenueQuoter(VenueQuoter):
    """VenueQuoter over an in-process Venue."""

    def __init__(self, venue: Venue):
        self.venue = venue
        self.name = venue.name
        self.family = venue.family

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        return self.venue.quote(token_in, token_out, amount_in)

    async def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        return self.venue.get_pool(token_a, token_b)

    async def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        return self.venue.reserves(token_a, token_b)

    async def recent_pairs(self, limit: int) -> List[Tuple[str, str]]:
        pairs = getattr(self.venue, "pairs", None)
        if pairs is None:
            return []
        return list(pairs())[-limit:]
