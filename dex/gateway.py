# PATH: dex/gateway.py
"""
Quote Gateway: one pricing entry point over every registered venue.

GATEWAY CONTRACT:
=================

  quote(venue_index, token_in, token_out, amount_in) -> int | None

  None means "venue unavailable for this pair": no pool, a reverting
  quote, an RPC failure, an inactive venue, or a zero output. Callers
  skip; nothing here is fatal to a scan cycle.

Venue indices are positions in registration order and match the
execution unit's venue indices.
=================
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.constants import VenueFamily
from core.exceptions import ConfigError, InfraError, QuoteError
from core.logging import get_logger
from dex.venue import VenueQuoter

logger = get_logger(__name__)


class QuoteGateway:
    """
    Routes quote requests to per-venue quoters.

    Usage:
        gateway = QuoteGateway([uni_v2, sushi])
        out = await gateway.quote(0, weth, usdc, 10**18)
        if out is None: ...  # unavailable, skip
    """

    def __init__(self, quoters: Sequence[VenueQuoter]):
        self._quoters: List[VenueQuoter] = list(quoters)
        self._active: Dict[int, bool] = {i: True for i in range(len(self._quoters))}
        self.unavailable_count = 0

    def __len__(self) -> int:
        return len(self._quoters)

    def quoter(self, index: int) -> VenueQuoter:
        return self._quoters[index]

    def name(self, index: int) -> str:
        return self._quoters[index].name

    def register(self, quoter: VenueQuoter) -> int:
        self._quoters.append(quoter)
        index = len(self._quoters) - 1
        self._active[index] = True
        return index

    def set_active(self, index: int, active: bool) -> None:
        if not 0 <= index < len(self._quoters):
            raise IndexError(f"Unknown venue index {index}")
        self._active[index] = active

    def is_active(self, index: int) -> bool:
        return self._active.get(index, False)

    @property
    def active_indices(self) -> List[int]:
        return [i for i in range(len(self._quoters)) if self._active[i]]

    async def quote(
        self,
        venue_index: int,
        token_in: str,
        token_out: str,
        amount_in: int,
    ) -> Optional[int]:
        if not self.is_active(venue_index) or amount_in <= 0:
            return None
        quoter = self._quoters[venue_index]
        try:
            amount_out = await quoter.quote(token_in, token_out, amount_in)
        except (QuoteError, InfraError) as e:
            self.unavailable_count += 1
            logger.debug(
                f"Quote unavailable on {quoter.name}: {e}",
                extra={"context": {"venue": quoter.name, "token_in": token_in, "token_out": token_out}},
            )
            return None
        return amount_out if amount_out > 0 else None

    async def best_quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        venues: Optional[Iterable[int]] = None,
    ) -> Optional[Tuple[int, int]]:
        """(venue_index, amount_out) of the highest quote, ties to the lowest index."""
        best: Optional[Tuple[int, int]] = None
        for index in (self.active_indices if venues is None else venues):
            amount_out = await self.quote(index, token_in, token_out, amount_in)
            if amount_out is not None and (best is None or amount_out > best[1]):
                best = (index, amount_out)
        return best

    async def get_pool(self, venue_index: int, token_a: str, token_b: str) -> Optional[str]:
        quoter = self._quoters[venue_index]
        try:
            return await quoter.get_pool(token_a, token_b)
        except InfraError as e:
            logger.debug(f"Pool lookup failed on {quoter.name}: {e}")
            return None

    async def has_pool(self, token_a: str, token_b: str) -> bool:
        for index in self.active_indices:
            if await self.get_pool(index, token_a, token_b) is not None:
                return True
        return False

    async def reserves(self, venue_index: int, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        quoter = self._quoters[venue_index]
        try:
            return await quoter.reserves(token_a, token_b)
        except InfraError as e:
            logger.debug(f"Reserve lookup failed on {quoter.name}: {e}")
            return None


def build_rpc_gateway(venues: Sequence, provider) -> QuoteGateway:
    """
    Build a gateway from VenueSettings entries.

    Raises:
        ConfigError: Unknown or incomplete venue definition
    """
    from dex.adapters.uniswap_v2 import UniswapV2Adapter
    from dex.adapters.uniswap_v3 import UniswapV3Adapter

    quoters: List[VenueQuoter] = []
    for venue in venues:
        if venue.family == VenueFamily.UNISWAP_V2:
            if not venue.router or not venue.factory:
                raise ConfigError(f"Venue {venue.name} needs router and factory")
            quoters.append(UniswapV2Adapter(provider, venue.router, venue.factory, name=venue.name))
        elif venue.family == VenueFamily.UNISWAP_V3:
            if not venue.quoter or not venue.factory:
                raise ConfigError(f"Venue {venue.name} needs quoter and factory")
            # V3 fee tiers are in hundredths of a bip
            quoters.append(
                UniswapV3Adapter(provider, venue.quoter, venue.factory, fee=venue.fee_bps * 100, name=venue.name)
            )
        else:
            raise ConfigError(
                f"Venue family {venue.family} cannot be quoted over RPC",
                details={"venue": venue.name},
            )
    return QuoteGateway(quoters)
