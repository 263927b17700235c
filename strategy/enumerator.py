# PATH: strategy/enumerator.py
"""
Route enumerator.

ENUMERATION CONTRACT:
=====================

  2-hop: A -> B on V1, B -> A on V2, for every ordered pair of distinct
         active venues (V1, V2).
  3-hop: A -> C on V1, C -> B on V2, B -> A on V3 (venues may repeat),
         only when max_hops >= 3, for at most max_candidate_tokens
         third tokens C not in {A, B}.

  A route is a candidate when its round-trip output exceeds the input.
  A branch stops at its first unavailable quote. Each leg is quoted at
  most once per enumeration call.

  Ranking: profit percentage, descending; the first candidate is the
  pair's best for this cycle.
=====================
"""

from typing import Dict, List, Optional, Sequence, Tuple

from core.logging import get_logger
from core.models import Route, RouteCandidate, Token
from dex.gateway import QuoteGateway

logger = get_logger(__name__)

_LegKey = Tuple[int, str, str, int]


class RouteEnumerator:
    """
    Builds and ranks cyclic candidates for a watched pair.

    Usage:
        enumerator = RouteEnumerator(gateway, max_hops=3, max_candidate_tokens=20)
        best = await enumerator.best_for_pair(weth, usdc, 10**18, intermediates=tokens)
    """

    def __init__(
        self,
        gateway: QuoteGateway,
        max_hops: int = 3,
        max_candidate_tokens: int = 20,
    ):
        if max_hops not in (2, 3):
            raise ValueError(f"max_hops must be 2 or 3, got {max_hops}")
        self.gateway = gateway
        self.max_hops = max_hops
        self.max_candidate_tokens = max_candidate_tokens

    async def _leg(
        self,
        memo: Dict[_LegKey, Optional[int]],
        venue: int,
        token_in: Token,
        token_out: Token,
        amount_in: int,
    ) -> Optional[int]:
        key = (venue, token_in.address, token_out.address, amount_in)
        if key not in memo:
            memo[key] = await self.gateway.quote(venue, token_in.address, token_out.address, amount_in)
        return memo[key]

    def _candidate(
        self,
        tokens: Tuple[Token, ...],
        venues: Tuple[int, ...],
        amount_in: int,
        amount_out: int,
    ) -> RouteCandidate:
        route = Route(
            path=tuple(t.address for t in tokens),
            venue_indices=venues,
            expected_profit=amount_out - amount_in,
        )
        return RouteCandidate(
            route=route,
            tokens=tokens,
            venue_names=tuple(self.gateway.name(v) for v in venues),
            amount_in=amount_in,
            expected_out=amount_out,
        )

    async def two_hop(
        self,
        token_a: Token,
        token_b: Token,
        amount_in: int,
        memo: Optional[Dict[_LegKey, Optional[int]]] = None,
    ) -> List[RouteCandidate]:
        memo = {} if memo is None else memo
        venues = self.gateway.active_indices
        candidates: List[RouteCandidate] = []

        for v1 in venues:
            mid = await self._leg(memo, v1, token_a, token_b, amount_in)
            if mid is None:
                continue
            for v2 in venues:
                if v2 == v1:
                    continue
                out = await self._leg(memo, v2, token_b, token_a, mid)
                if out is not None and out > amount_in:
                    candidates.append(
                        self._candidate((token_a, token_b, token_a), (v1, v2), amount_in, out)
                    )
        return candidates

    async def three_hop(
        self,
        token_a: Token,
        token_b: Token,
        amount_in: int,
        intermediates: Sequence[Token],
        memo: Optional[Dict[_LegKey, Optional[int]]] = None,
    ) -> List[RouteCandidate]:
        memo = {} if memo is None else memo
        venues = self.gateway.active_indices
        candidates: List[RouteCandidate] = []

        thirds = [t for t in intermediates if t != token_a and t != token_b]
        for token_c in thirds[: self.max_candidate_tokens]:
            for v1 in venues:
                amount_c = await self._leg(memo, v1, token_a, token_c, amount_in)
                if amount_c is None:
                    continue
                for v2 in venues:
                    amount_b = await self._leg(memo, v2, token_c, token_b, amount_c)
                    if amount_b is None:
                        continue
                    for v3 in venues:
                        out = await self._leg(memo, v3, token_b, token_a, amount_b)
                        if out is not None and out > amount_in:
                            candidates.append(self._candidate(
                                (token_a, token_c, token_b, token_a), (v1, v2, v3), amount_in, out
                            ))
        return candidates

    async def enumerate_pair(
        self,
        token_a: Token,
        token_b: Token,
        amount_in: int,
        intermediates: Sequence[Token] = (),
    ) -> List[RouteCandidate]:
        """All candidates for (A, B), best first."""
        memo: Dict[_LegKey, Optional[int]] = {}
        candidates = await self.two_hop(token_a, token_b, amount_in, memo)
        if self.max_hops >= 3 and intermediates:
            candidates.extend(await self.three_hop(token_a, token_b, amount_in, intermediates, memo))

        candidates.sort(key=lambda c: c.profit_pct, reverse=True)
        logger.debug(
            f"Enumerated {len(candidates)} candidates for {token_a.symbol}/{token_b.symbol}",
            extra={"context": {"quotes": len(memo)}},
        )
        return candidates

    async def best_for_pair(
        self,
        token_a: Token,
        token_b: Token,
        amount_in: int,
        intermediates: Sequence[Token] = (),
    ) -> Optional[RouteCandidate]:
        candidates = await self.enumerate_pair(token_a, token_b, amount_in, intermediates)
        return candidates[0] if candidates else None
