"""
discovery/registry.py - Token list and watched pairs.

Pipeline:
1. Load the token list (JSON) or start from the configured base tokens
2. Watch base x token pairs that have a pool on at least one venue
3. Every scan cycle, sample pairs that are due for a check
4. Periodically flag pairs with thin reserves (valued in wrapped native)
5. Periodically discover new tokens from the first venue's latest pairs

The token list is loaded at start and saved whenever it changes.
"""

import json
import random
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from core.logging import get_logger
from core.models import Token, pair_key
from core.validators import check_token_metadata, normalize_address
from dex.gateway import QuoteGateway

logger = get_logger(__name__)

MetadataReader = Callable[[str], Awaitable[Optional[Tuple[str, str, int]]]]


@dataclass
class WatchedPair:
    """A (base, token) pair the scan loop checks."""
    token_a: Token
    token_b: Token
    active: bool = True
    low_liquidity: bool = False
    last_checked: float = 0.0
    next_check: float = 0.0
    last_profit_usd: Decimal = Decimal("0")
    success_count: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return pair_key(self.token_a.address, self.token_b.address)

    @property
    def pair_id(self) -> str:
        return f"{self.token_a.symbol}/{self.token_b.symbol}"

    def is_due(self, now: float, recheck_seconds: float) -> bool:
        return now >= self.next_check and now - self.last_checked >= recheck_seconds

    def mark_checked(self, now: float) -> None:
        self.last_checked = now
        self.next_check = max(self.next_check, now)

    def defer(self, now: float, seconds: float) -> None:
        """Push the next check out (used after an execution attempt)."""
        self.next_check = now + seconds


class TokenRegistry:
    """
    Token list + watched pairs.

    Usage:
        registry = TokenRegistry(base_tokens, path=Path("data/token_list.json"))
        registry.load()
        await registry.build_watched_pairs(gateway)
        for pair in registry.sample_pairs(10, now, recheck_seconds=5): ...
    """

    def __init__(self, base_tokens: Sequence[Token], path: Optional[Path] = None):
        self.base_tokens: List[Token] = list(base_tokens)
        self.path = path
        self._tokens: Dict[str, Token] = {t.address: t for t in self.base_tokens}
        self.watched: List[WatchedPair] = []
        self._rejected: Set[str] = set()

    # -------------------------------------------------------------------------
    # Token list
    # -------------------------------------------------------------------------

    @property
    def tokens(self) -> List[Token]:
        return list(self._tokens.values())

    def get(self, address: str) -> Optional[Token]:
        return self._tokens.get(normalize_address(address))

    def __contains__(self, address: str) -> bool:
        return normalize_address(address) in self._tokens

    def add_token(self, token: Token) -> bool:
        if token.address in self._tokens:
            return False
        self._tokens[token.address] = token
        return True

    def load(self) -> int:
        """Load the saved token list; base tokens are always present."""
        if self.path is None or not self.path.exists():
            logger.info(f"Using {len(self.base_tokens)} base tokens")
            return len(self._tokens)
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load token list: {e}", extra={"context": {"path": str(self.path)}})
            return len(self._tokens)

        for entry in data:
            try:
                self.add_token(Token.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed token entry: {e}")
        logger.info(f"Loaded {len(self._tokens)} tokens from {self.path.name}")
        return len(self._tokens)

    def save(self) -> bool:
        if self.path is None:
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump([t.to_dict() for t in self.tokens], f, indent=2)
        except OSError as e:
            logger.error(f"Error saving token list: {e}")
            return False
        logger.info(f"Saved {len(self._tokens)} tokens to {self.path.name}")
        return True

    # -------------------------------------------------------------------------
    # Watched pairs
    # -------------------------------------------------------------------------

    def find_pair(self, token_a: str, token_b: str) -> Optional[WatchedPair]:
        key = pair_key(token_a, token_b)
        for pair in self.watched:
            if pair.key == key:
                return pair
        return None

    def _watch(self, base: Token, token: Token) -> Optional[WatchedPair]:
        if base == token or self.find_pair(base.address, token.address):
            return None
        pair = WatchedPair(token_a=base, token_b=token)
        self.watched.append(pair)
        return pair

    async def build_watched_pairs(self, gateway: QuoteGateway) -> int:
        """Watch every base x token pair with a pool on some venue."""
        for base in self.base_tokens:
            for token in self.tokens:
                if base == token or self.find_pair(base.address, token.address):
                    continue
                if await gateway.has_pool(base.address, token.address):
                    self._watch(base, token)
        logger.info(f"Initialized {len(self.watched)} token pairs for monitoring")
        return len(self.watched)

    def sample_pairs(
        self,
        count: int,
        now: float,
        recheck_seconds: float,
        rng: Optional[random.Random] = None,
    ) -> List[WatchedPair]:
        """Up to count random eligible pairs, minus those checked too recently."""
        rng = rng or random
        eligible = [p for p in self.watched if p.active and not p.low_liquidity]
        picked = rng.sample(eligible, min(count, len(eligible)))
        return [p for p in picked if p.is_due(now, recheck_seconds)]

    # -------------------------------------------------------------------------
    # Liquidity
    # -------------------------------------------------------------------------

    async def _value_in_native(
        self,
        gateway: QuoteGateway,
        wrapped_native: str,
        token: Token,
        amount: int,
    ) -> int:
        if token.address == normalize_address(wrapped_native):
            return amount
        active = gateway.active_indices
        if not active:
            return 0
        converted = await gateway.quote(active[0], token.address, wrapped_native, amount)
        return converted or 0

    async def check_liquidity(
        self,
        gateway: QuoteGateway,
        wrapped_native: str,
        min_native: int,
    ) -> int:
        """
        Flag pairs whose pool reserves are below min_native on any venue.

        Returns:
            Number of pairs flagged low_liquidity
        """
        flagged = 0
        for pair in self.watched:
            low = False
            for index in gateway.active_indices:
                reserves = await gateway.reserves(index, pair.token_a.address, pair.token_b.address)
                if reserves is None:
                    continue
                value_a = await self._value_in_native(gateway, wrapped_native, pair.token_a, reserves[0])
                value_b = await self._value_in_native(gateway, wrapped_native, pair.token_b, reserves[1])
                if value_a < min_native or value_b < min_native:
                    low = True
                    logger.debug(f"Low liquidity for {pair.pair_id} on {gateway.name(index)}")
                    break
            if low != pair.low_liquidity:
                logger.info(
                    f"Liquidity {'low' if low else 'restored'} for {pair.pair_id}",
                    extra={"context": {"min_native": min_native}},
                )
            pair.low_liquidity = low
            flagged += int(low)
        return flagged

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def _admit(self, address: str, read_metadata: MetadataReader) -> Optional[Token]:
        address = normalize_address(address)
        if address in self._tokens or address in self._rejected:
            return None
        metadata = await read_metadata(address)
        if metadata is None:
            self._rejected.add(address)
            return None
        symbol, name, decimals = metadata
        ok, reason = check_token_metadata(symbol, name, decimals)
        if not ok:
            logger.debug(f"Rejected token {address}: {reason}")
            self._rejected.add(address)
            return None

        token = Token(address=address, symbol=symbol, decimals=decimals, name=name)
        self.add_token(token)
        for base in self.base_tokens:
            self._watch(base, token)
        logger.info(f"Added new token: {symbol} ({address})")
        return token

    async def discover(
        self,
        gateway: QuoteGateway,
        read_metadata: MetadataReader,
        window: int = 100,
    ) -> List[Token]:
        """Inspect the first venue's most recent pairs for unknown tokens."""
        if len(gateway) == 0:
            return []
        recent = await gateway.quoter(0).recent_pairs(window)

        added: List[Token] = []
        for token0, token1 in recent:
            for address in (token0, token1):
                token = await self._admit(address, read_metadata)
                if token is not None:
                    added.append(token)

        if added:
            self.save()
        return added
