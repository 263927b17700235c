# PATH: strategy/price_oracle.py
"""
Reference USD price oracle.

PRICE CONTRACT:
- Anchored tokens (wrapped native, stables) use configured prices
- Everything else: CoinGecko simple/token_price, cached for cache_seconds
- Unknown or failed lookups price at 0 (callers treat 0 as not actionable)
"""

import time
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

import httpx

from core.logging import get_logger
from core.math import from_units, safe_decimal
from core.models import Token
from core.validators import normalize_address

logger = get_logger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"

# chain_id -> CoinGecko asset platform
COINGECKO_PLATFORMS: Dict[int, str] = {
    1: "ethereum",
    10: "optimistic-ethereum",
    56: "binance-smart-chain",
    137: "polygon-pos",
    8453: "base",
    42161: "arbitrum-one",
}


class PriceOracle:
    """
    USD prices for tokens.

    Usage:
        oracle = PriceOracle({weth: Decimal("2000"), usdc: Decimal("1")})
        price = await oracle.usd_price(token)
    """

    def __init__(
        self,
        anchors: Optional[Mapping[str, Decimal]] = None,
        chain_id: int = 1,
        api_key: str = "",
        cache_seconds: float = 60.0,
        base_url: str = COINGECKO_BASE_URL,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.anchors: Dict[str, Decimal] = {
            normalize_address(k): Decimal(v) for k, v in (anchors or {}).items()
        }
        self.platform = COINGECKO_PLATFORMS.get(chain_id, "ethereum")
        self.api_key = api_key
        self.cache_seconds = cache_seconds
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cache: Dict[str, Tuple[float, Decimal]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"accept": "application/json"}
            if self.api_key:
                headers["x-cg-demo-api-key"] = self.api_key
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def set_anchor(self, address: str, price: Decimal) -> None:
        self.anchors[normalize_address(address)] = Decimal(price)

    async def usd_price(self, token: Token) -> Decimal:
        anchor = self.anchors.get(token.address)
        if anchor is not None:
            return anchor

        cached = self._cache.get(token.address)
        if cached and time.monotonic() - cached[0] < self.cache_seconds:
            return cached[1]

        price = await self._fetch(token)
        self._cache[token.address] = (time.monotonic(), price)
        return price

    async def _fetch(self, token: Token) -> Decimal:
        url = f"{self.base_url}/simple/token_price/{self.platform}"
        params = {"contract_addresses": token.address, "vs_currencies": "usd"}
        try:
            client = await self._get_client()
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"Failed to get USD price for {token.symbol}: {e}",
                extra={"context": {"token": token.address}},
            )
            return Decimal("0")

        entry = data.get(token.address) or data.get(token.address.lower()) or {}
        return safe_decimal(entry.get("usd"))

    async def usd_value(self, token: Token, amount: int) -> Decimal:
        """USD value of a smallest-unit amount."""
        price = await self.usd_price(token)
        return from_units(amount, token.decimals) * price
