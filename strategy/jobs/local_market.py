# PATH: strategy/jobs/local_market.py
"""
In-process demo market for dry runs and integration tests.

Two constant-product venues price WETH/USDC about 4% apart, so a
WETH -> USDC -> WETH loop across them is profitable until arbitraged
away. A DAI leg gives the 3-hop enumerator something to work with.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from config import BotConfig, ChainSettings, TokenSettings, TradingSettings, VenueSettings
from core.constants import VenueFamily
from core.models import Token
from dex.adapters.constant_product import ConstantProductVenue
from execution.arbitrage_unit import ArbitrageUnit, UnitParameters
from execution.ledger import Ledger
from execution.lender import FlashLender

WETH = "0x" + "c0" * 20
USDC = "0x" + "a0" * 20
DAI = "0x" + "6b" * 20

OWNER = "0x" + "0a" * 20
UNIT_ADDRESS = "0x" + "ab" * 20
LENDER_ADDRESS = "0x" + "1e" * 20

E18 = 10**18
E6 = 10**6

DEMO_TOKENS: List[Token] = [
    Token(WETH, "WETH", 18, "Wrapped Ether"),
    Token(USDC, "USDC", 6, "USD Coin"),
    Token(DAI, "DAI", 18, "Dai Stablecoin"),
]


@dataclass
class LocalMarket:
    """Everything a LocalChainClient run needs."""
    ledger: Ledger
    lender: FlashLender
    unit: ArbitrageUnit
    venues: List[ConstantProductVenue]
    tokens: Dict[str, Token] = field(default_factory=dict)

    @property
    def owner(self) -> str:
        return self.unit.owner


def demo_config() -> BotConfig:
    """BotConfig matching build_local_market()."""
    return BotConfig(
        chain=ChainSettings(chain_id=31337, name="local", wrapped_native=WETH, block_time_seconds=1),
        venues=[
            VenueSettings(name="dex_a", family=VenueFamily.CONSTANT_PRODUCT, fee_bps=30),
            VenueSettings(name="dex_b", family=VenueFamily.CONSTANT_PRODUCT, fee_bps=30),
        ],
        tokens=[
            TokenSettings(WETH, "WETH", 18, "Wrapped Ether", is_base=True, usd_price=Decimal("2000")),
            TokenSettings(USDC, "USDC", 6, "USD Coin", is_base=True, usd_price=Decimal("1")),
            TokenSettings(DAI, "DAI", 18, "Dai Stablecoin", usd_price=Decimal("1")),
        ],
        trading=TradingSettings(max_gas_price_gwei=Decimal("100")),
    )


def build_local_market(params: Optional[UnitParameters] = None) -> LocalMarket:
    ledger = Ledger(wrapped_native=WETH)
    for token in DEMO_TOKENS:
        ledger.register_token(token.address, token.symbol, token.name, token.decimals)

    dex_a = ConstantProductVenue(ledger, "dex_a", "0x" + "da" * 20, fee_bps=30)
    dex_b = ConstantProductVenue(ledger, "dex_b", "0x" + "db" * 20, fee_bps=30)

    dex_a.create_pool(WETH, USDC, 500 * E18, 1_000_000 * E6)
    dex_b.create_pool(WETH, USDC, 500 * E18, 1_040_000 * E6)
    dex_a.create_pool(WETH, DAI, 500 * E18, 1_000_000 * E18)
    dex_b.create_pool(WETH, DAI, 500 * E18, 1_000_000 * E18)
    dex_a.create_pool(DAI, USDC, 1_000_000 * E18, 1_000_000 * E6)

    lender = FlashLender(ledger, LENDER_ADDRESS)
    lender.fund(WETH, 1_000 * E18)
    lender.fund(USDC, 5_000_000 * E6)
    lender.fund(DAI, 5_000_000 * E18)

    unit = ArbitrageUnit(ledger, lender, OWNER, UNIT_ADDRESS, params=params)
    for venue in (dex_a, dex_b):
        unit.register_venue(OWNER, venue)
    for a, b in ((WETH, USDC), (WETH, DAI), (USDC, DAI)):
        unit.set_pair_active(OWNER, a, b, True)

    return LocalMarket(
        ledger=ledger,
        lender=lender,
        unit=unit,
        venues=[dex_a, dex_b],
        tokens={t.symbol: t for t in DEMO_TOKENS},
    )
