# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for flashloop tests.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.exceptions import VenueUnavailableError  # noqa: E402
from core.models import Token  # noqa: E402
from dex.venue import VenueQuoter  # noqa: E402
from execution.arbitrage_unit import UnitParameters  # noqa: E402
from strategy.jobs.local_market import DAI, OWNER, USDC, WETH, build_local_market  # noqa: E402


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture
def weth():
    return Token(WETH, "WETH", 18, "Wrapped Ether")


@pytest.fixture
def usdc():
    return Token(USDC, "USDC", 6, "USD Coin")


@pytest.fixture
def dai():
    return Token(DAI, "DAI", 18, "Dai Stablecoin")


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def market():
    """Demo market: dex_a and dex_b price WETH/USDC ~4% apart."""
    return build_local_market(UnitParameters())


class StaticQuoter(VenueQuoter):
    """VenueQuoter with fixed rates: out = amount * num // den."""

    def __init__(self, name: str, rates: Optional[Dict[Tuple[str, str], Tuple[int, int]]] = None):
        self.name = name
        self.rates = dict(rates or {})
        self.reserve_map: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self.pairs: List[Tuple[str, str]] = []
        self.calls: List[Tuple[str, str, int]] = []
        self.error: Optional[Exception] = None

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        self.calls.append((token_in, token_out, amount_in))
        if self.error is not None:
            raise self.error
        if (token_in, token_out) not in self.rates:
            raise VenueUnavailableError(f"No pool on {self.name}")
        num, den = self.rates[(token_in, token_out)]
        return amount_in * num // den

    async def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        if (token_a, token_b) in self.rates or (token_b, token_a) in self.rates:
            return "0x" + "99" * 20
        return None

    async def reserves(self, token_a: str, token_b: str) -> Optional[Tuple[int, int]]:
        return self.reserve_map.get((token_a, token_b))

    async def recent_pairs(self, limit: int) -> List[Tuple[str, str]]:
        return self.pairs[-limit:]


@pytest.fixture
def quoter_factory():
    return StaticQuoter
