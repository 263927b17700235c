# PATH: strategy/__init__.py
"""
Strategy package for flashloop.

- enumerator: 2-hop and 3-hop cyclic route candidates per watched pair
- simulator: gas-netted profitability and actionability
- price_oracle: USD prices (configured anchors + CoinGecko)
"""

from strategy.enumerator import RouteEnumerator
from strategy.price_oracle import PriceOracle
from strategy.simulator import Evaluation, ProfitabilitySimulator

__all__ = [
    "Evaluation",
    "PriceOracle",
    "ProfitabilitySimulator",
    "RouteEnumerator",
]
