# PATH: strategy/simulator.py
"""
Off-chain profitability simulator.

PROFIT CONTRACT:
================

  gas_cost_native = gas price x gas limit            (wrapped-native wei)
  gas_cost_token  = gas_cost_native converted through the conversion
                    venue's wrapped-native -> token quote
                    (input is wrapped native: used as is;
                     conversion unavailable: 0, logged)
  net_profit      = expected_out - amount_in - gas_cost_token
  net_profit_pct  = net_profit / amount_in x 100
  net_profit_usd  = net_profit in token units x USD price
  expected_profit = expected_out - amount_in - loan premium
                    (what ArbitrageExecuted reports when the route runs
                     exactly as quoted; gas is paid outside the unit)

  actionable <=> net_profit > 0
                 and net_profit_usd >= min_profit_usd
                 and net_profit_pct >= thresholds.min_profit_pct

Non-loop routes get their return leg from the best active venue at
evaluation time. The execution unit picks its own return venue again.
================
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from chains.gas import gas_cost_wei
from core.logging import get_logger
from core.constants import DEFAULT_FLASH_LOAN_PREMIUM_BPS
from core.math import apply_bps, from_units, profit_ratio
from core.models import CalibrationThresholds, GasQuote, Route, RouteCandidate, Token
from core.validators import normalize_address
from dex.gateway import QuoteGateway
from strategy.price_oracle import PriceOracle

logger = get_logger(__name__)


@dataclass(frozen=True)
class Evaluation:
    """Simulator verdict for one candidate."""
    candidate: RouteCandidate
    gas_cost_native: int
    gas_cost_token: int
    net_profit: int
    net_profit_pct: Decimal
    net_profit_usd: Decimal
    token_price_usd: Decimal
    actionable: bool
    reason: str = ""
    premium: int = 0
    expected_profit_usd: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "pair": self.candidate.pair_id,
            "route": self.candidate.description,
            "amount_in": str(self.candidate.amount_in),
            "expected_out": str(self.candidate.expected_out),
            "gas_cost_token": str(self.gas_cost_token),
            "net_profit": str(self.net_profit),
            "net_profit_pct": str(self.net_profit_pct),
            "net_profit_usd": str(self.net_profit_usd),
            "expected_profit_usd": str(self.expected_profit_usd),
            "actionable": self.actionable,
            "reason": self.reason,
        }


class ProfitabilitySimulator:
    """
    Nets gas out of a candidate's gross profit and applies the minimums.

    Usage:
        simulator = ProfitabilitySimulator(gateway, oracle, weth, gas_limit=1_500_000,
                                           min_profit_usd=Decimal("5"))
        evaluation = await simulator.evaluate(candidate, gas_quote, thresholds)
    """

    def __init__(
        self,
        gateway: QuoteGateway,
        oracle: PriceOracle,
        wrapped_native: str,
        gas_limit: int,
        min_profit_usd: Decimal,
        premium_bps: int = DEFAULT_FLASH_LOAN_PREMIUM_BPS,
    ):
        self.gateway = gateway
        self.oracle = oracle
        self.wrapped_native = normalize_address(wrapped_native)
        self.gas_limit = gas_limit
        self.min_profit_usd = Decimal(min_profit_usd)
        self.premium_bps = premium_bps

    async def gas_cost_in_token(self, token: Token, gas_quote: GasQuote) -> int:
        cost = gas_cost_wei(gas_quote, self.gas_limit)
        if token.address == self.wrapped_native or cost == 0:
            return cost
        active = self.gateway.active_indices
        converted = None
        if active:
            converted = await self.gateway.quote(active[0], self.wrapped_native, token.address, cost)
        if converted is None:
            logger.warning(
                f"Gas cost conversion to {token.symbol} unavailable; counting 0",
                extra={"context": {"gas_cost_wei": cost}},
            )
            return 0
        return converted

    async def quote_route(self, route: Route, amount_in: int) -> Optional[int]:
        """Final amount of path[0] for the route, or None when any leg is unavailable."""
        amount = amount_in
        for i, venue in enumerate(route.venue_indices):
            amount = await self.gateway.quote(venue, route.path[i], route.path[i + 1], amount)
            if amount is None:
                return None
        if not route.is_loop:
            best = await self.gateway.best_quote(route.path[-1], route.path[0], amount)
            if best is None:
                return None
            amount = best[1]
        return amount

    async def evaluate(
        self,
        candidate: RouteCandidate,
        gas_quote: GasQuote,
        thresholds: CalibrationThresholds,
    ) -> Evaluation:
        if not candidate.route.is_loop:
            expected_out = await self.quote_route(candidate.route, candidate.amount_in)
            candidate = replace(candidate, expected_out=expected_out or 0)

        token = candidate.token_in
        gas_native = gas_cost_wei(gas_quote, self.gas_limit)
        gas_token = await self.gas_cost_in_token(token, gas_quote)
        net = candidate.gross_profit - gas_token
        net_pct = profit_ratio(net, candidate.amount_in) * 100
        price = await self.oracle.usd_price(token)
        net_usd = from_units(net, token.decimals) * price
        premium = apply_bps(candidate.amount_in, self.premium_bps)
        expected_usd = from_units(candidate.gross_profit - premium, token.decimals) * price

        if net <= 0:
            actionable, reason = False, "net_profit_not_positive"
        elif net_usd < self.min_profit_usd:
            actionable, reason = False, "below_min_profit_usd"
        elif net_pct < thresholds.min_profit_pct:
            actionable, reason = False, "below_min_profit_pct"
        else:
            actionable, reason = True, ""

        evaluation = Evaluation(
            candidate=candidate,
            gas_cost_native=gas_native,
            gas_cost_token=gas_token,
            net_profit=net,
            net_profit_pct=net_pct,
            net_profit_usd=net_usd,
            token_price_usd=price,
            actionable=actionable,
            reason=reason,
            premium=premium,
            expected_profit_usd=expected_usd,
        )
        if actionable:
            logger.info(
                f"Actionable: {candidate.pair_id} net ${net_usd:.2f} ({net_pct:.3f}%)",
                extra={"context": evaluation.to_dict()},
            )
        return evaluation
