"""
chains/gas.py - Gas quotes and public-submission pricing.

GAS QUOTE CONTRACT:
  EIP1559:  fee_per_unit = latest base fee, priority = eth_maxPriorityFeePerGas
  LEGACY:   fee_per_unit = eth_gasPrice, priority = 0
  FALLBACK: fee_per_unit = 50 gwei (any RPC failure)

Public submission overbids to avoid being outbid:
  maxFeePerGas         = base * 1.2 + priority * 1.1
  maxPriorityFeePerGas = priority * 1.1
  gasPrice (legacy)    = price * priority_multiplier
Both bids are capped at the unit's max_gas_price when one is given.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from core.constants import (
    DEFAULT_BASE_FEE_MULTIPLIER,
    DEFAULT_PRIORITY_FEE_MULTIPLIER,
    FALLBACK_GAS_PRICE_GWEI,
    GWEI,
    GasBasis,
)
from core.exceptions import InfraError
from core.logging import get_logger
from core.models import GasQuote

logger = get_logger(__name__)


def _scale(value: int, multiplier: Decimal) -> int:
    return int(Decimal(value) * multiplier)


def fallback_quote() -> GasQuote:
    return GasQuote(fee_per_unit=FALLBACK_GAS_PRICE_GWEI * GWEI, basis=GasBasis.FALLBACK)


def submission_fees(
    quote: GasQuote,
    priority_multiplier: Decimal = DEFAULT_PRIORITY_FEE_MULTIPLIER,
    base_multiplier: Decimal = DEFAULT_BASE_FEE_MULTIPLIER,
    max_fee: Optional[int] = None,
) -> Dict[str, int]:
    """
    Transaction fee fields for a submission.

    max_fee caps the bid (gasPrice or maxFeePerGas) so a quote just under
    the unit's gas ceiling is not marked up past it.
    """
    if quote.basis == GasBasis.EIP1559:
        priority = _scale(quote.priority_fee_per_unit, priority_multiplier)
        max_fee_per_gas = _scale(quote.fee_per_unit, base_multiplier) + priority
        if max_fee is not None and max_fee_per_gas > max_fee:
            max_fee_per_gas = max_fee
            priority = min(priority, max_fee)
        return {
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": priority,
        }
    gas_price = _scale(quote.fee_per_unit, priority_multiplier)
    if max_fee is not None:
        gas_price = min(gas_price, max_fee)
    return {"gasPrice": gas_price}


def gas_cost_wei(quote: GasQuote, gas_limit: int) -> int:
    """Estimated cost of one execution at the quoted price."""
    return quote.effective_price * gas_limit


class GasOracle:
    """
    Gas quote source backed by an RPCProvider.

    The last successful quote is cached and reused by the scan loop
    between refreshes.
    """

    def __init__(self, provider: Any):
        self.provider = provider
        self._last: Optional[GasQuote] = None

    @property
    def last_quote(self) -> Optional[GasQuote]:
        return self._last

    async def quote(self) -> GasQuote:
        try:
            block = await self.provider.get_block("latest")
            base_fee = (block or {}).get("baseFeePerGas")
            if base_fee is not None:
                priority = await self.provider.get_max_priority_fee()
                quote = GasQuote(
                    fee_per_unit=int(base_fee, 16) if isinstance(base_fee, str) else int(base_fee),
                    priority_fee_per_unit=priority,
                    basis=GasBasis.EIP1559,
                )
            else:
                quote = GasQuote(
                    fee_per_unit=await self.provider.get_gas_price(),
                    basis=GasBasis.LEGACY,
                )
        except InfraError as e:
            logger.warning(
                "Gas quote failed, using fallback price",
                extra={"context": {"error": str(e), "fallback_gwei": FALLBACK_GAS_PRICE_GWEI}},
            )
            quote = fallback_quote()

        self._last = quote
        logger.debug(
            "Gas quote refreshed",
            extra={"context": {
                "basis": quote.basis.value,
                "effective_gwei": str(Decimal(quote.effective_price) / GWEI),
            }},
        )
        return quote


class StaticGasOracle:
    """Fixed gas price, for local ledgers and tests."""

    def __init__(self, price_wei: int, basis: GasBasis = GasBasis.LEGACY):
        self._quote = GasQuote(fee_per_unit=price_wei, basis=basis)

    @property
    def last_quote(self) -> GasQuote:
        return self._quote

    def set_price(self, price_wei: int) -> None:
        self._quote = GasQuote(fee_per_unit=price_wei, basis=self._quote.basis)

    async def quote(self) -> GasQuote:
        return self._quote
