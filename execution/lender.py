"""
execution/lender.py - Flash lender.

borrow(receiver, asset, amount, callback_params, referral):
  1. transfer amount to the receiver
  2. call receiver.on_loan_received(lender, asset, amount, premium,
     initiator, callback_params); it must return True
  3. pull amount + premium back through the receiver's allowance

Any failure raises; the surrounding ledger frame undoes the loan.
"""

from typing import Any, Protocol

from core.constants import BPS_DENOMINATOR, DEFAULT_FLASH_LOAN_PREMIUM_BPS
from core.exceptions import InsufficientBalanceError, LedgerError
from core.logging import get_logger
from core.validators import normalize_address
from execution.ledger import Ledger

logger = get_logger(__name__)


class LoanReceiver(Protocol):
    address: str

    def on_loan_received(
        self,
        caller: str,
        asset: str,
        amount: int,
        premium: int,
        initiator: str,
        callback_params: Any,
    ) -> bool:
        ...


class FlashLender:
    """Single-asset flash loans with a fixed premium."""

    def __init__(
        self,
        ledger: Ledger,
        address: str,
        premium_bps: int = DEFAULT_FLASH_LOAN_PREMIUM_BPS,
    ):
        self.ledger = ledger
        self.address = normalize_address(address)
        self.premium_bps = premium_bps

    def premium_for(self, amount: int) -> int:
        return amount * self.premium_bps // BPS_DENOMINATOR

    def fund(self, asset: str, amount: int) -> None:
        """Seed lender liquidity."""
        self.ledger.mint(asset, self.address, amount)

    def liquidity(self, asset: str) -> int:
        return self.ledger.balance_of(asset, self.address)

    def borrow(
        self,
        receiver: LoanReceiver,
        asset: str,
        amount: int,
        callback_params: Any = None,
        referral: int = 0,
        initiator: str = "",
    ) -> bool:
        """
        Lend amount of asset to receiver for the duration of the callback.

        Raises:
            InsufficientBalanceError: Lender cannot fund the loan
            LedgerError: Callback declined, or repayment could not be pulled
        """
        available = self.liquidity(asset)
        if available < amount:
            raise InsufficientBalanceError(
                f"Lender liquidity {available} < {amount}",
                details={"asset": asset, "referral": referral},
            )

        premium = self.premium_for(amount)
        self.ledger.transfer(asset, self.address, receiver.address, amount)

        ok = receiver.on_loan_received(
            self.address,
            normalize_address(asset),
            amount,
            premium,
            normalize_address(initiator or receiver.address),
            callback_params,
        )
        if not ok:
            raise LedgerError("Loan callback returned false", details={"asset": asset})

        self.ledger.transfer_from(asset, self.address, receiver.address, self.address, amount + premium)
        logger.debug(
            "Flash loan repaid",
            extra={"context": {"asset": asset, "amount": amount, "premium": premium}},
        )
        return True
