# PATH: execution/ledger.py
"""
In-process host ledger for the atomic execution unit.

LEDGER CONTRACT:
================
  - Token balances, allowances and native balances are plain integers
    in smallest units, keyed by lower-case address.
  - transfer() returns the amount actually credited to the recipient.
    Fee-on-transfer tokens burn fee_bps of every transfer, so the
    credited amount can be lower than the amount debited.
  - atomic() opens a frame. An exception escaping the frame restores
    every balance, allowance and native balance to the frame's entry
    snapshot and re-raises. Frames nest.
  - transaction() sets the transaction context (sender, gas price,
    timestamp) and wraps the call in an atomic frame, the way a chain
    executes one transaction.
"""

import copy
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from core.constants import BPS_DENOMINATOR
from core.exceptions import InsufficientAllowanceError, InsufficientBalanceError, LedgerError
from core.time import now_seconds
from core.validators import normalize_address


@dataclass
class TxContext:
    """Context of the transaction currently executing."""
    sender: str
    gas_price: int = 0
    timestamp: int = 0


class Ledger:
    """Balances, allowances and atomic frames for one simulated chain."""

    def __init__(self, wrapped_native: Optional[str] = None):
        self.wrapped_native = normalize_address(wrapped_native) if wrapped_native else None
        self._balances: Dict[str, Dict[str, int]] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._native: Dict[str, int] = {}
        self._transfer_fee_bps: Dict[str, int] = {}
        self._metadata: Dict[str, Tuple[str, str, int]] = {}
        self._frames: List[tuple] = []
        self.tx: Optional[TxContext] = None
        self.block_number = 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def balance_of(self, token: str, holder: str) -> int:
        return self._balances.get(normalize_address(token), {}).get(normalize_address(holder), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        key = (normalize_address(token), normalize_address(owner), normalize_address(spender))
        return self._allowances.get(key, 0)

    def native_balance_of(self, holder: str) -> int:
        return self._native.get(normalize_address(holder), 0)

    def now(self) -> int:
        """Timestamp of the executing transaction (wall clock outside one)."""
        if self.tx is not None and self.tx.timestamp:
            return self.tx.timestamp
        return now_seconds()

    @property
    def depth(self) -> int:
        return len(self._frames)

    # -------------------------------------------------------------------------
    # Token writes
    # -------------------------------------------------------------------------

    def register_token(self, token: str, symbol: str, name: str = "", decimals: int = 18) -> None:
        """Record ERC-20 metadata (symbol, name, decimals) for a token."""
        self._metadata[normalize_address(token)] = (symbol, name or symbol, decimals)

    def token_metadata(self, token: str) -> Optional[Tuple[str, str, int]]:
        return self._metadata.get(normalize_address(token))

    def set_transfer_fee(self, token: str, fee_bps: int) -> None:
        """Make token fee-on-transfer (fee is burned)."""
        self._transfer_fee_bps[normalize_address(token)] = fee_bps

    def mint(self, token: str, to: str, amount: int) -> None:
        token, to = normalize_address(token), normalize_address(to)
        holders = self._balances.setdefault(token, {})
        holders[to] = holders.get(to, 0) + amount

    def _debit(self, token: str, holder: str, amount: int) -> None:
        balance = self.balance_of(token, holder)
        if balance < amount:
            raise InsufficientBalanceError(
                f"Balance {balance} < {amount}",
                details={"token": token, "holder": holder},
            )
        self._balances[normalize_address(token)][normalize_address(holder)] = balance - amount

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> int:
        """Move amount from sender; returns the amount credited to recipient."""
        if amount < 0:
            raise LedgerError("Negative transfer amount", details={"amount": amount})
        token = normalize_address(token)
        self._debit(token, sender, amount)
        fee = amount * self._transfer_fee_bps.get(token, 0) // BPS_DENOMINATOR
        received = amount - fee
        self.mint(token, recipient, received)
        return received

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        key = (normalize_address(token), normalize_address(owner), normalize_address(spender))
        self._allowances[key] = amount

    def transfer_from(
        self,
        token: str,
        spender: str,
        owner: str,
        recipient: str,
        amount: int,
    ) -> int:
        """Spend an allowance; returns the amount credited to recipient."""
        allowed = self.allowance(token, owner, spender)
        if allowed < amount:
            raise InsufficientAllowanceError(
                f"Allowance {allowed} < {amount}",
                details={"token": token, "owner": owner, "spender": spender},
            )
        self.approve(token, owner, spender, allowed - amount)
        return self.transfer(token, owner, recipient, amount)

    # -------------------------------------------------------------------------
    # Native writes
    # -------------------------------------------------------------------------

    def credit_native(self, holder: str, amount: int) -> None:
        holder = normalize_address(holder)
        self._native[holder] = self._native.get(holder, 0) + amount

    def transfer_native(self, sender: str, recipient: str, amount: int) -> None:
        balance = self.native_balance_of(sender)
        if balance < amount:
            raise InsufficientBalanceError(
                f"Native balance {balance} < {amount}",
                details={"holder": sender},
            )
        self._native[normalize_address(sender)] = balance - amount
        self.credit_native(recipient, amount)

    def wrap(self, holder: str, amount: int) -> None:
        """Deposit native value into the wrapped-native token."""
        if not self.wrapped_native:
            raise LedgerError("No wrapped-native token configured")
        balance = self.native_balance_of(holder)
        if balance < amount:
            raise InsufficientBalanceError(
                f"Native balance {balance} < {amount}", details={"holder": holder}
            )
        self._native[normalize_address(holder)] = balance - amount
        self.mint(self.wrapped_native, holder, amount)

    def unwrap(self, holder: str, amount: int) -> None:
        """Withdraw wrapped-native into native value."""
        if not self.wrapped_native:
            raise LedgerError("No wrapped-native token configured")
        self._debit(self.wrapped_native, holder, amount)
        self.credit_native(holder, amount)

    # -------------------------------------------------------------------------
    # Atomicity
    # -------------------------------------------------------------------------

    def _snapshot(self) -> tuple:
        return (
            copy.deepcopy(self._balances),
            dict(self._allowances),
            dict(self._native),
        )

    def _restore(self, snapshot: tuple) -> None:
        balances, allowances, native = snapshot
        self._balances = balances
        self._allowances = allowances
        self._native = native

    @contextmanager
    def atomic(self) -> Iterator["Ledger"]:
        """All-or-nothing frame; see LEDGER CONTRACT."""
        snapshot = self._snapshot()
        self._frames.append(snapshot)
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise
        finally:
            self._frames.pop()

    @contextmanager
    def transaction(
        self,
        sender: str,
        gas_price: int = 0,
        timestamp: Optional[int] = None,
    ) -> Iterator[TxContext]:
        """Execute one transaction inside an atomic frame."""
        previous = self.tx
        self.tx = TxContext(
            sender=normalize_address(sender),
            gas_price=gas_price,
            timestamp=timestamp if timestamp is not None else now_seconds(),
        )
        self.block_number += 1
        try:
            with self.atomic():
                yield self.tx
        finally:
            self.tx = previous
