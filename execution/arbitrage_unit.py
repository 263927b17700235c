# PATH: execution/arbitrage_unit.py
"""
Atomic execution unit.

Borrows the input asset, runs the hop sequence with per-hop slippage
floors, checks the loan is repayable with surplus, repays, forwards the
surplus to the beneficiary. Otherwise nothing happens except gas.

ATTEMPT CONTRACT:
=================
  Hard reverts (raise, no event):
    - caller is not the owner              "Caller is not the owner"
    - nested call while an attempt runs    "ReentrancyGuard: reentrant call"

  Every other failure (precondition, simulation, hop, repayment) rolls
  back the attempt's ledger frame, emits one ArbitrageFailed with the
  reason string and returns False.

  Success emits one ArbitrageExecuted and returns True; the beneficiary
  receives profit >= amount_in * min_profit_bps / 10_000.

PRECONDITIONS (checked before any funds move):
  not paused, pair active, route well formed, venues active,
  now - route.timestamp <= route_validity_seconds,
  tx gas price <= max_gas_price

HOPS:
  floor = quote * (10_000 - slippage_bps) / 10_000, enforced by the venue
  and again on the realized balance delta of the output token.

NON-LOOP ROUTES:
  after the last hop, swap back to the borrowed asset on whichever
  active venue quotes the most, chosen here at execution time.
=================
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from core.constants import (
    BPS_DENOMINATOR,
    DEFAULT_MAX_GAS_PRICE_GWEI,
    DEFAULT_MIN_PROFIT_BPS,
    DEFAULT_MIN_RESERVE_RATIO_BPS,
    DEFAULT_ROUTE_VALIDITY_SECONDS,
    DEFAULT_SLIPPAGE_BPS,
    GWEI,
    RevertReason,
    UnitState,
)
from core.exceptions import (
    FlashloopError,
    LedgerError,
    PreconditionViolation,
    QuoteError,
    RepaymentShortfall,
    SimulationNegative,
    SwapExecutionFailed,
    UnitRevert,
)
from core.logging import get_logger
from core.math import apply_bps, slippage_floor
from core.models import Route
from core.validators import normalize_address
from dex.venue import Venue
from execution.events import (
    ArbitrageExecuted,
    ArbitrageFailed,
    EventLog,
    PairStatusChanged,
    ParametersUpdated,
    Paused,
    TokensRescued,
    Unpaused,
    VenueAdded,
    VenueStatusChanged,
)
from execution.ledger import Ledger
from execution.lender import FlashLender
from execution.state_machine import UnitStateMachine

logger = get_logger(__name__)


@dataclass
class UnitParameters:
    """Numeric parameters, changed only through update_parameters."""
    min_profit_bps: int = DEFAULT_MIN_PROFIT_BPS
    max_gas_price: int = DEFAULT_MAX_GAS_PRICE_GWEI * GWEI
    min_reserve_ratio_bps: int = DEFAULT_MIN_RESERVE_RATIO_BPS
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    route_validity_seconds: int = DEFAULT_ROUTE_VALIDITY_SECONDS

    def validate(self) -> None:
        if not 0 <= self.min_profit_bps < BPS_DENOMINATOR:
            raise ValueError("min_profit_bps out of range")
        if not 0 <= self.min_reserve_ratio_bps < BPS_DENOMINATOR:
            raise ValueError("min_reserve_ratio_bps out of range")
        if not 0 <= self.slippage_bps < BPS_DENOMINATOR:
            raise ValueError("slippage_bps out of range")
        if self.max_gas_price <= 0 or self.route_validity_seconds <= 0:
            raise ValueError("max_gas_price and route_validity_seconds must be positive")


@dataclass
class VenueRecord:
    """Registered venue. Deactivated, never deleted."""
    index: int
    venue: Venue
    active: bool = True


@dataclass
class _Attempt:
    token_a: str
    token_b: str
    amount_in: int
    route: Route
    machine: UnitStateMachine
    pre_balance: int = 0
    amount_out: int = 0
    profit: int = 0


@dataclass
class SimulationResult:
    """Authoritative re-simulation of a route."""
    amounts: List[int] = field(default_factory=list)
    return_venue: Optional[int] = None

    @property
    def final_amount(self) -> int:
        return self.amounts[-1] if self.amounts else 0


class ArbitrageUnit:
    """
    In-process model of the flash-loan arbitrage contract.

    Usage:
        unit = ArbitrageUnit(ledger, lender, owner="0x...", address="0x...")
        unit.register_venue(owner, venue)
        unit.set_pair_active(owner, weth, usdc, True)
        with ledger.transaction(owner, gas_price=20 * GWEI):
            ok = unit.execute_arbitrage(owner, weth, usdc, 10**18, route)
    """

    def __init__(
        self,
        ledger: Ledger,
        lender: FlashLender,
        owner: str,
        address: str,
        beneficiary: Optional[str] = None,
        params: Optional[UnitParameters] = None,
    ):
        self.ledger = ledger
        self.lender = lender
        self.owner = normalize_address(owner)
        self.address = normalize_address(address)
        self.beneficiary = normalize_address(beneficiary) if beneficiary else self.owner
        self.params = params or UnitParameters()
        self.params.validate()
        self.paused = False
        self.events = EventLog()
        self.last_attempt: Optional[UnitStateMachine] = None

        self._venues: List[VenueRecord] = []
        self._active_pairs: Set[frozenset] = set()
        self._locked = False
        self._attempt: Optional[_Attempt] = None
        self._attempt_count = 0

    # =========================================================================
    # GUARDS
    # =========================================================================

    def _only_owner(self, caller: str) -> None:
        if normalize_address(caller) != self.owner:
            raise PreconditionViolation(RevertReason.NOT_OWNER, details={"caller": caller})

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        if self._locked:
            raise UnitRevert(RevertReason.REENTRANT_CALL)
        self._locked = True
        try:
            yield
        finally:
            self._locked = False

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    @property
    def venues(self) -> List[VenueRecord]:
        return list(self._venues)

    def venue(self, index: int) -> VenueRecord:
        if not 0 <= index < len(self._venues):
            raise PreconditionViolation(RevertReason.INVALID_ROUTE, details={"venue_index": index})
        return self._venues[index]

    def register_venue(self, caller: str, venue: Venue) -> int:
        self._only_owner(caller)
        index = len(self._venues)
        self._venues.append(VenueRecord(index=index, venue=venue))
        self.events.emit(VenueAdded(index=index, name=venue.name, address=venue.address))
        logger.info(
            "Venue registered",
            extra={"context": {"index": index, "venue": venue.name}},
        )
        return index

    def set_venue_active(self, caller: str, index: int, active: bool) -> None:
        self._only_owner(caller)
        record = self.venue(index)
        record.active = active
        self.events.emit(VenueStatusChanged(index=index, active=active))

    def set_pair_active(self, caller: str, token_a: str, token_b: str, active: bool) -> None:
        """Pair policy is symmetric: (A, B) and (B, A) are the same entry."""
        self._only_owner(caller)
        key = frozenset((normalize_address(token_a), normalize_address(token_b)))
        if active:
            self._active_pairs.add(key)
        else:
            self._active_pairs.discard(key)
        self.events.emit(PairStatusChanged(
            token_a=normalize_address(token_a),
            token_b=normalize_address(token_b),
            active=active,
        ))

    def is_pair_active(self, token_a: str, token_b: str) -> bool:
        return frozenset((normalize_address(token_a), normalize_address(token_b))) in self._active_pairs

    def update_parameters(self, caller: str, **changes: int) -> None:
        """
        Update numeric parameters (min_profit_bps, max_gas_price,
        min_reserve_ratio_bps, slippage_bps, route_validity_seconds).

        Raises:
            PreconditionViolation: Caller is not the owner
            ValueError: Unknown parameter or value out of range
        """
        self._only_owner(caller)
        unknown = set(changes) - set(self.params.__dict__)
        if unknown:
            raise ValueError(f"Unknown parameters: {sorted(unknown)}")
        updated = UnitParameters(**{**self.params.__dict__, **changes})
        updated.validate()
        self.params = updated
        self.events.emit(ParametersUpdated(changes=tuple(sorted(changes.items()))))
        logger.info("Unit parameters updated", extra={"context": dict(changes)})

    def set_beneficiary(self, caller: str, beneficiary: str) -> None:
        self._only_owner(caller)
        self.beneficiary = normalize_address(beneficiary)

    def pause(self, caller: str) -> None:
        self._only_owner(caller)
        self.paused = True
        self.events.emit(Paused(by=normalize_address(caller)))

    def unpause(self, caller: str) -> None:
        self._only_owner(caller)
        self.paused = False
        self.events.emit(Unpaused(by=normalize_address(caller)))

    def rescue_tokens(self, caller: str, token: str, amount: int = 0) -> int:
        """Send a stray token balance (all of it when amount is 0) to the owner."""
        self._only_owner(caller)
        balance = self.ledger.balance_of(token, self.address)
        amount = amount or balance
        if balance == 0 or amount > balance:
            raise UnitRevert(RevertReason.NOTHING_TO_RESCUE, details={"token": token})
        self.ledger.transfer(token, self.address, self.owner, amount)
        self.events.emit(TokensRescued(token=normalize_address(token), amount=amount, to=self.owner))
        return amount

    def rescue_native(self, caller: str, amount: int = 0) -> int:
        self._only_owner(caller)
        balance = self.ledger.native_balance_of(self.address)
        amount = amount or balance
        if balance == 0 or amount > balance:
            raise UnitRevert(RevertReason.NOTHING_TO_RESCUE, details={"token": "native"})
        self.ledger.transfer_native(self.address, self.owner, amount)
        self.events.emit(TokensRescued(token="native", amount=amount, to=self.owner))
        return amount

    # =========================================================================
    # SIMULATION (view)
    # =========================================================================

    def _active_venue(self, index: int) -> Venue:
        record = self.venue(index)
        if not record.active:
            raise PreconditionViolation(RevertReason.VENUE_NOT_ACTIVE, details={"venue_index": index})
        return record.venue

    def best_return_venue(self, token_in: str, token_out: str, amount_in: int) -> Optional[Tuple[int, int]]:
        """(venue_index, amount_out) of the best active venue, None if none can quote."""
        best: Optional[Tuple[int, int]] = None
        for record in self._venues:
            if not record.active:
                continue
            try:
                out = record.venue.quote(token_in, token_out, amount_in)
            except QuoteError:
                continue
            if best is None or out > best[1]:
                best = (record.index, out)
        return best

    def _check_reserves(self, venue: Venue, token_in: str, token_out: str, expected_out: int) -> None:
        ratio = self.params.min_reserve_ratio_bps
        if ratio == 0:
            return
        reserves = venue.reserves(token_in, token_out)
        if reserves is None:
            return
        reserve_out = reserves[1]
        if reserve_out - expected_out < apply_bps(reserve_out, ratio):
            raise SimulationNegative(
                RevertReason.INSUFFICIENT_RESERVES,
                details={"venue": venue.name, "reserve_out": reserve_out, "expected_out": expected_out},
            )

    def simulate_route(self, amount_in: int, route: Route) -> SimulationResult:
        """
        Replay the route's quotes against live pool state.

        Raises:
            SimulationNegative: A hop cannot be priced or would drain reserves
            PreconditionViolation: Unknown or inactive venue
        """
        result = SimulationResult(amounts=[amount_in])
        amount = amount_in
        for i, venue_index in enumerate(route.venue_indices):
            venue = self._active_venue(venue_index)
            token_in, token_out = route.path[i], route.path[i + 1]
            try:
                amount = venue.quote(token_in, token_out, amount)
            except QuoteError as e:
                raise SimulationNegative(
                    RevertReason.SIMULATION_NO_PROFIT,
                    details={"hop": i, "venue": venue.name, "error": str(e)},
                ) from e
            self._check_reserves(venue, token_in, token_out, amount)
            result.amounts.append(amount)

        if not route.is_loop:
            best = self.best_return_venue(route.path[-1], route.path[0], amount)
            if best is None:
                raise SimulationNegative(
                    RevertReason.SIMULATION_NO_PROFIT,
                    details={"hop": "return", "error": "no venue quotes the return swap"},
                )
            result.return_venue, amount = best
            self._check_reserves(
                self._venues[best[0]].venue, route.path[-1], route.path[0], amount
            )
            result.amounts.append(amount)
        return result

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _check_preconditions(self, token_a: str, token_b: str, route: Route) -> None:
        if self.paused:
            raise PreconditionViolation(RevertReason.PAUSED)
        if not self.is_pair_active(token_a, token_b):
            raise PreconditionViolation(RevertReason.PAIR_NOT_ACTIVE)
        if route.path[0] != token_a or token_b not in route.path[1:]:
            raise PreconditionViolation(
                RevertReason.INVALID_ROUTE,
                details={"path": list(route.path), "token_a": token_a, "token_b": token_b},
            )
        for venue_index in route.venue_indices:
            self._active_venue(venue_index)

        now = self.ledger.now()
        if now - route.timestamp > self.params.route_validity_seconds:
            raise PreconditionViolation(
                RevertReason.ROUTE_EXPIRED,
                details={"age_seconds": now - route.timestamp},
            )

        gas_price = self.ledger.tx.gas_price if self.ledger.tx is not None else 0
        if gas_price > self.params.max_gas_price:
            raise PreconditionViolation(
                RevertReason.GAS_PRICE_TOO_HIGH,
                details={"gas_price": gas_price, "max_gas_price": self.params.max_gas_price},
            )

    def _execute_hop(self, hop: int, venue: Venue, token_in: str, token_out: str, amount_in: int) -> int:
        """Swap one hop; returns the realized output (balance delta)."""
        try:
            expected = venue.quote(token_in, token_out, amount_in)
        except QuoteError as e:
            raise SwapExecutionFailed(
                RevertReason.SWAP_FAILED, details={"hop": hop, "venue": venue.name, "error": str(e)}
            ) from e

        floor = slippage_floor(expected, self.params.slippage_bps)
        before = self.ledger.balance_of(token_out, self.address)
        self.ledger.approve(token_in, self.address, venue.address, amount_in)
        try:
            venue.swap(self.address, token_in, token_out, amount_in, floor, self.address)
        except FlashloopError as e:
            raise SwapExecutionFailed(
                RevertReason.SWAP_FAILED, details={"hop": hop, "venue": venue.name, "error": str(e)}
            ) from e
        self.ledger.approve(token_in, self.address, venue.address, 0)

        realized = self.ledger.balance_of(token_out, self.address) - before
        if realized < floor:
            raise SwapExecutionFailed(
                RevertReason.SWAP_FAILED,
                details={"hop": hop, "venue": venue.name, "realized": realized, "floor": floor},
            )
        return realized

    def _run_route(self, attempt: _Attempt, owed: int) -> int:
        """Simulate, swap, and check the final balance; returns profit."""
        route, machine = attempt.route, attempt.machine
        threshold = apply_bps(attempt.amount_in, self.params.min_profit_bps)

        machine.transition_to(UnitState.SIMULATING)
        simulation = self.simulate_route(attempt.amount_in, route)
        if simulation.final_amount <= owed + threshold:
            raise SimulationNegative(
                RevertReason.SIMULATION_NO_PROFIT,
                details={"expected": simulation.final_amount, "required": owed + threshold},
            )

        machine.transition_to(UnitState.SWAPPING)
        amount = attempt.amount_in
        for i, venue_index in enumerate(route.venue_indices):
            machine.advance_hop()
            venue = self._active_venue(venue_index)
            amount = self._execute_hop(i, venue, route.path[i], route.path[i + 1], amount)

        if not route.is_loop:
            machine.advance_hop()
            best = self.best_return_venue(route.path[-1], attempt.token_a, amount)
            if best is None:
                raise SwapExecutionFailed(RevertReason.SWAP_FAILED, details={"hop": "return"})
            venue = self._venues[best[0]].venue
            amount = self._execute_hop(machine.hop - 1, venue, route.path[-1], attempt.token_a, amount)

        final = self.ledger.balance_of(attempt.token_a, self.address) - attempt.pre_balance
        machine.transition_to(UnitState.REPAYING)
        if final < owed:
            logger.error(
                "Repayment shortfall after positive simulation",
                extra={"context": {
                    "expected": simulation.final_amount,
                    "final": final,
                    "owed": owed,
                }},
            )
            raise RepaymentShortfall(
                RevertReason.REPAYMENT_SHORTFALL, details={"final": final, "owed": owed}
            )
        if final - owed <= threshold:
            raise UnitRevert(
                RevertReason.PROFIT_BELOW_THRESHOLD,
                details={"profit": final - owed, "threshold": threshold},
            )
        attempt.amount_out = final
        attempt.profit = final - owed
        return attempt.profit

    def _distribute(self, attempt: _Attempt) -> None:
        attempt.machine.transition_to(UnitState.DISTRIBUTING)
        self.ledger.transfer(attempt.token_a, self.address, self.beneficiary, attempt.profit)
        attempt.machine.transition_to(UnitState.DONE)

    def on_loan_received(
        self,
        caller: str,
        asset: str,
        amount: int,
        premium: int,
        initiator: str,
        callback_params: Any,
    ) -> bool:
        """Lender callback: runs the route with the borrowed funds."""
        if normalize_address(caller) != self.lender.address:
            raise UnitRevert(RevertReason.NOT_LENDER)
        attempt = self._attempt
        if attempt is None or normalize_address(initiator) != self.address:
            raise UnitRevert(RevertReason.NOT_INITIATOR)

        attempt.machine.transition_to(UnitState.LOAN_RECEIVED)
        received = self.ledger.balance_of(asset, self.address) - attempt.pre_balance
        if received < amount:
            raise PreconditionViolation(
                RevertReason.INSUFFICIENT_LOAN,
                details={"received": received, "requested": amount},
            )

        owed = amount + premium
        self._run_route(attempt, owed)
        self.ledger.approve(asset, self.address, self.lender.address, owed)
        self._distribute(attempt)
        return True

    def _begin(self, token_a: str, token_b: str, amount_in: int, route: Route) -> _Attempt:
        self._attempt_count += 1
        machine = UnitStateMachine(attempt_id=f"attempt-{self._attempt_count}")
        self.last_attempt = machine
        return _Attempt(
            token_a=token_a,
            token_b=token_b,
            amount_in=amount_in,
            route=route,
            machine=machine,
        )

    def _fail(self, attempt: _Attempt, error: UnitRevert) -> bool:
        attempt.machine.revert(str(error))
        self.events.emit(ArbitrageFailed(
            token_a=attempt.token_a,
            token_b=attempt.token_b,
            reason=error.reason.value,
            timestamp=self.ledger.now(),
        ))
        logger.warning(
            f"Arbitrage failed: {error.reason.value}",
            extra={"context": {
                "attempt": attempt.machine.attempt_id,
                "state_path": attempt.machine.path,
                **{k: str(v) for k, v in error.details.items()},
            }},
        )
        return False

    def _succeed(self, attempt: _Attempt) -> bool:
        self.events.emit(ArbitrageExecuted(
            token_a=attempt.token_a,
            token_b=attempt.token_b,
            amount_in=attempt.amount_in,
            amount_out=attempt.amount_out,
            profit=attempt.profit,
            timestamp=self.ledger.now(),
        ))
        logger.info(
            "Arbitrage executed",
            extra={"context": {
                "attempt": attempt.machine.attempt_id,
                "amount_in": attempt.amount_in,
                "profit": attempt.profit,
            }},
        )
        return True

    def execute_arbitrage(
        self,
        caller: str,
        token_a: str,
        token_b: str,
        amount_in: int,
        route: Route,
    ) -> bool:
        """
        Flash-borrow amount_in of token_a and run route.

        Returns:
            True on success, False when the attempt failed (see ArbitrageFailed)

        Raises:
            PreconditionViolation: Caller is not the owner
            UnitRevert: Re-entrant call
        """
        self._only_owner(caller)
        with self._non_reentrant():
            token_a, token_b = normalize_address(token_a), normalize_address(token_b)
            attempt = self._begin(token_a, token_b, amount_in, route)
            try:
                with self.ledger.atomic():
                    self._check_preconditions(token_a, token_b, route)
                    attempt.pre_balance = self.ledger.balance_of(token_a, self.address)
                    self._attempt = attempt
                    attempt.machine.transition_to(UnitState.LOAN_REQUESTED)
                    try:
                        self.lender.borrow(
                            self, token_a, amount_in, callback_params=route, initiator=self.address
                        )
                    except LedgerError as e:
                        raise UnitRevert(
                            RevertReason.INSUFFICIENT_LOAN, details={"error": str(e)}
                        ) from e
            except UnitRevert as e:
                return self._fail(attempt, e)
            finally:
                self._attempt = None
            return self._succeed(attempt)

    def execute_arbitrage_with_native_asset(
        self,
        caller: str,
        token_b: str,
        route: Route,
        value: int,
    ) -> bool:
        """
        Run route with attached native value instead of a loan.

        The value is wrapped; the principal goes back to the caller as
        native value and the surplus (wrapped) to the beneficiary.
        """
        self._only_owner(caller)
        with self._non_reentrant():
            token_a = self.ledger.wrapped_native or ""
            token_b = normalize_address(token_b)
            attempt = self._begin(token_a, token_b, value, route)
            try:
                with self.ledger.atomic():
                    if value <= 0:
                        raise PreconditionViolation(RevertReason.NO_VALUE)
                    try:
                        self.ledger.transfer_native(caller, self.address, value)
                    except LedgerError as e:
                        raise PreconditionViolation(
                            RevertReason.NO_VALUE, details={"error": str(e)}
                        ) from e
                    self._check_preconditions(token_a, token_b, route)
                    attempt.pre_balance = self.ledger.balance_of(token_a, self.address)

                    attempt.machine.transition_to(UnitState.LOAN_REQUESTED)
                    self.ledger.wrap(self.address, value)
                    attempt.machine.transition_to(UnitState.LOAN_RECEIVED)

                    self._run_route(attempt, owed=value)
                    self.ledger.unwrap(self.address, value)
                    self.ledger.transfer_native(self.address, caller, value)
                    self._distribute(attempt)
            except UnitRevert as e:
                return self._fail(attempt, e)
            return self._succeed(attempt)

    def status(self) -> Dict[str, Any]:
        """Summary for logs and health checks."""
        return {
            "address": self.address,
            "paused": self.paused,
            "venues": [
                {"index": r.index, "name": r.venue.name, "active": r.active} for r in self._venues
            ],
            "active_pairs": len(self._active_pairs),
            "params": dict(self.params.__dict__),
        }
