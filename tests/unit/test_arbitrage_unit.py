"""
tests/unit/test_arbitrage_unit.py - Atomic execution unit tests.

Venues here quote fixed rates so the round-trip numbers are exact:
1 A -> 105 B on venue 0, 105 B -> 1.02 A on venue 1.
"""

from typing import Dict, Optional, Tuple

import pytest

from core.constants import GWEI, RevertReason, UnitState
from core.exceptions import PreconditionViolation, UnitRevert, VenueSwapError, VenueUnavailableError
from core.models import Route
from dex.venue import Venue
from execution.arbitrage_unit import ArbitrageUnit, UnitParameters
from execution.events import ArbitrageExecuted, ArbitrageFailed, ParametersUpdated
from execution.ledger import Ledger
from execution.lender import FlashLender

TOKEN_A = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20
OWNER = "0x" + "01" * 20
STRANGER = "0x" + "02" * 20
UNIT = "0x" + "03" * 20
LENDER = "0x" + "04" * 20

E18 = 10**18
NOW = 1_700_000_000
PREMIUM = E18 * 9 // 10_000


class FixedRateVenue(Venue):
    """Quotes amount * num // den; swaps deliver shortfall_bps less than quoted."""

    def __init__(self, ledger: Ledger, name: str, address: str):
        super().__init__(name, address)
        self.ledger = ledger
        self.rates: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self.shortfall_bps = 0
        self.on_swap = None

    def set_rate(self, token_in: str, token_out: str, num: int, den: int, inventory: int) -> None:
        self.rates[(token_in, token_out)] = (num, den)
        self.ledger.mint(token_out, self.address, inventory)

    def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        if (token_in, token_out) not in self.rates:
            raise VenueUnavailableError(f"No rate on {self.name}")
        num, den = self.rates[(token_in, token_out)]
        return amount_in * num // den

    def swap(self, sender, token_in, token_out, amount_in, min_out, recipient) -> int:
        if self.on_swap is not None:
            self.on_swap()
        out = self.quote(token_in, token_out, amount_in) * (10_000 - self.shortfall_bps) // 10_000
        if out < min_out:
            raise VenueSwapError("INSUFFICIENT_OUTPUT_AMOUNT")
        self.ledger.transfer_from(token_in, self.address, sender, self.address, amount_in)
        self.ledger.transfer(token_out, self.address, recipient, out)
        return out

    def get_pool(self, token_a: str, token_b: str) -> Optional[str]:
        return self.address


@pytest.fixture
def ledger():
    return Ledger(wrapped_native=TOKEN_A)


@pytest.fixture
def venues(ledger):
    v0 = FixedRateVenue(ledger, "v0", "0x" + "10" * 20)
    v1 = FixedRateVenue(ledger, "v1", "0x" + "11" * 20)
    v0.set_rate(TOKEN_A, TOKEN_B, 105, 1, 1_000 * E18)
    v1.set_rate(TOKEN_B, TOKEN_A, 102, 10_500, 1_000 * E18)
    return v0, v1


@pytest.fixture
def unit(ledger, venues):
    lender = FlashLender(ledger, LENDER)
    lender.fund(TOKEN_A, 100 * E18)
    unit = ArbitrageUnit(ledger, lender, OWNER, UNIT, params=UnitParameters())
    for venue in venues:
        unit.register_venue(OWNER, venue)
    unit.set_pair_active(OWNER, TOKEN_A, TOKEN_B, True)
    return unit


def loop_route(timestamp: int = NOW) -> Route:
    return Route(path=(TOKEN_A, TOKEN_B, TOKEN_A), venue_indices=(0, 1), timestamp=timestamp)


def execute(unit: ArbitrageUnit, route: Route, amount: int = E18, gas_price: int = 20 * GWEI,
            caller: str = OWNER) -> bool:
    with unit.ledger.transaction(caller, gas_price=gas_price, timestamp=NOW):
        return unit.execute_arbitrage(caller, TOKEN_A, TOKEN_B, amount, route)


def balances(ledger: Ledger, holders) -> Dict[Tuple[str, str], int]:
    return {(t, h): ledger.balance_of(t, h) for t in (TOKEN_A, TOKEN_B) for h in holders}


class TestRoundTrip:
    """Profitable loop on two venues."""

    def test_round_trip_succeeds(self, unit, ledger):
        assert execute(unit, loop_route()) is True

        event = unit.events.last
        assert isinstance(event, ArbitrageExecuted)
        assert event.amount_in == E18
        assert event.profit == 102 * E18 // 100 - E18 - PREMIUM
        assert ledger.balance_of(TOKEN_A, OWNER) == event.profit
        assert unit.last_attempt.state == UnitState.DONE

    def test_lender_repaid_with_premium(self, unit, ledger):
        execute(unit, loop_route())
        assert unit.lender.liquidity(TOKEN_A) == 100 * E18 + PREMIUM

    def test_unit_keeps_no_balance(self, unit, ledger):
        execute(unit, loop_route())
        assert ledger.balance_of(TOKEN_A, UNIT) == 0
        assert ledger.balance_of(TOKEN_B, UNIT) == 0

    def test_beneficiary_receives_profit(self, unit, ledger):
        beneficiary = "0x" + "be" * 20
        unit.set_beneficiary(OWNER, beneficiary)
        execute(unit, loop_route())
        assert ledger.balance_of(TOKEN_A, beneficiary) == unit.events.last.profit
        assert ledger.balance_of(TOKEN_A, OWNER) == 0

    def test_state_path(self, unit):
        execute(unit, loop_route())
        assert unit.last_attempt.path == [
            "IDLE", "LOAN_REQUESTED", "LOAN_RECEIVED", "SIMULATING",
            "SWAPPING", "REPAYING", "DISTRIBUTING", "DONE",
        ]
        assert unit.last_attempt.hop == 2


class TestFreshness:
    """Route validity window."""

    def test_route_at_window_edge_accepted(self, unit):
        assert execute(unit, loop_route(NOW - 300)) is True

    def test_stale_route_rejected(self, unit, ledger):
        before = balances(ledger, (UNIT, OWNER, LENDER))
        assert execute(unit, loop_route(NOW - 400)) is False

        event = unit.events.last
        assert isinstance(event, ArbitrageFailed)
        assert event.reason == RevertReason.ROUTE_EXPIRED.value
        assert balances(ledger, (UNIT, OWNER, LENDER)) == before


class TestSlippage:
    """Per-hop floors at 50 bps."""

    def test_shortfall_within_tolerance_passes(self, unit, venues):
        venues[1].shortfall_bps = 40
        assert execute(unit, loop_route()) is True
        realized = 102 * E18 // 100 * 9_960 // 10_000
        assert unit.events.last.profit == realized - E18 - PREMIUM

    def test_shortfall_beyond_tolerance_aborts(self, unit, venues, ledger):
        venues[1].shortfall_bps = 60
        before = balances(ledger, (UNIT, OWNER, LENDER))

        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.SWAP_FAILED.value
        assert balances(ledger, (UNIT, OWNER, LENDER)) == before
        assert unit.last_attempt.state == UnitState.REVERTED


class TestAtomicity:
    """A failed attempt changes balances back and leaves policy alone."""

    @pytest.mark.parametrize("shortfall_bps", [60, 10_000])
    def test_failure_after_first_hop_keeps_activation(self, unit, venues, ledger, shortfall_bps):
        venues[1].shortfall_bps = shortfall_bps
        params_before = unit.params
        before = balances(ledger, (UNIT, OWNER, LENDER, venues[0].address, venues[1].address))

        assert execute(unit, loop_route()) is False

        assert unit.is_pair_active(TOKEN_A, TOKEN_B)
        assert unit.is_pair_active(TOKEN_B, TOKEN_A)
        assert [record.active for record in unit.venues] == [True, True]
        assert unit.venue(0).active and unit.venue(1).active
        assert unit.params == params_before
        assert unit.paused is False
        assert unit.beneficiary == OWNER
        assert balances(ledger, (UNIT, OWNER, LENDER, venues[0].address, venues[1].address)) == before

    def test_failure_with_inactive_venue_keeps_other_flags(self, unit):
        unit.set_venue_active(OWNER, 1, False)

        assert execute(unit, loop_route()) is False

        assert unit.venue(0).active is True
        assert unit.venue(1).active is False
        assert unit.is_pair_active(TOKEN_A, TOKEN_B)

        unit.set_venue_active(OWNER, 1, True)
        assert execute(unit, loop_route()) is True


class TestProfitFloor:
    """min_profit_bps applies to simulation and to the realized result."""

    def test_simulation_below_floor(self, unit):
        unit.update_parameters(OWNER, min_profit_bps=300)
        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.SIMULATION_NO_PROFIT.value
        assert "SWAPPING" not in unit.last_attempt.path

    def test_realized_below_floor(self, unit, venues):
        # Simulation clears 160 bps, the 0.4% short delivery does not.
        unit.update_parameters(OWNER, min_profit_bps=160)
        venues[1].shortfall_bps = 40
        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.PROFIT_BELOW_THRESHOLD.value

    def test_unprofitable_route(self, unit, venues):
        venues[1].rates[(TOKEN_B, TOKEN_A)] = (100, 10_500)
        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.SIMULATION_NO_PROFIT.value


class TestPreconditions:
    def test_non_owner_hard_reverts(self, unit):
        count = len(unit.events)
        with pytest.raises(PreconditionViolation) as exc:
            execute(unit, loop_route(), caller=STRANGER)
        assert exc.value.reason == RevertReason.NOT_OWNER
        assert len(unit.events) == count

    def test_paused(self, unit):
        unit.pause(OWNER)
        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.PAUSED.value

        unit.unpause(OWNER)
        assert execute(unit, loop_route()) is True

    def test_inactive_pair(self, unit):
        unit.set_pair_active(OWNER, TOKEN_B, TOKEN_A, False)
        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.PAIR_NOT_ACTIVE.value

    def test_inactive_venue(self, unit):
        unit.set_venue_active(OWNER, 1, False)
        assert execute(unit, loop_route()) is False
        assert unit.events.last.reason == RevertReason.VENUE_NOT_ACTIVE.value

    def test_unknown_venue_index(self, unit):
        route = Route(path=(TOKEN_A, TOKEN_B, TOKEN_A), venue_indices=(0, 7), timestamp=NOW)
        assert execute(unit, route) is False
        assert unit.events.last.reason == RevertReason.INVALID_ROUTE.value

    def test_route_not_starting_with_token_a(self, unit):
        route = Route(path=(TOKEN_B, TOKEN_A, TOKEN_B), venue_indices=(1, 0), timestamp=NOW)
        assert execute(unit, route) is False
        assert unit.events.last.reason == RevertReason.INVALID_ROUTE.value

    def test_gas_price_too_high(self, unit):
        assert execute(unit, loop_route(), gas_price=101 * GWEI) is False
        assert unit.events.last.reason == RevertReason.GAS_PRICE_TOO_HIGH.value

    def test_lender_cannot_fund(self, unit):
        assert execute(unit, loop_route(), amount=1_000 * E18) is False
        assert unit.events.last.reason == RevertReason.INSUFFICIENT_LOAN.value


class TestReentrancy:
    def test_nested_call_hard_reverts(self, unit, venues):
        nested = {}

        def reenter():
            try:
                unit.execute_arbitrage(OWNER, TOKEN_A, TOKEN_B, E18, loop_route())
            except UnitRevert as e:
                nested["error"] = e
                raise

        venues[0].on_swap = reenter
        assert execute(unit, loop_route()) is False

        assert nested["error"].reason == RevertReason.REENTRANT_CALL
        # The nested call emitted nothing; the outer attempt failed once.
        failures = unit.events.of_type(ArbitrageFailed)
        assert len(failures) == 1
        assert failures[0].reason == RevertReason.SWAP_FAILED.value

    def test_lock_released_after_failure(self, unit, venues):
        venues[0].on_swap = lambda: unit.execute_arbitrage(OWNER, TOKEN_A, TOKEN_B, E18, loop_route())
        execute(unit, loop_route())
        venues[0].on_swap = None
        assert execute(unit, loop_route()) is True


class TestNonLoopRoute:
    """Return leg is picked by the unit at execution time."""

    def test_best_return_venue_used(self, unit, ledger):
        worse = FixedRateVenue(ledger, "v2", "0x" + "12" * 20)
        worse.set_rate(TOKEN_B, TOKEN_A, 100, 10_500, 1_000 * E18)
        unit.register_venue(OWNER, worse)

        route = Route(path=(TOKEN_A, TOKEN_B), venue_indices=(0,), timestamp=NOW)
        assert unit.best_return_venue(TOKEN_B, TOKEN_A, 105 * E18) == (1, 102 * E18 // 100)
        assert execute(unit, route) is True
        assert unit.events.last.profit == 102 * E18 // 100 - E18 - PREMIUM

    def test_simulate_route_reports_return_venue(self, unit):
        route = Route(path=(TOKEN_A, TOKEN_B), venue_indices=(0,), timestamp=NOW)
        result = unit.simulate_route(E18, route)
        assert result.return_venue == 1
        assert result.amounts == [E18, 105 * E18, 102 * E18 // 100]


class TestNativeEntry:
    def test_native_value_runs_route_without_loan(self, unit, ledger):
        ledger.credit_native(OWNER, 5 * E18)
        with ledger.transaction(OWNER, gas_price=GWEI, timestamp=NOW):
            ok = unit.execute_arbitrage_with_native_asset(OWNER, TOKEN_B, loop_route(), E18)

        assert ok is True
        profit = 102 * E18 // 100 - E18
        assert unit.events.last.profit == profit
        assert ledger.native_balance_of(OWNER) == 5 * E18
        assert ledger.balance_of(TOKEN_A, OWNER) == profit
        assert unit.lender.liquidity(TOKEN_A) == 100 * E18

    def test_no_value_attached(self, unit, ledger):
        with ledger.transaction(OWNER, timestamp=NOW):
            assert unit.execute_arbitrage_with_native_asset(OWNER, TOKEN_B, loop_route(), 0) is False
        assert unit.events.last.reason == RevertReason.NO_VALUE.value

    def test_failure_returns_value(self, unit, ledger, venues):
        ledger.credit_native(OWNER, E18)
        venues[1].shortfall_bps = 60
        with ledger.transaction(OWNER, timestamp=NOW):
            assert unit.execute_arbitrage_with_native_asset(OWNER, TOKEN_B, loop_route(), E18) is False
        assert ledger.native_balance_of(OWNER) == E18
        assert ledger.native_balance_of(UNIT) == 0


class TestAdministration:
    def test_update_parameters(self, unit):
        unit.update_parameters(OWNER, slippage_bps=20, route_validity_seconds=60)
        assert unit.params.slippage_bps == 20
        assert unit.params.route_validity_seconds == 60
        assert isinstance(unit.events.last, ParametersUpdated)

    def test_update_parameters_rejects_unknown(self, unit):
        with pytest.raises(ValueError):
            unit.update_parameters(OWNER, nonsense=1)

    def test_update_parameters_rejects_out_of_range(self, unit):
        with pytest.raises(ValueError):
            unit.update_parameters(OWNER, slippage_bps=10_000)
        assert unit.params.slippage_bps == 50

    @pytest.mark.parametrize("call", [
        lambda u: u.pause(STRANGER),
        lambda u: u.update_parameters(STRANGER, slippage_bps=10),
        lambda u: u.set_pair_active(STRANGER, TOKEN_A, TOKEN_B, False),
        lambda u: u.set_venue_active(STRANGER, 0, False),
        lambda u: u.rescue_tokens(STRANGER, TOKEN_A),
    ])
    def test_admin_requires_owner(self, unit, call):
        with pytest.raises(PreconditionViolation):
            call(unit)

    def test_pair_policy_symmetric(self, unit):
        assert unit.is_pair_active(TOKEN_B, TOKEN_A)
        unit.set_pair_active(OWNER, TOKEN_B, TOKEN_A, False)
        assert not unit.is_pair_active(TOKEN_A, TOKEN_B)

    def test_register_venue_returns_next_index(self, unit, ledger):
        extra = FixedRateVenue(ledger, "v2", "0x" + "12" * 20)
        assert unit.register_venue(OWNER, extra) == 2
        assert [r.venue.name for r in unit.venues] == ["v0", "v1", "v2"]

    def test_status(self, unit):
        status = unit.status()
        assert status["paused"] is False
        assert status["active_pairs"] == 1
        assert len(status["venues"]) == 2


class TestRescue:
    def test_rescue_tokens(self, unit, ledger):
        ledger.mint(TOKEN_B, UNIT, 7 * E18)
        assert unit.rescue_tokens(OWNER, TOKEN_B) == 7 * E18
        assert ledger.balance_of(TOKEN_B, OWNER) == 7 * E18
        assert ledger.balance_of(TOKEN_B, UNIT) == 0

    def test_rescue_partial(self, unit, ledger):
        ledger.mint(TOKEN_B, UNIT, 7 * E18)
        unit.rescue_tokens(OWNER, TOKEN_B, 2 * E18)
        assert ledger.balance_of(TOKEN_B, UNIT) == 5 * E18

    def test_rescue_native(self, unit, ledger):
        ledger.credit_native(UNIT, E18)
        assert unit.rescue_native(OWNER) == E18
        assert ledger.native_balance_of(OWNER) == E18

    def test_nothing_to_rescue(self, unit):
        with pytest.raises(UnitRevert) as exc:
            unit.rescue_tokens(OWNER, TOKEN_A)
        assert exc.value.reason == RevertReason.NOTHING_TO_RESCUE
