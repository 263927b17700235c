"""
tests/unit/test_state_machine.py - Execution unit state machine tests.
"""

import pytest

from core.constants import UnitState
from core.exceptions import InvalidTransitionError
from execution.state_machine import VALID_TRANSITIONS, UnitStateMachine

HAPPY_PATH = [
    UnitState.LOAN_REQUESTED,
    UnitState.LOAN_RECEIVED,
    UnitState.SIMULATING,
    UnitState.SWAPPING,
    UnitState.REPAYING,
    UnitState.DISTRIBUTING,
    UnitState.DONE,
]


class TestTransitions:
    def test_happy_path(self):
        machine = UnitStateMachine(attempt_id="a")
        for state in HAPPY_PATH:
            machine.transition_to(state)
        assert machine.is_terminal
        assert machine.is_success
        assert len(machine.history) == len(HAPPY_PATH)

    def test_skipping_a_state_fails(self):
        machine = UnitStateMachine(attempt_id="a")
        with pytest.raises(InvalidTransitionError):
            machine.transition_to(UnitState.SWAPPING)

    @pytest.mark.parametrize("state", [s for s in UnitState if s not in (UnitState.DONE, UnitState.REVERTED)])
    def test_every_live_state_can_revert(self, state):
        assert UnitState.REVERTED in VALID_TRANSITIONS[state]

    def test_terminal_states_have_no_exits(self):
        assert VALID_TRANSITIONS[UnitState.DONE] == []
        assert VALID_TRANSITIONS[UnitState.REVERTED] == []


class TestRevert:
    def test_revert_records_reason(self):
        machine = UnitStateMachine(attempt_id="a")
        machine.transition_to(UnitState.LOAN_REQUESTED)
        transition = machine.revert("Route expired")
        assert transition.reason == "Route expired"
        assert machine.state == UnitState.REVERTED
        assert machine.path == ["IDLE", "LOAN_REQUESTED", "REVERTED"]

    def test_revert_after_terminal_is_noop(self):
        machine = UnitStateMachine(attempt_id="a")
        machine.revert("first")
        assert machine.revert("second") is None
        assert len(machine.history) == 1


class TestHops:
    def test_hops_only_while_swapping(self):
        machine = UnitStateMachine(attempt_id="a")
        with pytest.raises(InvalidTransitionError):
            machine.advance_hop()
        for state in HAPPY_PATH[:4]:
            machine.transition_to(state)
        assert machine.advance_hop() == 1
        assert machine.advance_hop() == 2

    def test_to_dict(self):
        machine = UnitStateMachine(attempt_id="a")
        machine.transition_to(UnitState.LOAN_REQUESTED)
        data = machine.to_dict()
        assert data["state"] == "LOAN_REQUESTED"
        assert data["history"][0]["from_state"] == "IDLE"
