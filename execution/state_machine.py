# PATH: execution/state_machine.py
"""
Execution unit state machine.

UNIT STATE CONTRACT:
====================

One pass per transaction; every pass ends in DONE or REVERTED.

Transitions:
  IDLE           → LOAN_REQUESTED  (borrow requested / native value wrapped)
  LOAN_REQUESTED → LOAN_RECEIVED   (lender callback entered)
  LOAN_RECEIVED  → SIMULATING      (authoritative re-simulation)
  SIMULATING     → SWAPPING        (hop 1..k)
  SWAPPING       → REPAYING        (final balance checked)
  REPAYING       → DISTRIBUTING    (loan + premium returned)
  DISTRIBUTING   → DONE            (surplus forwarded)
  *              → REVERTED        (any constraint violation)

====================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.constants import UnitState
from core.exceptions import InvalidTransitionError

VALID_TRANSITIONS: Dict[UnitState, List[UnitState]] = {
    UnitState.IDLE: [UnitState.LOAN_REQUESTED, UnitState.REVERTED],
    UnitState.LOAN_REQUESTED: [UnitState.LOAN_RECEIVED, UnitState.REVERTED],
    UnitState.LOAN_RECEIVED: [UnitState.SIMULATING, UnitState.REVERTED],
    UnitState.SIMULATING: [UnitState.SWAPPING, UnitState.REVERTED],
    UnitState.SWAPPING: [UnitState.REPAYING, UnitState.REVERTED],
    UnitState.REPAYING: [UnitState.DISTRIBUTING, UnitState.REVERTED],
    UnitState.DISTRIBUTING: [UnitState.DONE, UnitState.REVERTED],
    UnitState.DONE: [],  # Terminal state
    UnitState.REVERTED: [],  # Terminal state
}


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: UnitState
    to_state: UnitState
    timestamp: str = ""
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()


@dataclass
class UnitStateMachine:
    """
    State machine for one execution attempt.

    Tracks current state and transition history; the hop counter is
    advanced while in SWAPPING.
    """
    attempt_id: str
    state: UnitState = UnitState.IDLE
    hop: int = 0
    history: List[StateTransition] = field(default_factory=list)

    def can_transition_to(self, new_state: UnitState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, [])

    def transition_to(
        self,
        new_state: UnitState,
        reason: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Transition to a new state.

        Raises InvalidTransitionError if transition is not valid.
        """
        if not self.can_transition_to(new_state):
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid transitions: {[s.value for s in VALID_TRANSITIONS.get(self.state, [])]}"
            )

        transition = StateTransition(
            from_state=self.state,
            to_state=new_state,
            reason=reason,
            metadata=metadata or {},
        )
        self.history.append(transition)
        self.state = new_state
        return transition

    def advance_hop(self) -> int:
        if self.state != UnitState.SWAPPING:
            raise InvalidTransitionError(f"Cannot swap in state {self.state.value}")
        self.hop += 1
        return self.hop

    def revert(self, reason: str) -> Optional[StateTransition]:
        """Move to REVERTED unless already terminal."""
        if self.is_terminal:
            return None
        return self.transition_to(UnitState.REVERTED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return len(VALID_TRANSITIONS.get(self.state, [])) == 0

    @property
    def is_success(self) -> bool:
        return self.state == UnitState.DONE

    @property
    def path(self) -> List[str]:
        """Visited states, starting with IDLE."""
        states = [UnitState.IDLE.value]
        states.extend(t.to_state.value for t in self.history)
        return states

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "state": self.state.value,
            "hop": self.hop,
            "is_terminal": self.is_terminal,
            "is_success": self.is_success,
            "history": [
                {
                    "from_state": t.from_state.value,
                    "to_state": t.to_state.value,
                    "timestamp": t.timestamp,
                    "reason": t.reason,
                }
                for t in self.history
            ],
        }
