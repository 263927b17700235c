# PATH: execution/__init__.py
"""
flashloop execution layer.

On-chain side (modelled in-process):
- ledger: balances, allowances, atomic frames
- lender: flash loans with a premium
- state_machine: UnitState transitions for one attempt
- arbitrage_unit: the atomic execution unit
- events: events the unit emits

Off-chain side (import directly, they pull in strategy/monitoring):
- chain_client, relay, accounting, orchestrator
"""

from execution.arbitrage_unit import ArbitrageUnit, UnitParameters
from execution.events import ArbitrageExecuted, ArbitrageFailed, EventLog
from execution.ledger import Ledger
from execution.lender import FlashLender
from execution.state_machine import VALID_TRANSITIONS, StateTransition, UnitStateMachine

__all__ = [
    "ArbitrageUnit",
    "UnitParameters",
    "ArbitrageExecuted",
    "ArbitrageFailed",
    "EventLog",
    "Ledger",
    "FlashLender",
    "VALID_TRANSITIONS",
    "StateTransition",
    "UnitStateMachine",
]
