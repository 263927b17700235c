"""
execution/events.py - Events emitted by the execution unit.

Every execution attempt emits exactly one terminal event:
ArbitrageExecuted on success, ArbitrageFailed otherwise.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class UnitEvent:
    """Base event; event_name is the Solidity-style event name."""

    @property
    def event_name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data = {"event": self.event_name}
        data.update({k: v for k, v in self.__dict__.items()})
        return data


@dataclass(frozen=True)
class ArbitrageExecuted(UnitEvent):
    token_a: str
    token_b: str
    amount_in: int
    amount_out: int
    profit: int
    timestamp: int


@dataclass(frozen=True)
class ArbitrageFailed(UnitEvent):
    token_a: str
    token_b: str
    reason: str
    timestamp: int


@dataclass(frozen=True)
class VenueAdded(UnitEvent):
    index: int
    name: str
    address: str


@dataclass(frozen=True)
class VenueStatusChanged(UnitEvent):
    index: int
    active: bool


@dataclass(frozen=True)
class PairStatusChanged(UnitEvent):
    token_a: str
    token_b: str
    active: bool


@dataclass(frozen=True)
class ParametersUpdated(UnitEvent):
    changes: Tuple[Tuple[str, int], ...]


@dataclass(frozen=True)
class Paused(UnitEvent):
    by: str


@dataclass(frozen=True)
class Unpaused(UnitEvent):
    by: str


@dataclass(frozen=True)
class TokensRescued(UnitEvent):
    token: str
    amount: int
    to: str


@dataclass
class EventLog:
    """Append-only list of emitted events."""
    events: List[UnitEvent] = field(default_factory=list)

    def emit(self, event: UnitEvent) -> UnitEvent:
        self.events.append(event)
        return event

    def of_type(self, event_type: type) -> List[UnitEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def since(self, index: int) -> List[UnitEvent]:
        return self.events[index:]

    def __len__(self) -> int:
        return len(self.events)

    @property
    def last(self) -> UnitEvent:
        return self.events[-1]
