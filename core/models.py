# PATH: core/models.py
"""
Core data models for flashloop.

ROUTE CONTRACT
==============
  path:            token addresses, len >= 2; a loop route has path[0] == path[-1]
  venue_indices:   one venue per hop, len == len(path) - 1
  expected_profit: off-chain estimate in smallest units of path[0]
  timestamp:       unix seconds, stamped at submission time

Routes are immutable. The orchestrator creates the submitted copy with
Route.stamped(now) and consumes it exactly once.

EXECUTION RECORD / PROFIT SAMPLE
================================
ExecutionRecord is append-only and owned by the orchestrator.
ProfitSample is append-only, bounded, owned by the risk module.
"""

from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from core.constants import (
    ExecutionStatus,
    GasBasis,
    RiskLevel,
    SubmissionMode,
)
from core.math import profit_ratio
from core.time import now_timestamp
from core.validators import normalize_address


def pair_key(token_a: str, token_b: str) -> Tuple[str, str]:
    """Order-independent key for a token pair."""
    a, b = normalize_address(token_a), normalize_address(token_b)
    return (a, b) if a <= b else (b, a)


@dataclass
class Token:
    """ERC-20 style token."""
    address: str
    symbol: str
    decimals: int = 18
    name: str = ""

    def __post_init__(self):
        self.address = normalize_address(self.address)
        if not self.name:
            self.name = self.symbol

    def __hash__(self) -> int:
        return hash(self.address)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Token):
            return False
        return self.address == other.address

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        return cls(
            address=data["address"],
            symbol=data["symbol"],
            decimals=int(data.get("decimals", 18)),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class Route:
    """Immutable execution route. See ROUTE CONTRACT above."""
    path: Tuple[str, ...]
    venue_indices: Tuple[int, ...]
    expected_profit: int = 0
    timestamp: int = 0

    def __post_init__(self):
        object.__setattr__(self, "path", tuple(normalize_address(t) for t in self.path))
        object.__setattr__(self, "venue_indices", tuple(int(i) for i in self.venue_indices))
        if len(self.path) < 2:
            raise ValueError("Route path needs at least two tokens")
        if len(self.venue_indices) != len(self.path) - 1:
            raise ValueError(
                f"Route has {len(self.venue_indices)} venues for {len(self.path)} tokens"
            )

    @property
    def is_loop(self) -> bool:
        return self.path[0] == self.path[-1]

    @property
    def hops(self) -> int:
        return len(self.venue_indices)

    def stamped(self, timestamp: int) -> "Route":
        """Copy of this route carrying a submission timestamp."""
        return replace(self, timestamp=int(timestamp))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": list(self.path),
            "venue_indices": list(self.venue_indices),
            "expected_profit": str(self.expected_profit),
            "timestamp": self.timestamp,
        }


@dataclass
class RouteCandidate:
    """A priced cyclic route produced by the enumerator."""
    route: Route
    tokens: Tuple[Token, ...]
    venue_names: Tuple[str, ...]
    amount_in: int
    expected_out: int
    created_at: float = field(default_factory=now_timestamp)

    @property
    def token_in(self) -> Token:
        return self.tokens[0]

    @property
    def counter_token(self) -> Token:
        """The watched pair's second token (tokenB)."""
        return self.tokens[-2] if self.route.is_loop else self.tokens[-1]

    @property
    def gross_profit(self) -> int:
        return self.expected_out - self.amount_in

    @property
    def profit_pct(self) -> Decimal:
        return profit_ratio(self.gross_profit, self.amount_in) * 100

    @property
    def pair_id(self) -> str:
        return f"{self.token_in.symbol}/{self.counter_token.symbol}"

    @property
    def description(self) -> str:
        legs = []
        for i, venue in enumerate(self.venue_names):
            legs.append(f"{self.tokens[i].symbol}->{self.tokens[i + 1].symbol} on {venue}")
        return ", ".join(legs)


@dataclass(frozen=True)
class GasQuote:
    """Transient gas pricing for one scan cycle (wei per gas)."""
    fee_per_unit: int
    priority_fee_per_unit: int = 0
    basis: GasBasis = GasBasis.LEGACY

    @property
    def effective_price(self) -> int:
        if self.basis == GasBasis.EIP1559:
            return self.fee_per_unit + self.priority_fee_per_unit
        return self.fee_per_unit


@dataclass(frozen=True)
class CalibrationThresholds:
    """Thresholds published by the risk module; read-only elsewhere."""
    slippage_bps: int
    min_profit_pct: Decimal
    use_mev_protection: bool
    risk_level: RiskLevel = RiskLevel.UNKNOWN


@dataclass
class ExecutionRecord:
    """Append-only record of one execution attempt."""
    timestamp: float
    pair: str
    route: str
    status: ExecutionStatus
    mode: SubmissionMode
    estimated_profit_usd: Decimal = Decimal("0")
    realized_profit_usd: Optional[Decimal] = None
    tx_hash: Optional[str] = None
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "pair": self.pair,
            "route": self.route,
            "status": self.status.value,
            "mode": self.mode.value,
            "estimated_profit_usd": str(self.estimated_profit_usd),
            "realized_profit_usd": (
                str(self.realized_profit_usd) if self.realized_profit_usd is not None else None
            ),
            "tx_hash": self.tx_hash,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        realized = data.get("realized_profit_usd")
        return cls(
            timestamp=float(data["timestamp"]),
            pair=data["pair"],
            route=data.get("route", ""),
            status=ExecutionStatus(data["status"]),
            mode=SubmissionMode(data.get("mode", SubmissionMode.PUBLIC.value)),
            estimated_profit_usd=Decimal(data.get("estimated_profit_usd", "0")),
            realized_profit_usd=Decimal(realized) if realized is not None else None,
            tx_hash=data.get("tx_hash"),
            reason=data.get("reason"),
        )


@dataclass
class ProfitSample:
    """Estimated vs actual profit for one execution."""
    timestamp: float
    pair: str
    estimated: float
    actual: float
    error_ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfitSample":
        return cls(
            timestamp=float(data["timestamp"]),
            pair=str(data["pair"]),
            estimated=float(data["estimated"]),
            actual=float(data["actual"]),
            error_ratio=float(data["error_ratio"]),
        )
