# PATH: core/constants.py
"""
Constants for flashloop.

Contains enums, defaults, and configuration constants shared by the
on-chain execution unit model and the off-chain orchestrator.
"""

from decimal import Decimal
from enum import Enum
from typing import Final

# =============================================================================
# UNITS
# =============================================================================

BPS_DENOMINATOR: Final[int] = 10_000
GWEI: Final[int] = 10**9
ZERO_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000000"

# =============================================================================
# EXECUTION UNIT DEFAULTS
# =============================================================================

# Slippage floor applied to every hop (0.5%)
DEFAULT_SLIPPAGE_BPS = 50

# Minimum profit as a proportion of the borrowed amount (0.1%)
DEFAULT_MIN_PROFIT_BPS = 10

# Routes older than this are rejected on-chain
DEFAULT_ROUTE_VALIDITY_SECONDS = 300

# Gas price ceiling for execution
DEFAULT_MAX_GAS_PRICE_GWEI = 100

# Share of the output reserve that must remain in a pool after a hop
DEFAULT_MIN_RESERVE_RATIO_BPS = 0

# Flash loan premium (Aave V2: 0.09%)
DEFAULT_FLASH_LOAN_PREMIUM_BPS = 9

# =============================================================================
# ORCHESTRATOR DEFAULTS
# =============================================================================

DEFAULT_GAS_LIMIT = 1_500_000
DEFAULT_PRIORITY_FEE_MULTIPLIER = Decimal("1.1")
DEFAULT_BASE_FEE_MULTIPLIER = Decimal("1.2")
FALLBACK_GAS_PRICE_GWEI = 50

DEFAULT_MIN_PROFIT_USD = Decimal("5")
DEFAULT_MIN_PROFIT_PERCENT = Decimal("0.5")

DEFAULT_POLLING_INTERVAL_MS = 1000
DEFAULT_GAS_REFRESH_SECONDS = 30
DEFAULT_LIQUIDITY_CHECK_SECONDS = 5 * 60
DEFAULT_DISCOVERY_SECONDS = 30 * 60
DEFAULT_RESTART_BACKOFF_SECONDS = 60

DEFAULT_MAX_HOPS = 3
DEFAULT_MAX_CANDIDATE_TOKENS = 20
DEFAULT_PAIRS_PER_CYCLE = 10
DEFAULT_PAIR_RECHECK_SECONDS = 5

DEFAULT_MAX_EXECUTIONS_PER_HOUR = 20
DEFAULT_EXECUTION_COOLDOWN_SECONDS = 30

DEFAULT_BUNDLE_TARGET_BLOCKS = 5
DEFAULT_BLOCK_TIME_SECONDS = 12

# Minimum liquidity per side, in wrapped-native units
DEFAULT_MIN_LIQUIDITY_NATIVE = Decimal("10")

# Discovery scans this many of the newest factory pairs
DEFAULT_DISCOVERY_WINDOW = 100

# Chains with a private bundle relay
RELAY_SUPPORTED_CHAINS: Final[frozenset[int]] = frozenset({1, 5, 11155111})

RELAY_URLS: Final[dict[int, str]] = {
    1: "https://relay.flashbots.net",
    5: "https://relay-goerli.flashbots.net",
    11155111: "https://relay-sepolia.flashbots.net",
}

# =============================================================================
# RISK & CALIBRATION
# =============================================================================

ESTIMATION_TOLERANCE = 0.10
ESTIMATION_CRITICAL = 0.30
VOLATILITY_BOUND = 0.20
RISK_MIN_SAMPLES = 5
RISK_WINDOW = 10
PROFIT_HISTORY_LIMIT = 100
FRONTRUN_GAS_RATIO = 1.5


class VenueFamily(str, Enum):
    """Pricing families a venue can belong to."""
    CONSTANT_PRODUCT = "CONSTANT_PRODUCT"
    UNISWAP_V2 = "UNISWAP_V2"
    UNISWAP_V3 = "UNISWAP_V3"


class UnitState(str, Enum):
    """Atomic execution unit states (one pass per transaction)."""
    IDLE = "IDLE"
    LOAN_REQUESTED = "LOAN_REQUESTED"
    LOAN_RECEIVED = "LOAN_RECEIVED"
    SIMULATING = "SIMULATING"
    SWAPPING = "SWAPPING"
    REPAYING = "REPAYING"
    DISTRIBUTING = "DISTRIBUTING"
    DONE = "DONE"
    REVERTED = "REVERTED"


class RevertReason(str, Enum):
    """Reason strings surfaced by the execution unit."""
    NOT_OWNER = "Caller is not the owner"
    NOT_LENDER = "Caller is not the lender"
    NOT_INITIATOR = "Invalid loan initiator"
    PAUSED = "Contract is paused"
    PAIR_NOT_ACTIVE = "Pair not active"
    ROUTE_EXPIRED = "Route expired"
    GAS_PRICE_TOO_HIGH = "Gas price too high"
    INVALID_ROUTE = "Invalid route"
    VENUE_NOT_ACTIVE = "Venue not active"
    INSUFFICIENT_LOAN = "Insufficient loan received"
    SIMULATION_NO_PROFIT = "Simulation shows no profit"
    INSUFFICIENT_RESERVES = "Insufficient reserves"
    SWAP_FAILED = "Swap execution failed"
    PROFIT_BELOW_THRESHOLD = "Profit below threshold"
    REPAYMENT_SHORTFALL = "Insufficient funds to repay loan"
    REENTRANT_CALL = "ReentrancyGuard: reentrant call"
    NO_VALUE = "No native value attached"
    NOTHING_TO_RESCUE = "Nothing to rescue"


class RiskLevel(str, Enum):
    """Rolling estimation risk levels, ordered low to high."""
    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.UNKNOWN: 0,
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
}


class SubmissionMode(str, Enum):
    """How an execution request reaches the network."""
    PUBLIC = "PUBLIC"
    PRIVATE_RELAY = "PRIVATE_RELAY"


class BundleResolution(str, Enum):
    """Outcome of one bundle submission for one target block."""
    INCLUDED = "INCLUDED"
    BLOCK_PASSED_WITHOUT_INCLUSION = "BLOCK_PASSED_WITHOUT_INCLUSION"
    BLOCK_NOT_MINED = "BLOCK_NOT_MINED"


class GasBasis(str, Enum):
    """Fee model a gas quote was derived from."""
    EIP1559 = "eip1559"
    LEGACY = "legacy"
    FALLBACK = "fallback"


class ExecutionStatus(str, Enum):
    """Terminal status of an execution attempt as seen off-chain."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REVERTED = "REVERTED"
    NOT_INCLUDED = "NOT_INCLUDED"
    SUBMIT_ERROR = "SUBMIT_ERROR"


class ErrorCode(str, Enum):
    """Error codes carried by typed exceptions."""
    UNKNOWN = "UNKNOWN"
    CONFIG_INVALID = "CONFIG_INVALID"
    INFRA_RPC_ERROR = "INFRA_RPC_ERROR"
    INFRA_TIMEOUT = "INFRA_TIMEOUT"
    RELAY_ERROR = "RELAY_ERROR"
    QUOTE_REVERT = "QUOTE_REVERT"
    VENUE_UNAVAILABLE = "VENUE_UNAVAILABLE"
    SWAP_REJECTED = "SWAP_REJECTED"
    LEDGER_BALANCE = "LEDGER_BALANCE"
    LEDGER_ALLOWANCE = "LEDGER_ALLOWANCE"
    UNIT_REVERT = "UNIT_REVERT"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
