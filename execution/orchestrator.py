# PATH: execution/orchestrator.py
"""
Execution orchestrator.

SUBMISSION CONTRACT:
====================

  1. Rate limit: refuse (RateLimitError) when the ExecutionLog already
     holds max_executions_per_hour records in the trailing hour. Checked
     immediately before submission, regardless of profitability.
  2. Mode: PRIVATE_RELAY when the calibrated thresholds ask for MEV
     protection and a relay exists for the chain; PUBLIC otherwise.
  3. Freshness: the route is stamped with the submission time here, never
     with its discovery time.
  4. Fees: the bid is capped at max_gas_price, the same ceiling the unit
     enforces, so a quote that passed the scan gate cannot revert on gas.
  5. Outcome: every submission produces exactly one ExecutionRecord and,
     when a realized profit is known, one risk sample. The pair then
     cools down for cooldown_seconds, whatever the outcome.
     Estimated and realized profit share one basis: after the loan
     premium, before gas (the ArbitrageExecuted profit).

Calibrated slippage reaches the unit only through sync_parameters(),
called between cycles, never while a submission is in flight.
====================
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from chains.gas import submission_fees
from core.constants import (
    DEFAULT_BASE_FEE_MULTIPLIER,
    DEFAULT_GAS_LIMIT,
    DEFAULT_PRIORITY_FEE_MULTIPLIER,
    ExecutionStatus,
    SubmissionMode,
)
from core.exceptions import InfraError, RateLimitError
from core.format_money import format_usd
from core.logging import get_logger
from core.models import CalibrationThresholds, ExecutionRecord, GasQuote, pair_key
from core.time import now_timestamp
from execution.accounting import ExecutionLog
from execution.chain_client import ChainClient, ExecutionOutcome, ExecutionRequest
from execution.relay import RelayClient
from monitoring.risk import RiskCalibrator
from strategy.price_oracle import PriceOracle
from strategy.simulator import Evaluation

logger = get_logger(__name__)


@dataclass
class OrchestratorSettings:
    max_executions_per_hour: int = 20
    cooldown_seconds: float = 30.0
    gas_limit: int = DEFAULT_GAS_LIMIT
    priority_multiplier: Decimal = DEFAULT_PRIORITY_FEE_MULTIPLIER
    base_fee_multiplier: Decimal = DEFAULT_BASE_FEE_MULTIPLIER
    target_blocks: int = 5
    block_time_seconds: float = 12.0
    public_timeout_seconds: float = 120.0
    max_gas_price: Optional[int] = None


class ExecutionOrchestrator:
    """
    Turns actionable evaluations into submitted executions.

    Usage:
        orchestrator = ExecutionOrchestrator(chain, log, calibrator, oracle, settings, relay)
        await orchestrator.sync_parameters(calibrator.thresholds)
        record = await orchestrator.execute(evaluation, gas_quote, calibrator.thresholds)
    """

    def __init__(
        self,
        chain: ChainClient,
        execution_log: ExecutionLog,
        calibrator: RiskCalibrator,
        oracle: PriceOracle,
        settings: Optional[OrchestratorSettings] = None,
        relay: Optional[RelayClient] = None,
        clock: Callable[[], float] = now_timestamp,
    ):
        self.chain = chain
        self.execution_log = execution_log
        self.calibrator = calibrator
        self.oracle = oracle
        self.settings = settings or OrchestratorSettings()
        self.relay = relay
        self.clock = clock
        self.in_flight: Dict[Tuple[str, str], ExecutionRequest] = {}
        self._cooldown_until: Dict[Tuple[str, str], float] = {}
        self._applied_slippage_bps: Optional[int] = None

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    def check_rate_limit(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        count = self.execution_log.count_last_hour(now)
        if count >= self.settings.max_executions_per_hour:
            raise RateLimitError(
                f"Hourly execution limit reached ({count}/{self.settings.max_executions_per_hour})",
                details={"count": count, "limit": self.settings.max_executions_per_hour},
            )

    def cooldown_remaining(self, token_a: str, token_b: str, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        until = self._cooldown_until.get(pair_key(token_a, token_b), 0.0)
        return max(0.0, until - now)

    def is_cooling_down(self, token_a: str, token_b: str, now: Optional[float] = None) -> bool:
        return self.cooldown_remaining(token_a, token_b, now) > 0

    def select_mode(self, thresholds: CalibrationThresholds) -> SubmissionMode:
        if thresholds.use_mev_protection and self.relay is not None:
            return SubmissionMode.PRIVATE_RELAY
        return SubmissionMode.PUBLIC

    # -------------------------------------------------------------------------
    # Calibration
    # -------------------------------------------------------------------------

    async def sync_parameters(self, thresholds: CalibrationThresholds) -> bool:
        """Push calibrated slippage to the unit when it changed. Returns True once confirmed."""
        if self.in_flight:
            return False
        if thresholds.slippage_bps == self._applied_slippage_bps:
            return False
        try:
            await self.chain.update_parameters(slippage_bps=thresholds.slippage_bps)
        except (InfraError, ValueError) as e:
            logger.warning(f"Parameter update failed: {e}")
            return False
        logger.info(
            "Slippage calibrated",
            extra={"context": {
                "from_bps": self._applied_slippage_bps,
                "to_bps": thresholds.slippage_bps,
                "risk_level": thresholds.risk_level.value,
            }},
        )
        self._applied_slippage_bps = thresholds.slippage_bps
        return True

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def _submit_private(self, request: ExecutionRequest, fees: Dict[str, int]) -> ExecutionOutcome:
        signed = await self.chain.sign_execution(request, fees)
        submissions = await self.relay.submit(signed, self.settings.target_blocks)
        window = (self.settings.target_blocks + 1) * self.settings.block_time_seconds
        included = await self.relay.await_inclusion(submissions, timeout=window)
        if included is None:
            return ExecutionOutcome(
                status=ExecutionStatus.NOT_INCLUDED,
                tx_hash=signed.tx_hash,
                reason="Bundle not included in target blocks",
            )
        return self.chain.decode_outcome(signed.tx_hash, included.receipt)

    async def execute(
        self,
        evaluation: Evaluation,
        gas_quote: GasQuote,
        thresholds: CalibrationThresholds,
    ) -> ExecutionRecord:
        """
        Submit one actionable evaluation and record its outcome.

        Raises:
            RateLimitError: Hourly cap reached (nothing submitted, nothing recorded)
        """
        candidate = evaluation.candidate
        now = self.clock()
        self.check_rate_limit(now)

        token_a = candidate.token_in
        token_b = candidate.counter_token
        key = pair_key(token_a.address, token_b.address)
        mode = self.select_mode(thresholds)
        request = ExecutionRequest(
            token_a=token_a.address,
            token_b=token_b.address,
            amount_in=candidate.amount_in,
            route=candidate.route.stamped(int(now)),
            gas_limit=self.settings.gas_limit,
        )
        fees = submission_fees(
            gas_quote,
            self.settings.priority_multiplier,
            self.settings.base_fee_multiplier,
            max_fee=self.settings.max_gas_price,
        )

        logger.info(
            f"Submitting {candidate.pair_id} via {mode.value}",
            extra={"context": {
                "route": candidate.description,
                "estimated_usd": str(evaluation.expected_profit_usd),
                "fees": fees,
            }},
        )

        self.in_flight[key] = request
        try:
            if mode == SubmissionMode.PRIVATE_RELAY:
                outcome = await self._submit_private(request, fees)
            else:
                outcome = await self.chain.submit_public(
                    request, fees, timeout=self.settings.public_timeout_seconds
                )
        except InfraError as e:
            outcome = ExecutionOutcome(status=ExecutionStatus.SUBMIT_ERROR, reason=str(e))
        finally:
            self.in_flight.pop(key, None)
            self._cooldown_until[key] = now + self.settings.cooldown_seconds

        realized_usd: Optional[Decimal] = None
        if outcome.profit is not None:
            realized_usd = await self.oracle.usd_value(token_a, outcome.profit)

        record = ExecutionRecord(
            timestamp=now,
            pair=candidate.pair_id,
            route=candidate.description,
            status=outcome.status,
            mode=mode,
            estimated_profit_usd=evaluation.expected_profit_usd,
            realized_profit_usd=realized_usd,
            tx_hash=outcome.tx_hash,
            reason=outcome.reason,
        )
        self.execution_log.append(record)
        self._observe(record, outcome, gas_quote)
        return record

    def _observe(self, record: ExecutionRecord, outcome: ExecutionOutcome, gas_quote: GasQuote) -> None:
        context = {"tx_hash": record.tx_hash, "status": record.status.value, "reason": record.reason}
        if record.success:
            logger.info(
                f"Execution succeeded: {record.pair} realized {format_usd(record.realized_profit_usd)}",
                extra={"context": context},
            )
        else:
            logger.warning(f"Execution {record.status.value}: {record.pair}", extra={"context": context})

        self.calibrator.analyze_estimation(
            estimated=float(record.estimated_profit_usd),
            actual=float(record.realized_profit_usd) if record.realized_profit_usd is not None else None,
            pair=record.pair,
            timestamp=record.timestamp,
        )
        if outcome.effective_gas_price:
            self.calibrator.detect_frontrunning(outcome.effective_gas_price, gas_quote.effective_price)
