"""
tests/unit/test_orchestrator.py - Execution orchestrator tests.

Runs against the in-process demo market through LocalChainClient.
"""

from decimal import Decimal

import pytest

from core.constants import GWEI, ExecutionStatus, RevertReason, RiskLevel, SubmissionMode
from core.exceptions import RateLimitError, RPCError
from core.models import CalibrationThresholds, GasQuote, Route, RouteCandidate
from dex.gateway import QuoteGateway
from dex.venue import LocalVenueQuoter
from execution.accounting import ExecutionLog
from execution.chain_client import LocalChainClient
from execution.orchestrator import ExecutionOrchestrator, OrchestratorSettings
from monitoring.risk import RiskCalibrator
from strategy.jobs.local_market import E18, USDC, WETH
from strategy.price_oracle import PriceOracle
from strategy.simulator import Evaluation, ProfitabilitySimulator

NOW = 1_700_000_000

BASELINE = CalibrationThresholds(
    slippage_bps=50, min_profit_pct=Decimal("0.5"), use_mev_protection=False
)
GAS = GasQuote(fee_per_unit=10 * GWEI)


class Clock:
    def __init__(self, t: float = NOW):
        self.t = t

    def __call__(self) -> float:
        return self.t


class RecordingChain(LocalChainClient):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.requests = []
        self.broadcast_error = None

    async def sign_execution(self, request, fees):
        self.requests.append(request)
        return await super().sign_execution(request, fees)

    async def broadcast(self, signed):
        if self.broadcast_error is not None:
            raise self.broadcast_error
        return await super().broadcast(signed)


def make_evaluation(market, venues=(1, 0), estimated_usd="57", discovered_at=0) -> Evaluation:
    weth, usdc = market.tokens["WETH"], market.tokens["USDC"]
    candidate = RouteCandidate(
        route=Route((WETH, USDC, WETH), venues, timestamp=discovered_at),
        tokens=(weth, usdc, weth),
        venue_names=tuple(market.venues[i].name for i in venues),
        amount_in=E18,
        expected_out=E18 + E18 // 30,
        created_at=float(discovered_at),
    )
    return Evaluation(
        candidate=candidate,
        gas_cost_native=0,
        gas_cost_token=0,
        net_profit=E18 // 30,
        net_profit_pct=Decimal("3.3"),
        net_profit_usd=Decimal(estimated_usd),
        token_price_usd=Decimal("2000"),
        actionable=True,
        expected_profit_usd=Decimal(estimated_usd),
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def setup(market, clock):
    chain = RecordingChain(market.unit, clock=lambda: int(clock()))
    log = ExecutionLog()
    calibrator = RiskCalibrator(50, Decimal("0.5"), False)
    oracle = PriceOracle({WETH: Decimal("2000"), USDC: Decimal("1")})
    orchestrator = ExecutionOrchestrator(
        chain,
        log,
        calibrator,
        oracle,
        OrchestratorSettings(max_executions_per_hour=2, cooldown_seconds=30, public_timeout_seconds=1),
        clock=clock,
    )
    return orchestrator, chain, log, calibrator


class TestExecute:
    @pytest.mark.asyncio
    async def test_successful_public_execution(self, market, setup):
        orchestrator, chain, log, calibrator = setup
        before = market.ledger.balance_of(WETH, market.unit.beneficiary)

        record = await orchestrator.execute(make_evaluation(market), GAS, BASELINE)

        assert record.status == ExecutionStatus.SUCCESS
        assert record.mode == SubmissionMode.PUBLIC
        assert record.pair == "WETH/USDC"
        assert record.tx_hash is not None
        assert record.realized_profit_usd > Decimal("50")
        assert market.ledger.balance_of(WETH, market.unit.beneficiary) > before
        assert log.records == [record]
        assert len(calibrator.samples) == 1
        assert calibrator.samples[0].pair == "WETH/USDC"

    @pytest.mark.asyncio
    async def test_route_stamped_at_submission(self, market, setup):
        orchestrator, chain, _, _ = setup
        # Discovered long before the validity window
        evaluation = make_evaluation(market, discovered_at=NOW - 3600)

        record = await orchestrator.execute(evaluation, GAS, BASELINE)

        assert chain.requests[0].route.timestamp == NOW
        assert record.status == ExecutionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_failed_attempt_recorded_without_sample(self, market, setup):
        orchestrator, _, log, calibrator = setup

        # Buying WETH where it is expensive loses money
        record = await orchestrator.execute(make_evaluation(market, venues=(0, 1)), GAS, BASELINE)

        assert record.status == ExecutionStatus.FAILED
        assert record.reason == RevertReason.SIMULATION_NO_PROFIT.value
        assert record.realized_profit_usd is None
        assert len(log) == 1
        assert calibrator.samples == []

    @pytest.mark.asyncio
    async def test_infra_error_becomes_submit_error(self, market, setup):
        orchestrator, chain, log, _ = setup
        chain.broadcast_error = RPCError("connection refused")

        record = await orchestrator.execute(make_evaluation(market), GAS, BASELINE)

        assert record.status == ExecutionStatus.SUBMIT_ERROR
        assert "connection refused" in record.reason
        assert len(log) == 1
        assert orchestrator.in_flight == {}


class TestGasCeiling:
    @pytest.mark.asyncio
    async def test_quote_just_under_ceiling_is_not_marked_up_past_it(self, market, setup):
        orchestrator, chain, _, _ = setup
        orchestrator.settings.max_gas_price = market.unit.params.max_gas_price
        near_ceiling = GasQuote(fee_per_unit=market.unit.params.max_gas_price * 95 // 100)

        record = await orchestrator.execute(make_evaluation(market), near_ceiling, BASELINE)

        assert record.status == ExecutionStatus.SUCCESS
        assert chain.requests
        receipt = await chain.get_receipt(record.tx_hash)
        assert receipt["effectiveGasPrice"] == market.unit.params.max_gas_price

    @pytest.mark.asyncio
    async def test_without_ceiling_markup_exceeds_unit_limit(self, market, setup):
        orchestrator, _, _, _ = setup
        near_ceiling = GasQuote(fee_per_unit=market.unit.params.max_gas_price * 95 // 100)

        record = await orchestrator.execute(make_evaluation(market), near_ceiling, BASELINE)

        assert record.status == ExecutionStatus.FAILED
        assert record.reason == RevertReason.GAS_PRICE_TOO_HIGH.value


class TestEstimationBasis:
    @pytest.mark.asyncio
    async def test_trade_at_its_quote_has_no_estimation_error(self, market, setup):
        orchestrator, _, _, calibrator = setup
        gateway = QuoteGateway([LocalVenueQuoter(v) for v in market.venues])
        simulator = ProfitabilitySimulator(
            gateway, orchestrator.oracle, WETH, gas_limit=100_000, min_profit_usd=Decimal("5"),
        )
        route = Route((WETH, USDC, WETH), (1, 0))
        expected_out = await simulator.quote_route(route, E18)
        candidate = RouteCandidate(
            route=route,
            tokens=(market.tokens["WETH"], market.tokens["USDC"], market.tokens["WETH"]),
            venue_names=("dex_b", "dex_a"),
            amount_in=E18,
            expected_out=expected_out,
            created_at=float(NOW),
        )
        evaluation = await simulator.evaluate(candidate, GAS, BASELINE)
        assert evaluation.actionable
        assert evaluation.premium == E18 * 9 // 10_000

        record = await orchestrator.execute(evaluation, GAS, BASELINE)

        assert record.status == ExecutionStatus.SUCCESS
        assert record.estimated_profit_usd == evaluation.expected_profit_usd
        assert float(record.realized_profit_usd) == pytest.approx(float(evaluation.expected_profit_usd))
        assert calibrator.samples[0].error_ratio == pytest.approx(0, abs=1e-9)


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_refuses_beyond_hourly_cap(self, market, setup):
        orchestrator, chain, log, _ = setup
        await orchestrator.execute(make_evaluation(market), GAS, BASELINE)
        await orchestrator.execute(make_evaluation(market), GAS, BASELINE)

        with pytest.raises(RateLimitError):
            await orchestrator.execute(make_evaluation(market), GAS, BASELINE)

        assert len(log) == 2
        assert len(chain.requests) == 2

    @pytest.mark.asyncio
    async def test_window_slides(self, market, setup, clock):
        orchestrator, _, log, _ = setup
        await orchestrator.execute(make_evaluation(market), GAS, BASELINE)
        await orchestrator.execute(make_evaluation(market), GAS, BASELINE)

        clock.t += 3601
        await orchestrator.execute(make_evaluation(market), GAS, BASELINE)
        assert len(log) == 3


class TestCooldown:
    @pytest.mark.asyncio
    async def test_pair_cools_down_after_attempt(self, market, setup, clock):
        orchestrator, _, _, _ = setup
        assert not orchestrator.is_cooling_down(WETH, USDC)

        await orchestrator.execute(make_evaluation(market, venues=(0, 1)), GAS, BASELINE)

        assert orchestrator.is_cooling_down(USDC, WETH)
        assert orchestrator.cooldown_remaining(WETH, USDC) == pytest.approx(30)
        clock.t += 31
        assert not orchestrator.is_cooling_down(WETH, USDC)


class TestModeSelection:
    def test_public_without_relay(self, setup):
        orchestrator, _, _, _ = setup
        protected = CalibrationThresholds(20, Decimal("1"), True, RiskLevel.HIGH)
        assert orchestrator.select_mode(protected) == SubmissionMode.PUBLIC

    def test_private_when_protection_requested(self, setup):
        orchestrator, _, _, _ = setup
        orchestrator.relay = object()
        protected = CalibrationThresholds(20, Decimal("1"), True, RiskLevel.HIGH)
        assert orchestrator.select_mode(protected) == SubmissionMode.PRIVATE_RELAY
        assert orchestrator.select_mode(BASELINE) == SubmissionMode.PUBLIC


class TestSyncParameters:
    @pytest.mark.asyncio
    async def test_pushes_changed_slippage_once(self, market, setup):
        orchestrator, _, _, _ = setup
        high = CalibrationThresholds(20, Decimal("1"), True, RiskLevel.HIGH)

        assert await orchestrator.sync_parameters(high) is True
        assert market.unit.params.slippage_bps == 20
        assert await orchestrator.sync_parameters(high) is False

    @pytest.mark.asyncio
    async def test_skipped_while_in_flight(self, market, setup):
        orchestrator, _, _, _ = setup
        orchestrator.in_flight[(WETH, USDC)] = object()

        assert await orchestrator.sync_parameters(
            CalibrationThresholds(100, Decimal("0.5"), False, RiskLevel.LOW)
        ) is False
        assert market.unit.params.slippage_bps == 50

    @pytest.mark.asyncio
    async def test_failed_update_is_retried_next_cycle(self, market, setup):
        orchestrator, chain, _, _ = setup
        high = CalibrationThresholds(20, Decimal("1"), True, RiskLevel.HIGH)

        async def reverted(**changes):
            raise RPCError("Parameter update reverted")

        chain.update_parameters = reverted
        assert await orchestrator.sync_parameters(high) is False
        assert market.unit.params.slippage_bps == 50

        del chain.update_parameters
        assert await orchestrator.sync_parameters(high) is True
        assert market.unit.params.slippage_bps == 20
