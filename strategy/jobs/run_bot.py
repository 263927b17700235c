#!/usr/bin/env python3
"""
strategy/jobs/run_bot.py - CLI entrypoint for the arbitrage bot.

Periodic tasks (each on its own interval, one asyncio task apiece):
- scan:       sample watched pairs, enumerate, evaluate, execute
- gas:        refresh the gas quote
- liquidity:  flag pairs with thin pools
- discovery:  add new tokens from the first venue's latest pairs
- report:     daily profit report (CSV + log) and risk report

A quote, relay or RPC failure inside a task is logged and the task
carries on. Anything else escapes to the supervisor, which flushes
pending state, waits the restart backoff and starts over.

Usage:
    python -m strategy.jobs.run_bot --config config/bot.yaml
    python -m strategy.jobs.run_bot --local --once
"""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import click

from chains.gas import GasOracle, StaticGasOracle
from chains.providers import RPCProvider
from config import BotConfig, load_bot_config
from core.constants import GWEI
from core.exceptions import ConfigError, InfraError, QuoteError, RateLimitError
from core.format_money import format_usd
from core.logging import get_logger, set_global_context, setup_logging
from core.math import to_units
from core.models import GasQuote, Token
from core.time import now_timestamp
from core.validators import normalize_address
from dex.adapters import erc20
from dex.gateway import QuoteGateway, build_rpc_gateway
from dex.venue import LocalVenueQuoter
from discovery.registry import MetadataReader, TokenRegistry
from execution.accounting import DAY_SECONDS, ExecutionLog
from execution.arbitrage_unit import UnitParameters
from execution.chain_client import ChainClient, LocalChainClient, RpcChainClient
from execution.orchestrator import ExecutionOrchestrator, OrchestratorSettings
from execution.relay import RelayClient
from monitoring.risk import RiskCalibrator
from strategy.enumerator import RouteEnumerator
from strategy.jobs.local_market import LocalMarket, build_local_market, demo_config
from strategy.price_oracle import PriceOracle
from strategy.simulator import ProfitabilitySimulator

logger = get_logger("flashloop.bot")

BOT_VERSION = "0.1.0"

Job = Callable[["BotContext"], Awaitable[Any]]


# =============================================================================
# CONTEXT
# =============================================================================

@dataclass
class BotContext:
    """Everything one bot run owns. Rebuilt from scratch on every restart."""
    config: BotConfig
    gateway: QuoteGateway
    registry: TokenRegistry
    enumerator: RouteEnumerator
    simulator: ProfitabilitySimulator
    orchestrator: ExecutionOrchestrator
    calibrator: RiskCalibrator
    execution_log: ExecutionLog
    gas_oracle: Any
    price_oracle: PriceOracle
    read_metadata: MetadataReader
    data_dir: Path
    stopped: asyncio.Event = field(default_factory=asyncio.Event)
    running: bool = False
    gas_quote: Optional[GasQuote] = None
    cycles: int = 0
    closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list)
    market: Optional[LocalMarket] = None

    @property
    def wrapped_native(self) -> str:
        return self.config.chain.wrapped_native

    @property
    def is_running(self) -> bool:
        return self.running and not self.stopped.is_set()

    def stop(self) -> None:
        self.running = False
        self.stopped.set()

    def flush(self) -> None:
        """Best-effort save of everything persisted."""
        self.execution_log.flush()
        self.registry.save()
        self.calibrator.save()

    async def close(self) -> None:
        for closer in self.closers:
            try:
                await closer()
            except (InfraError, OSError) as e:
                logger.warning(f"Error during close: {e}")


def assemble_context(
    config: BotConfig,
    gateway: QuoteGateway,
    chain: ChainClient,
    gas_oracle: Any,
    read_metadata: MetadataReader,
    relay: Optional[RelayClient] = None,
    data_dir: Optional[Path] = None,
    stopped: Optional[asyncio.Event] = None,
    clock: Callable[[], float] = now_timestamp,
) -> BotContext:
    """Wire the off-chain components around a gateway and chain client."""
    data_dir = Path(data_dir or config.monitoring.data_dir)
    tokens = [Token(t.address, t.symbol, t.decimals, t.name) for t in config.tokens]
    base_tokens = [Token(t.address, t.symbol, t.decimals, t.name) for t in config.base_tokens]

    registry = TokenRegistry(base_tokens, path=data_dir / "token_list.json")
    for token in tokens:
        registry.add_token(token)

    price_oracle = PriceOracle(
        anchors={t.address: t.usd_price for t in config.tokens if t.usd_price is not None},
        chain_id=config.chain.chain_id,
        api_key=config.monitoring.coingecko_api_key,
        cache_seconds=config.monitoring.price_cache_seconds,
    )
    calibrator = RiskCalibrator(
        base_slippage_bps=config.trading.slippage_bps,
        base_min_profit_pct=config.trading.min_profit_percent,
        base_mev_protection=config.mev_protection_available,
        path=data_dir / "profit_history.json",
    )
    execution_log = ExecutionLog(data_dir / "executions.jsonl")

    settings = OrchestratorSettings(
        max_executions_per_hour=config.security.max_executions_per_hour,
        cooldown_seconds=config.security.execution_cooldown_seconds,
        gas_limit=config.trading.gas_limit,
        priority_multiplier=config.trading.priority_fee_multiplier,
        base_fee_multiplier=config.trading.base_fee_multiplier,
        target_blocks=config.relay.target_blocks,
        block_time_seconds=config.chain.block_time_seconds,
        max_gas_price=int(config.trading.max_gas_price_gwei * GWEI),
    )
    orchestrator = ExecutionOrchestrator(
        chain, execution_log, calibrator, price_oracle, settings=settings, relay=relay, clock=clock,
    )

    ctx = BotContext(
        config=config,
        gateway=gateway,
        registry=registry,
        enumerator=RouteEnumerator(
            gateway,
            max_hops=config.monitoring.max_hops,
            max_candidate_tokens=config.monitoring.max_candidate_tokens,
        ),
        simulator=ProfitabilitySimulator(
            gateway,
            price_oracle,
            config.chain.wrapped_native,
            gas_limit=config.trading.gas_limit,
            min_profit_usd=config.trading.min_profit_usd,
        ),
        orchestrator=orchestrator,
        calibrator=calibrator,
        execution_log=execution_log,
        gas_oracle=gas_oracle,
        price_oracle=price_oracle,
        read_metadata=read_metadata,
        data_dir=data_dir,
        stopped=stopped or asyncio.Event(),
    )
    ctx.closers.append(price_oracle.close)
    if relay is not None:
        ctx.closers.append(relay.close)
    return ctx


def unit_parameters(config: BotConfig) -> UnitParameters:
    trading = config.trading
    return UnitParameters(
        min_profit_bps=trading.unit_min_profit_bps,
        max_gas_price=int(trading.max_gas_price_gwei * GWEI),
        min_reserve_ratio_bps=trading.min_reserve_ratio_bps,
        slippage_bps=trading.slippage_bps,
        route_validity_seconds=trading.route_validity_seconds,
    )


def build_relay(config: BotConfig, chain: ChainClient) -> Optional[RelayClient]:
    """
    Relay client for the chain, whether or not relays are on by default.

    relay.enabled only sets the baseline submission mode. Elevated risk
    turns MEV protection on regardless.
    """
    chain_id = config.chain.chain_id
    if not config.relay.supports(chain_id) or not config.relay.url_for(chain_id):
        if config.relay.enabled:
            logger.warning(
                "Private relay not supported on this chain; submitting publicly",
                extra={"context": {"chain_id": chain_id}},
            )
        return None
    return RelayClient(
        config.relay.url_for(chain_id),
        config.relay.auth_key,
        chain,
        block_time_seconds=config.chain.block_time_seconds,
    )


def build_rpc_context(
    config: BotConfig,
    stopped: Optional[asyncio.Event] = None,
) -> BotContext:
    """
    Context against a live chain.

    Raises:
        ConfigError: No RPC endpoint, key or contract address
    """
    security = config.security
    if not config.chain.rpc_urls:
        raise ConfigError("No RPC URL configured")
    if not security.private_key or not security.contract_address:
        raise ConfigError("PRIVATE_KEY and CONTRACT_ADDRESS are required for live runs")

    provider = RPCProvider(
        chain_id=config.chain.chain_id,
        rpc_urls=config.chain.rpc_urls,
        timeout_seconds=config.chain.rpc_timeout_seconds,
    )
    gateway = build_rpc_gateway(config.venues, provider)
    params = unit_parameters(config)
    chain = RpcChainClient(
        provider,
        security.contract_address,
        security.private_key,
        chain_id=config.chain.chain_id,
        parameters={
            "min_profit_bps": params.min_profit_bps,
            "max_gas_price": params.max_gas_price,
            "min_reserve_ratio_bps": params.min_reserve_ratio_bps,
            "slippage_bps": params.slippage_bps,
        },
    )

    relay = build_relay(config, chain)

    async def read_metadata(address: str):
        return await erc20.read_metadata(provider, address)

    ctx = assemble_context(
        config, gateway, chain, GasOracle(provider), read_metadata, relay=relay, stopped=stopped,
    )
    ctx.closers.append(provider.close)
    return ctx


def build_local_context(
    config: Optional[BotConfig] = None,
    market: Optional[LocalMarket] = None,
    data_dir: Optional[Path] = None,
    gas_price_wei: int = GWEI,
    stopped: Optional[asyncio.Event] = None,
    clock: Callable[[], float] = now_timestamp,
) -> BotContext:
    """Context over an in-process market (no network at all)."""
    config = config or demo_config()
    market = market or build_local_market(unit_parameters(config))
    if config.security.beneficiary:
        market.unit.set_beneficiary(market.owner, config.security.beneficiary)

    gateway = QuoteGateway([LocalVenueQuoter(v) for v in market.venues])
    chain = LocalChainClient(market.unit, clock=lambda: int(clock()))

    async def read_metadata(address: str):
        return market.ledger.token_metadata(address)

    ctx = assemble_context(
        config,
        gateway,
        chain,
        StaticGasOracle(gas_price_wei),
        read_metadata,
        data_dir=data_dir,
        stopped=stopped,
        clock=clock,
    )
    ctx.market = market
    return ctx


# =============================================================================
# TASKS
# =============================================================================

async def prepare(ctx: BotContext) -> None:
    """Load persisted state and build the watched pairs."""
    ctx.registry.load()
    ctx.calibrator.load()
    ctx.execution_log.load()
    await ctx.registry.build_watched_pairs(ctx.gateway)
    ctx.gas_quote = await ctx.gas_oracle.quote()


async def trade_amount(ctx: BotContext, token: Token) -> Optional[int]:
    """Configured trade size (in wrapped native) expressed in token units."""
    native = to_units(ctx.config.trading.trade_size, 18)
    if token.address == normalize_address(ctx.wrapped_native):
        return native
    active = ctx.gateway.active_indices
    if not active:
        return None
    return await ctx.gateway.quote(active[0], ctx.wrapped_native, token.address, native)


async def scan_cycle(ctx: BotContext, now: Optional[float] = None) -> Dict[str, int]:
    """One pass over a sample of watched pairs."""
    now = now_timestamp() if now is None else now
    ctx.cycles += 1
    summary = {"sampled": 0, "candidates": 0, "actionable": 0, "executed": 0}

    thresholds = ctx.calibrator.thresholds
    await ctx.orchestrator.sync_parameters(thresholds)

    gas_quote = ctx.gas_quote or await ctx.gas_oracle.quote()
    max_gas = int(ctx.config.trading.max_gas_price_gwei * GWEI)
    if gas_quote.effective_price > max_gas:
        logger.info(
            "Gas price above limit; skipping cycle",
            extra={"context": {"gas_price": gas_quote.effective_price, "max_gas_price": max_gas}},
        )
        return summary

    monitoring = ctx.config.monitoring
    pairs = ctx.registry.sample_pairs(monitoring.pairs_per_cycle, now, monitoring.pair_recheck_seconds)
    for pair in pairs:
        if ctx.stopped.is_set():
            break
        if ctx.orchestrator.is_cooling_down(pair.token_a.address, pair.token_b.address, now):
            continue
        pair.mark_checked(now)
        summary["sampled"] += 1

        amount_in = await trade_amount(ctx, pair.token_a)
        if not amount_in:
            continue
        candidate = await ctx.enumerator.best_for_pair(
            pair.token_a, pair.token_b, amount_in, intermediates=ctx.registry.tokens,
        )
        if candidate is None:
            continue
        summary["candidates"] += 1

        evaluation = await ctx.simulator.evaluate(candidate, gas_quote, thresholds)
        if not evaluation.actionable:
            logger.debug(
                f"Not actionable: {pair.pair_id} ({evaluation.reason})",
                extra={"context": evaluation.to_dict()},
            )
            continue
        summary["actionable"] += 1

        try:
            record = await ctx.orchestrator.execute(evaluation, gas_quote, thresholds)
        except RateLimitError as e:
            logger.warning(f"Execution refused: {e.message}", extra={"context": e.details})
            break
        summary["executed"] += 1
        pair.defer(now, ctx.config.security.execution_cooldown_seconds)
        if record.success:
            pair.success_count += 1
            pair.last_profit_usd = record.realized_profit_usd or pair.last_profit_usd

    logger.debug(f"Scan cycle {ctx.cycles} complete", extra={"context": summary})
    return summary


async def refresh_gas(ctx: BotContext) -> GasQuote:
    ctx.gas_quote = await ctx.gas_oracle.quote()
    return ctx.gas_quote


async def check_liquidity(ctx: BotContext) -> int:
    min_native = to_units(ctx.config.monitoring.min_liquidity_native, 18)
    return await ctx.registry.check_liquidity(ctx.gateway, ctx.wrapped_native, min_native)


async def discover_tokens(ctx: BotContext) -> int:
    added = await ctx.registry.discover(
        ctx.gateway, ctx.read_metadata, window=ctx.config.monitoring.discovery_window,
    )
    return len(added)


async def write_report(ctx: BotContext, now: Optional[float] = None) -> Dict[str, Any]:
    """Profit report for the last 24h (log + CSV) plus the risk report."""
    now = now_timestamp() if now is None else now
    report = ctx.execution_log.profit_report(DAY_SECONDS, now=now)
    day = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y%m%d")
    csv_path = ctx.data_dir / f"profit_report_{day}.csv"
    try:
        ctx.execution_log.write_csv(csv_path, DAY_SECONDS, now=now)
    except OSError as e:
        logger.error(f"Failed to write profit report: {e}", extra={"context": {"path": str(csv_path)}})

    logger.info(
        f"Daily profit report: {format_usd(report.total_profit_usd)} over {report.successful} trades",
        extra={"context": report.to_dict()},
    )
    logger.info("Risk report", extra={"context": ctx.calibrator.generate_report()})
    return report.to_dict()


# =============================================================================
# SCHEDULING
# =============================================================================

async def _pause(ctx: BotContext, seconds: float) -> None:
    """Sleep, waking early on stop."""
    if seconds <= 0:
        return
    try:
        await asyncio.wait_for(ctx.stopped.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def run_periodic(
    ctx: BotContext,
    name: str,
    interval: float,
    job: Job,
    initial_delay: float = 0.0,
) -> None:
    """Run job every interval seconds until the context stops."""
    await _pause(ctx, initial_delay)
    loop = asyncio.get_running_loop()
    while ctx.is_running:
        started = loop.time()
        try:
            await job(ctx)
        except (InfraError, QuoteError) as e:
            logger.warning(f"{name} skipped: {e}", extra={"context": {"task": name}})
        elapsed = loop.time() - started
        if elapsed > interval:
            logger.debug(f"{name} overran its interval", extra={"context": {"elapsed_s": round(elapsed, 3)}})
        await _pause(ctx, interval - elapsed)


def schedule(ctx: BotContext) -> List[tuple]:
    """(name, interval_seconds, job, initial_delay) for every periodic task."""
    m = ctx.config.monitoring
    return [
        ("scan", m.polling_interval_ms / 1000, scan_cycle, 0.0),
        ("gas", m.gas_refresh_seconds, refresh_gas, m.gas_refresh_seconds),
        ("liquidity", m.liquidity_check_seconds, check_liquidity, 0.0),
        ("discovery", m.discovery_seconds, discover_tokens, m.discovery_seconds),
        ("report", DAY_SECONDS, write_report, DAY_SECONDS),
    ]


async def run_bot(ctx: BotContext) -> None:
    """Run every periodic task until stop; the first task failure propagates."""
    ctx.running = True
    tasks = [
        asyncio.create_task(run_periodic(ctx, name, interval, job, delay), name=f"flashloop-{name}")
        for name, interval, job, delay in schedule(ctx)
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        ctx.running = False
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    for task in done:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()


async def supervise(
    build_context: Callable[[], BotContext],
    restart_backoff: float,
    max_restarts: Optional[int] = None,
) -> int:
    """
    Run the bot, restarting it after a crash.

    Returns:
        Number of restarts performed
    """
    restarts = 0
    while True:
        ctx = build_context()
        try:
            await prepare(ctx)
            await run_bot(ctx)
            logger.info("Bot stopped")
            return restarts
        except Exception as e:
            logger.error(f"Bot crashed: {e}", exc_info=True, extra={"context": {"restarts": restarts}})
            if ctx.stopped.is_set() or (max_restarts is not None and restarts >= max_restarts):
                raise
        finally:
            ctx.flush()
            await write_report(ctx)
            await ctx.close()

        restarts += 1
        logger.info(f"Restarting in {restart_backoff}s", extra={"context": {"restarts": restarts}})
        await asyncio.sleep(restart_backoff)


async def run_once(ctx: BotContext) -> Dict[str, int]:
    """Single scan cycle, then flush and close."""
    try:
        await prepare(ctx)
        ctx.running = True
        return await scan_cycle(ctx)
    finally:
        ctx.running = False
        ctx.flush()
        await ctx.close()


# =============================================================================
# CLI
# =============================================================================

@click.command()
@click.option("--config", "-c", "config_path", default="config/bot.yaml", help="YAML config file")
@click.option("--local", is_flag=True, help="Run against the in-process demo market")
@click.option("--once", is_flag=True, help="Run single scan cycle and exit")
@click.option("--data-dir", "-d", default=None, help="Override monitoring.data_dir")
@click.option("--log-level", "-l", default=None, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.option("--json-logs/--no-json-logs", default=False)
def main(
    config_path: str,
    local: bool,
    once: bool,
    data_dir: Optional[str],
    log_level: Optional[str],
    json_logs: bool,
) -> None:
    """Flash-loan arbitrage bot."""
    config = demo_config() if local else load_bot_config(Path(config_path))
    if data_dir:
        config.monitoring.data_dir = data_dir

    level = log_level or config.monitoring.log_level
    setup_logging(
        level=getattr(logging, level.upper(), logging.INFO),
        log_dir=config.monitoring.log_dir,
        json_format=json_logs,
    )
    set_global_context(service="flashloop", version=BOT_VERSION, chain_id=config.chain.chain_id)

    logger.info(
        "Starting flashloop",
        extra={"context": {
            "mode": "LOCAL" if local else "RPC",
            "venues": [v.name for v in config.venues],
            "tokens": len(config.tokens),
            "mev_protection": config.mev_protection_available,
            "once": once,
        }},
    )

    async def run() -> None:
        stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stopped.set)

        def build() -> BotContext:
            if local:
                return build_local_context(config, stopped=stopped)
            return build_rpc_context(config, stopped=stopped)

        if once:
            summary = await run_once(build())
            logger.info("Single cycle complete", extra={"context": summary})
            return
        await supervise(build, config.monitoring.restart_backoff_seconds)

    asyncio.run(run())


if __name__ == "__main__":
    main()
