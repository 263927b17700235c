# PATH: config/__init__.py
"""
Configuration loading for flashloop.

bot.yaml (see bot.example.yaml) is parsed with yaml.safe_load into
BotConfig. Values from the environment (.env is loaded with python-dotenv)
override YAML values. Missing keys fall back to the dataclass defaults.

ENV OVERRIDES:
  RPC_URL, PRIVATE_KEY, CONTRACT_ADDRESS, USE_FLASHBOTS,
  FLASHBOTS_RELAY_URL, FLASHBOTS_AUTH_KEY, MIN_PROFIT_USD,
  MIN_PROFIT_PERCENT, MAX_GAS_PRICE (gwei), SLIPPAGE_TOLERANCE (percent),
  MAX_EXECUTIONS_PER_HOUR, COINGECKO_API_KEY, LOG_LEVEL
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from core.constants import (
    DEFAULT_BASE_FEE_MULTIPLIER,
    DEFAULT_BLOCK_TIME_SECONDS,
    DEFAULT_BUNDLE_TARGET_BLOCKS,
    DEFAULT_DISCOVERY_SECONDS,
    DEFAULT_DISCOVERY_WINDOW,
    DEFAULT_EXECUTION_COOLDOWN_SECONDS,
    DEFAULT_GAS_LIMIT,
    DEFAULT_GAS_REFRESH_SECONDS,
    DEFAULT_LIQUIDITY_CHECK_SECONDS,
    DEFAULT_MAX_CANDIDATE_TOKENS,
    DEFAULT_MAX_EXECUTIONS_PER_HOUR,
    DEFAULT_MAX_GAS_PRICE_GWEI,
    DEFAULT_MAX_HOPS,
    DEFAULT_MIN_LIQUIDITY_NATIVE,
    DEFAULT_MIN_PROFIT_BPS,
    DEFAULT_MIN_PROFIT_PERCENT,
    DEFAULT_MIN_PROFIT_USD,
    DEFAULT_MIN_RESERVE_RATIO_BPS,
    DEFAULT_PAIR_RECHECK_SECONDS,
    DEFAULT_PAIRS_PER_CYCLE,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_PRIORITY_FEE_MULTIPLIER,
    DEFAULT_RESTART_BACKOFF_SECONDS,
    DEFAULT_ROUTE_VALIDITY_SECONDS,
    RELAY_SUPPORTED_CHAINS,
    RELAY_URLS,
    VenueFamily,
)
from core.exceptions import ConfigError
from core.math import percent_to_bps, safe_decimal
from core.validators import normalize_address

CONFIG_DIR = Path(__file__).parent


@dataclass
class ChainSettings:
    """Target chain and RPC endpoints."""
    chain_id: int = 1
    name: str = "ethereum"
    rpc_urls: List[str] = field(default_factory=list)
    wrapped_native: str = ""
    native_symbol: str = "ETH"
    block_time_seconds: int = DEFAULT_BLOCK_TIME_SECONDS
    rpc_timeout_seconds: int = 10


@dataclass
class VenueSettings:
    """One DEX deployment. fee_bps is the pool fee (30 = 0.3%)."""
    name: str
    family: VenueFamily = VenueFamily.UNISWAP_V2
    router: str = ""
    factory: str = ""
    quoter: str = ""
    fee_bps: int = 30


@dataclass
class TokenSettings:
    """Configured token. Base tokens anchor every watched pair."""
    address: str
    symbol: str
    decimals: int = 18
    name: str = ""
    is_base: bool = False
    usd_price: Optional[Decimal] = None


@dataclass
class TradingSettings:
    min_profit_usd: Decimal = DEFAULT_MIN_PROFIT_USD
    min_profit_percent: Decimal = DEFAULT_MIN_PROFIT_PERCENT
    max_gas_price_gwei: Decimal = Decimal(DEFAULT_MAX_GAS_PRICE_GWEI)
    gas_limit: int = DEFAULT_GAS_LIMIT
    slippage_percent: Decimal = Decimal("0.5")
    priority_fee_multiplier: Decimal = DEFAULT_PRIORITY_FEE_MULTIPLIER
    base_fee_multiplier: Decimal = DEFAULT_BASE_FEE_MULTIPLIER
    trade_size: Decimal = Decimal("1")
    # Execution unit parameters
    unit_min_profit_bps: int = DEFAULT_MIN_PROFIT_BPS
    min_reserve_ratio_bps: int = DEFAULT_MIN_RESERVE_RATIO_BPS
    route_validity_seconds: int = DEFAULT_ROUTE_VALIDITY_SECONDS

    @property
    def slippage_bps(self) -> int:
        return percent_to_bps(self.slippage_percent)


@dataclass
class MonitoringSettings:
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    max_hops: int = DEFAULT_MAX_HOPS
    max_candidate_tokens: int = DEFAULT_MAX_CANDIDATE_TOKENS
    pairs_per_cycle: int = DEFAULT_PAIRS_PER_CYCLE
    pair_recheck_seconds: int = DEFAULT_PAIR_RECHECK_SECONDS
    gas_refresh_seconds: int = DEFAULT_GAS_REFRESH_SECONDS
    liquidity_check_seconds: int = DEFAULT_LIQUIDITY_CHECK_SECONDS
    discovery_seconds: int = DEFAULT_DISCOVERY_SECONDS
    discovery_window: int = DEFAULT_DISCOVERY_WINDOW
    min_liquidity_native: Decimal = DEFAULT_MIN_LIQUIDITY_NATIVE
    restart_backoff_seconds: int = DEFAULT_RESTART_BACKOFF_SECONDS
    price_cache_seconds: int = 60
    coingecko_api_key: str = ""
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    data_dir: str = "data"


@dataclass
class SecuritySettings:
    max_executions_per_hour: int = DEFAULT_MAX_EXECUTIONS_PER_HOUR
    execution_cooldown_seconds: int = DEFAULT_EXECUTION_COOLDOWN_SECONDS
    private_key: str = ""
    contract_address: str = ""
    beneficiary: str = ""


@dataclass
class RelaySettings:
    enabled: bool = False
    relay_url: str = ""
    auth_key: str = ""
    target_blocks: int = DEFAULT_BUNDLE_TARGET_BLOCKS
    supported_chains: List[int] = field(default_factory=lambda: sorted(RELAY_SUPPORTED_CHAINS))

    def supports(self, chain_id: int) -> bool:
        return chain_id in self.supported_chains

    def url_for(self, chain_id: int) -> str:
        """Configured relay URL, else the known relay for the chain."""
        return self.relay_url or RELAY_URLS.get(chain_id, "")


@dataclass
class BotConfig:
    """Full bot configuration."""
    chain: ChainSettings = field(default_factory=ChainSettings)
    venues: List[VenueSettings] = field(default_factory=list)
    tokens: List[TokenSettings] = field(default_factory=list)
    trading: TradingSettings = field(default_factory=TradingSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    relay: RelaySettings = field(default_factory=RelaySettings)

    @property
    def base_tokens(self) -> List[TokenSettings]:
        return [t for t in self.tokens if t.is_base]

    @property
    def mev_protection_available(self) -> bool:
        return self.relay.enabled and self.relay.supports(self.chain.chain_id)

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            ConfigError: On the first invalid setting
        """
        if not self.venues:
            raise ConfigError("At least one venue must be configured")
        names = [v.name for v in self.venues]
        if len(set(names)) != len(names):
            raise ConfigError("Venue names must be unique", details={"venues": names})
        if self.monitoring.max_hops not in (2, 3):
            raise ConfigError(
                f"max_hops must be 2 or 3, got {self.monitoring.max_hops}",
                details={"max_hops": self.monitoring.max_hops},
            )
        intervals = {
            "polling_interval_ms": self.monitoring.polling_interval_ms,
            "gas_refresh_seconds": self.monitoring.gas_refresh_seconds,
            "liquidity_check_seconds": self.monitoring.liquidity_check_seconds,
            "discovery_seconds": self.monitoring.discovery_seconds,
            "route_validity_seconds": self.trading.route_validity_seconds,
            "max_executions_per_hour": self.security.max_executions_per_hour,
            "pairs_per_cycle": self.monitoring.pairs_per_cycle,
            "target_blocks": self.relay.target_blocks,
            "gas_limit": self.trading.gas_limit,
        }
        for key, value in intervals.items():
            if value <= 0:
                raise ConfigError(f"{key} must be positive", details={key: value})
        if not 0 <= self.trading.slippage_bps < 10_000:
            raise ConfigError("slippage_percent must be in [0, 100)")
        if self.trading.trade_size <= 0:
            raise ConfigError("trade_size must be positive")
        if not self.base_tokens:
            raise ConfigError("At least one base token must be configured")


def _decimal(value: Any, default: Decimal) -> Decimal:
    return safe_decimal(value, default) if value is not None else default


def _parse_family(raw: Any, venue_name: str) -> VenueFamily:
    try:
        return VenueFamily(str(raw).upper())
    except ValueError:
        raise ConfigError(
            f"Unknown venue family {raw!r} for {venue_name}",
            details={"venue": venue_name, "family": raw},
        ) from None


def _build(cls, data: Mapping[str, Any], decimals: tuple = ()) -> Any:
    """Instantiate a flat settings dataclass from known keys only."""
    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in (data or {}).items() if k in known}
    for key in decimals:
        if key in kwargs:
            kwargs[key] = safe_decimal(kwargs[key])
    return cls(**kwargs)


def parse_bot_config(data: Mapping[str, Any]) -> BotConfig:
    """Build BotConfig from a parsed YAML mapping (no env, no validation)."""
    chain = _build(ChainSettings, data.get("chain", {}))
    if chain.wrapped_native:
        chain.wrapped_native = normalize_address(chain.wrapped_native)

    venues = []
    for raw in data.get("venues", []) or []:
        if "name" not in raw:
            raise ConfigError("Venue entry without a name", details={"venue": raw})
        venues.append(VenueSettings(
            name=raw["name"],
            family=_parse_family(raw.get("family", "UNISWAP_V2"), raw["name"]),
            router=raw.get("router", ""),
            factory=raw.get("factory", ""),
            quoter=raw.get("quoter", ""),
            fee_bps=int(raw.get("fee_bps", 30)),
        ))

    tokens = []
    for raw in data.get("tokens", []) or []:
        price = raw.get("usd_price")
        tokens.append(TokenSettings(
            address=normalize_address(raw["address"]),
            symbol=raw["symbol"],
            decimals=int(raw.get("decimals", 18)),
            name=raw.get("name", ""),
            is_base=bool(raw.get("is_base", False)),
            usd_price=safe_decimal(price) if price is not None else None,
        ))

    return BotConfig(
        chain=chain,
        venues=venues,
        tokens=tokens,
        trading=_build(
            TradingSettings,
            data.get("trading", {}),
            decimals=(
                "min_profit_usd", "min_profit_percent", "max_gas_price_gwei",
                "slippage_percent", "priority_fee_multiplier",
                "base_fee_multiplier", "trade_size",
            ),
        ),
        monitoring=_build(
            MonitoringSettings, data.get("monitoring", {}), decimals=("min_liquidity_native",)
        ),
        security=_build(SecuritySettings, data.get("security", {})),
        relay=_build(RelaySettings, data.get("relay", {})),
    )


def apply_env_overrides(config: BotConfig, env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Apply environment variable overrides in place and return config."""
    env = os.environ if env is None else env

    if env.get("RPC_URL"):
        config.chain.rpc_urls = [env["RPC_URL"]]
    if env.get("PRIVATE_KEY"):
        config.security.private_key = env["PRIVATE_KEY"]
    if env.get("CONTRACT_ADDRESS"):
        config.security.contract_address = env["CONTRACT_ADDRESS"]
    if env.get("USE_FLASHBOTS"):
        config.relay.enabled = env["USE_FLASHBOTS"].strip().lower() == "true"
    if env.get("FLASHBOTS_RELAY_URL"):
        config.relay.relay_url = env["FLASHBOTS_RELAY_URL"]
    if env.get("FLASHBOTS_AUTH_KEY"):
        config.relay.auth_key = env["FLASHBOTS_AUTH_KEY"]
    if env.get("MIN_PROFIT_USD"):
        config.trading.min_profit_usd = _decimal(env["MIN_PROFIT_USD"], config.trading.min_profit_usd)
    if env.get("MIN_PROFIT_PERCENT"):
        config.trading.min_profit_percent = _decimal(
            env["MIN_PROFIT_PERCENT"], config.trading.min_profit_percent
        )
    if env.get("MAX_GAS_PRICE"):
        config.trading.max_gas_price_gwei = _decimal(
            env["MAX_GAS_PRICE"], config.trading.max_gas_price_gwei
        )
    if env.get("SLIPPAGE_TOLERANCE"):
        config.trading.slippage_percent = _decimal(
            env["SLIPPAGE_TOLERANCE"], config.trading.slippage_percent
        )
    if env.get("MAX_EXECUTIONS_PER_HOUR"):
        try:
            config.security.max_executions_per_hour = int(env["MAX_EXECUTIONS_PER_HOUR"])
        except ValueError:
            raise ConfigError(
                "MAX_EXECUTIONS_PER_HOUR must be an integer",
                details={"value": env["MAX_EXECUTIONS_PER_HOUR"]},
            ) from None
    if env.get("COINGECKO_API_KEY"):
        config.monitoring.coingecko_api_key = env["COINGECKO_API_KEY"]
    if env.get("LOG_LEVEL"):
        config.monitoring.log_level = env["LOG_LEVEL"].upper()
    return config


def load_bot_config(
    config_path: Optional[Path] = None,
    use_env: bool = True,
) -> BotConfig:
    """
    Load bot configuration from YAML plus environment overrides.

    Args:
        config_path: Path to bot.yaml (default: config/bot.yaml)
        use_env: Load .env and apply environment overrides

    Returns:
        Validated BotConfig

    Raises:
        ConfigError: Missing file or invalid settings
    """
    if config_path is None:
        config_path = CONFIG_DIR / "bot.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            data: Dict[str, Any] = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    config = parse_bot_config(data)
    if use_env:
        load_dotenv()
        apply_env_overrides(config)
    config.validate()
    return config
