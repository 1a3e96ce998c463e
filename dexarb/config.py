# dexarb/config.py
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

import yaml

DEFAULT_FEE_TIERS = [500, 3000, 10000]


class ConfigError(ValueError):
    """Raised when config.yaml is missing a section or carries an invalid value."""


@dataclass
class SystemConfig:
    dry_run: bool = True
    cycle_interval_seconds: float = 10.0
    log_level: str = "INFO"


@dataclass
class GatewayConfig:
    dex_backend_url: str = "https://dex-backend-prod1.defi.gala.com"
    bundler_url: str = "https://bundle-backend-prod1.defi.gala.com"
    wallet_address: str = ""
    timeout_seconds: float = 15.0
    token_keys: Dict[str, str] = field(default_factory=dict)


@dataclass
class QuoteConfig:
    fee_tiers: List[int] = field(default_factory=lambda: list(DEFAULT_FEE_TIERS))
    cache_ttl_seconds: float = 30.0
    default_fee_tier: int = 3000


@dataclass
class SpiderConfig:
    pools: List[Tuple[str, str]] = field(default_factory=lambda: [
        ("GALA", "GUSDC"),
        ("GALA", "ETIME"),
        ("GALA", "GUSDT"),
        ("GUSDC", "GUSDT"),
        ("GALA", "GWETH"),
        ("GUSDC", "GWETH"),
    ])
    max_positions: int = 8
    position_size: float = 5.0
    profit_target_bps: float = 200
    stop_loss_bps: float = 100
    max_hold_seconds: float = 3600
    scan_interval_seconds: float = 30
    entry_slippage_bps: int = 100
    exit_slippage_bps: int = 200
    min_score: float = 5.0
    top_k: int = 5
    loss_exclusion_pct: float = 0.5
    valuation_fallback_loss_pct: float = 1.0
    max_close_retries: int = 3
    min_volume: float = 10
    max_volatility: float = 0.08


@dataclass
class TriangularConfig:
    paths: List[List[str]] = field(default_factory=lambda: [
        ["GUSDC", "GALA", "GUSDT", "GUSDC"],
        ["GUSDC", "GWETH", "GUSDT", "GUSDC"],
        ["GUSDT", "GALA", "GUSDC", "GUSDT"],
    ])
    base_amount: float = 15.0
    min_profit_bps: float = 30
    slippage_bps: int = 40
    min_volatility: float = 0.01
    min_volume: float = 50


@dataclass
class GuidanceConfig:
    enabled: bool = False
    interval_seconds: float = 120
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
    api_key: str = ""
    api_key_env: str = "GEMINI_API_KEY"
    slippage_bps: int = 100
    bridge_tokens: List[str] = field(default_factory=lambda: ["GUSDC", "GALA"])
    keep_ratio: float = 0.8
    static_label: Optional[str] = None


@dataclass
class CrossVenueConfig:
    enabled: bool = False
    interval_seconds: float = 300
    exchanges: List[str] = field(default_factory=lambda: ["binance", "coinbase"])
    min_profit_bps: float = 150
    reference_pairs: List[Tuple[str, str]] = field(default_factory=lambda: [("GALA", "GUSDC")])
    symbol_map: Dict[str, str] = field(default_factory=lambda: {
        "GALA": "GALA", "GUSDC": "USDC", "GUSDT": "USDT", "GWETH": "ETH", "GWBTC": "BTC",
    })
    quote_currency: str = "USDT"
    trade_size: float = 1000
    bridge_cost: float = 20
    min_estimated_profit: float = 20


@dataclass
class RiskConfig:
    max_daily_loss: float = 50
    max_position_size: float = 100
    max_portfolio_exposure: float = 500
    max_slippage_bps: int = 300
    max_concurrent: int = 8
    max_consecutive_failures: int = 5
    notification_queue_size: int = 256


@dataclass
class AuditConfig:
    trade_log: Optional[str] = "logs/trades.csv"


@dataclass
class MarketConfig:
    """Ambient market conditions fed into each strategy's activation predicate."""
    volume: float = 100
    volatility: float = 0.02


@dataclass
class EngineConfig:
    system: SystemConfig = field(default_factory=SystemConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    quotes: QuoteConfig = field(default_factory=QuoteConfig)
    spider: SpiderConfig = field(default_factory=SpiderConfig)
    triangular: TriangularConfig = field(default_factory=TriangularConfig)
    guidance: GuidanceConfig = field(default_factory=GuidanceConfig)
    cross_venue: CrossVenueConfig = field(default_factory=CrossVenueConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    market: MarketConfig = field(default_factory=MarketConfig)

    def validate(self) -> "EngineConfig":
        """Checks cross-field invariants. Returns self so calls can be chained."""
        if not self.quotes.fee_tiers:
            raise ConfigError("quotes.fee_tiers must list at least one fee tier")

        for pool in self.spider.pools:
            if len(pool) != 2 or pool[0] == pool[1]:
                raise ConfigError(f"spider.pools entry {pool!r} must be two distinct tokens")
        if self.spider.max_positions < 1:
            raise ConfigError("spider.max_positions must be >= 1")
        if self.spider.position_size <= 0:
            raise ConfigError("spider.position_size must be positive")
        if self.spider.profit_target_bps <= 0 or self.spider.stop_loss_bps <= 0:
            raise ConfigError("spider.profit_target_bps and spider.stop_loss_bps must be positive")
        if self.spider.exit_slippage_bps < self.spider.entry_slippage_bps:
            raise ConfigError("spider.exit_slippage_bps must not be tighter than entry_slippage_bps")

        for path in self.triangular.paths:
            if len(path) not in (4, 5):
                raise ConfigError(f"triangular path {path!r} must visit 3 or 4 tokens")
            if path[0] != path[-1]:
                raise ConfigError(f"triangular path {path!r} must start and end on the same token")
        if self.triangular.base_amount <= 0:
            raise ConfigError("triangular.base_amount must be positive")

        if not 0 < self.guidance.keep_ratio <= 1:
            raise ConfigError("guidance.keep_ratio must be in (0, 1]")
        return self


def _build_section(cls, raw: Any, name: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")

    values = dict(raw)
    # YAML has no tuples; pairs come back as lists
    for key in ("pools", "reference_pairs"):
        if key in values:
            values[key] = [tuple(p) for p in values[key]]
    return cls(**values)


def config_from_dict(raw: Optional[Dict[str, Any]]) -> EngineConfig:
    raw = raw or {}
    sections = {f.name: f.default_factory for f in fields(EngineConfig)}
    unknown = set(raw) - set(sections)
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    built = {name: _build_section(factory, raw.get(name), name) for name, factory in sections.items()}
    cfg = EngineConfig(**built)

    # Secrets are resolved once here; components never read the environment.
    if not cfg.guidance.api_key and cfg.guidance.api_key_env:
        cfg.guidance.api_key = os.getenv(cfg.guidance.api_key_env, "")

    return cfg.validate()


def load_config(path: str = "config.yaml") -> EngineConfig:
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e
    return config_from_dict(raw)
