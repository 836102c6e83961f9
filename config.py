"""
Configuration loaded from environment variables. Fail-fast on contradictory thresholds.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, ValidationError, model_validator

from scanner.errors import ConfigurationError


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # Matching thresholds (live execution)
    min_equivalence_score: float = Field(default=0.80, ge=0.0, le=1.0)
    min_title_similarity: float = Field(default=0.70, ge=0.0, le=1.0)
    # Event dates further apart than this score zero date alignment
    max_date_drift_days: float = Field(default=7.0, gt=0)
    # Hard cap applied before scoring; pairs beyond it are never scored
    hard_date_drift_days: float = Field(default=30.0, gt=0)

    # Profit thresholds (fractions of capital: 0.02 = 2%)
    min_net_profit_pct: float = Field(default=0.02, ge=0.0, lt=1.0)
    min_gross_profit_pct: float = Field(default=0.03, ge=0.0, lt=1.0)

    # Risk limits (0-100)
    max_risk_score: float = Field(default=60.0, ge=0, le=100)
    max_execution_risk: float = Field(default=50.0, ge=0, le=100)

    # Liquidity + sizing
    min_liquidity_usd: float = Field(default=500.0, ge=0)
    min_volume_usd: float = Field(default=1000.0, ge=0)
    max_position_pct: float = Field(default=0.05, gt=0, le=1.0)
    default_position_usd: float = Field(default=100.0, gt=0)
    max_position_usd: float = Field(default=1000.0, gt=0)
    max_execution_time_ms: int = Field(default=5000, gt=0)
    max_price_deviation: float = Field(default=0.02, ge=0, le=1.0)
    # Trailing traded volume, selects volume-tier fee discounts
    trader_volume_usd: float = Field(default=0.0, ge=0)

    # Scanner
    scan_platforms: list[str] = ["polymarket", "kalshi", "manifold"]
    scan_query: str = ""
    max_markets_per_platform: int = Field(default=50, ge=1)
    platform_timeout_sec: float = Field(default=15.0, gt=0)
    max_opportunities: int = Field(default=10, ge=1)
    min_confidence_grade: str = Field(default="C", pattern="^[ABCDF]$")

    # Registry (discovery runs looser than live thresholds; each scan revalidates)
    registry_refresh_sec: float = Field(default=300.0, gt=0)
    registry_min_equivalence_score: float = Field(default=0.30, ge=0.0, le=1.0)
    registry_min_title_similarity: float = Field(default=0.20, ge=0.0, le=1.0)
    registry_max_markets_per_platform: int = Field(default=100, ge=1)

    # Monitor
    monitor_interval_sec: float = Field(default=30.0, ge=1.0)
    monitor_fee_adjustment: float = Field(default=0.02, ge=0.0, lt=1.0)
    monitor_price_history_max: int = Field(default=500, ge=1)
    monitor_history_max: int = Field(default=100, ge=1)
    monitor_max_errors: int = Field(default=50, ge=1)

    # Alert deduplication
    alert_cooldown_sec: float = Field(default=1800.0, ge=0.0)
    alert_realert_delta_pp: float = Field(default=5.0, gt=0)
    alert_prune_age_sec: float = Field(default=7200.0, gt=0)
    alert_max_entries: int = Field(default=10_000, ge=1)

    # API endpoints
    gamma_host: str = "https://gamma-api.polymarket.com"
    kalshi_host: str = "https://api.elections.kalshi.com/trade-api/v2"
    manifold_host: str = "https://api.manifold.markets/v0"
    http_timeout_sec: float = Field(default=10.0, gt=0)

    # Modes
    log_level: str = "INFO"
    json_log_file: str = ""
    # Empty disables persistence; dedup state is then process-local only
    state_db_path: str = ""

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Config":
        if self.min_net_profit_pct > self.min_gross_profit_pct:
            raise ValueError(
                f"min_net_profit_pct ({self.min_net_profit_pct}) exceeds "
                f"min_gross_profit_pct ({self.min_gross_profit_pct})"
            )
        if self.default_position_usd > self.max_position_usd:
            raise ValueError(
                f"default_position_usd ({self.default_position_usd}) exceeds "
                f"max_position_usd ({self.max_position_usd})"
            )
        if self.registry_min_equivalence_score > self.min_equivalence_score:
            raise ValueError("registry_min_equivalence_score must not exceed min_equivalence_score")
        if self.registry_min_title_similarity > self.min_title_similarity:
            raise ValueError("registry_min_title_similarity must not exceed min_title_similarity")
        if self.max_date_drift_days > self.hard_date_drift_days:
            raise ValueError("max_date_drift_days must not exceed hard_date_drift_days")
        return self


def registry_config(cfg: Config) -> Config:
    """Copy of cfg with the looser discovery thresholds swapped in."""
    return cfg.model_copy(update={
        "min_equivalence_score": cfg.registry_min_equivalence_score,
        "min_title_similarity": cfg.registry_min_title_similarity,
    })


def load_config(**overrides) -> Config:
    """Load and validate config from environment. Raises ConfigurationError on bad values."""
    try:
        return Config(**overrides)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
