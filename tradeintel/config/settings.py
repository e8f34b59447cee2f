"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class IndicatorConfig(BaseModel):
    """Technical indicator parameters."""

    rsi_period: int = Field(default=14, ge=2, le=50)
    macd_fast: int = Field(default=12, ge=2, le=50)
    macd_slow: int = Field(default=26, ge=5, le=100)
    macd_signal: int = Field(default=9, ge=2, le=50)
    atr_period: int = Field(default=14, ge=2, le=50)
    relative_volume_period: int = Field(default=20, ge=2, le=100)
    # Trend strength blend
    trend_sma_period: int = Field(default=20, ge=2, le=100)
    trend_momentum_period: int = Field(default=10, ge=2, le=50)
    trend_consistency_window: int = Field(default=10, ge=2, le=50)

    @field_validator("macd_slow")
    @classmethod
    def validate_macd_slow(cls, v: int, info) -> int:
        fast = info.data.get("macd_fast", 12)
        if v <= fast:
            raise ValueError(f"macd_slow ({v}) must exceed macd_fast ({fast})")
        return v


class SessionConfig(BaseModel):
    """Exchange session clock (IST cash session by default)."""

    timezone: str = "Asia/Kolkata"
    open_time: str = "09:15"
    opening_end: str = "10:00"
    morning_end: str = "11:30"
    midday_end: str = "14:00"
    afternoon_end: str = "15:00"
    close_time: str = "15:30"
    weekends_closed: bool = True
    # Time-of-day multipliers applied to the raw signal score
    closed_multiplier: float = Field(default=0.0, ge=0.0, le=2.0)
    opening_multiplier: float = Field(default=0.7, ge=0.0, le=2.0)
    morning_multiplier: float = Field(default=1.0, ge=0.0, le=2.0)
    midday_multiplier: float = Field(default=0.8, ge=0.0, le=2.0)
    afternoon_multiplier: float = Field(default=1.0, ge=0.0, le=2.0)
    closing_multiplier: float = Field(default=0.6, ge=0.0, le=2.0)


class RegimeConfig(BaseModel):
    """Market regime classification configuration."""

    snapshot_limit: int = Field(default=10, ge=1, le=500)
    validity_minutes: int = Field(default=5, ge=1, le=60)
    # Mean ATR is expressed as a percentage of this baseline
    volatility_baseline: float = Field(default=1000.0, gt=0.0)
    volatility_normal_pct: float = Field(default=1.0, ge=0.0)
    volatility_high_pct: float = Field(default=2.0, ge=0.0)
    volatility_extreme_pct: float = Field(default=3.0, ge=0.0)
    volume_dry: float = Field(default=0.5, ge=0.0)
    volume_below_average: float = Field(default=0.8, ge=0.0)
    volume_above_average: float = Field(default=1.2, ge=0.0)
    volume_surge: float = Field(default=2.0, ge=0.0)
    trend_threshold: float = Field(default=20.0, ge=0.0, le=100.0)
    strong_trend_threshold: float = Field(default=50.0, ge=0.0, le=100.0)
    edge_session_confidence_factor: float = Field(default=0.8, ge=0.0, le=1.0)


class ScoringConfig(BaseModel):
    """Signal scoring configuration."""

    macd_epsilon: float = Field(default=0.001, ge=0.0)
    vwap_tight_pct: float = Field(default=0.5, ge=0.0, le=10.0)
    vwap_near_pct: float = Field(default=1.0, ge=0.0, le=10.0)


class RulesConfig(BaseModel):
    """Defaults for the active trading rule set."""

    trending_multiplier: float = Field(default=1.2, ge=0.0, le=3.0)
    range_multiplier: float = Field(default=0.8, ge=0.0, le=3.0)
    high_volatility_multiplier: float = Field(default=0.6, ge=0.0, le=3.0)
    min_score_threshold: float = Field(default=60.0, ge=0.0, le=100.0)
    max_daily_trades: int = Field(default=10, ge=1, le=500)
    max_daily_loss: float = Field(default=5000.0, gt=0.0)
    consecutive_loss_limit: int = Field(default=3, ge=1, le=50)


class ExitConfig(BaseModel):
    """Early-exit scoring configuration."""

    stall_weight: float = Field(default=30.0, ge=0.0, le=100.0)
    momentum_weight: float = Field(default=35.0, ge=0.0, le=100.0)
    volume_weight: float = Field(default=25.0, ge=0.0, le=100.0)
    vwap_weight: float = Field(default=30.0, ge=0.0, le=100.0)
    time_weight: float = Field(default=15.0, ge=0.0, le=100.0)
    exit_threshold: float = Field(default=50.0, ge=0.0, le=200.0)
    stall_short_minutes: int = Field(default=30, ge=1)
    stall_short_move_pct: float = Field(default=0.3, ge=0.0)
    stall_long_minutes: int = Field(default=45, ge=1)
    stall_long_move_pct: float = Field(default=0.5, ge=0.0)
    rsi_overbought: float = Field(default=75.0, ge=50.0, le=100.0)
    rsi_oversold: float = Field(default=25.0, ge=0.0, le=50.0)
    macd_epsilon: float = Field(default=0.001, ge=0.0)
    trend_reversal: float = Field(default=30.0, ge=0.0, le=100.0)
    min_relative_volume: float = Field(default=0.5, ge=0.0)
    vwap_tolerance_pct: float = Field(default=0.2, ge=0.0, le=5.0)
    max_hold_minutes: int = Field(default=60, ge=1)


class LearningConfig(BaseModel):
    """Outcome learner configuration."""

    window_days: int = Field(default=7, ge=1, le=90)
    min_sample_size: int = Field(default=5, ge=1, le=1000)
    damping: float = Field(default=0.2, gt=0.0, le=1.0)
    proposal_max_age_hours: int = Field(default=24, ge=1, le=168)
    trending_min_win_rate: float = Field(default=50.0, ge=0.0, le=100.0)
    range_max_win_rate: float = Field(default=60.0, ge=0.0, le=100.0)
    high_volatility_min_win_rate: float = Field(default=40.0, ge=0.0, le=100.0)
    bucket_min_win_rate: float = Field(default=50.0, ge=0.0, le=100.0)
    multiplier_step: float = Field(default=0.2, gt=0.0, le=1.0)
    threshold_step: float = Field(default=10.0, gt=0.0, le=50.0)
    min_multiplier: float = Field(default=0.1, ge=0.0)
    max_multiplier: float = Field(default=2.0, ge=0.1)
    max_score_threshold: float = Field(default=100.0, ge=0.0, le=100.0)


class MarketDataConfig(BaseModel):
    """Upstream market-data provider configuration."""

    base_url: str = "https://www.alphavantage.co"
    interval: Literal["1min", "5min", "15min", "30min", "60min"] = "5min"
    outputsize: Literal["compact", "full"] = "compact"
    symbol_suffix: str = ".BSE"
    requests_per_minute: int = Field(default=5, ge=1, le=600)
    request_timeout_sec: float = Field(default=10.0, ge=1.0, le=120.0)
    retry_attempts: int = Field(default=2, ge=0, le=5)
    pacing_delay_ms: int = Field(default=300, ge=0, le=10_000)
    symbols: list[str] = Field(
        default_factory=lambda: ["RELIANCE", "TCS", "INFY", "HDFCBANK", "ICICIBANK"]
    )


class PaperConfig(BaseModel):
    """Paper trading (simulated positions only)."""

    enabled: bool = True
    default_quantity: float = Field(default=1.0, gt=0.0)
    signal_validity_minutes: int = Field(default=15, ge=1, le=240)
    target_atr_multiple: float = Field(default=2.0, gt=0.0, le=10.0)
    stop_atr_multiple: float = Field(default=1.0, gt=0.0, le=10.0)
    fallback_target_pct: float = Field(default=1.0, gt=0.0, le=20.0)
    fallback_stop_pct: float = Field(default=0.5, gt=0.0, le=20.0)


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    ledger_path: str = "./data/ledger"
    state_path: str = "./data/state"
    logs_path: str = "./logs"


class MonitoringConfig(BaseModel):
    """Monitoring and logging configuration."""

    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_http: bool = False
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)


class Settings(BaseSettings):
    """Main application settings."""

    user_id: str = "default"

    # API credentials from environment
    alpha_vantage_api_key: str = Field(default="", alias="ALPHA_VANTAGE_API_KEY")

    # Sub-configurations
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    def validate_for_cycle(self) -> list[str]:
        """Validate settings are usable for a live data cycle. Returns list of errors."""
        errors = []
        if not self.alpha_vantage_api_key:
            errors.append("ALPHA_VANTAGE_API_KEY not set")
        if not self.market_data.symbols:
            errors.append("market_data.symbols is empty")
        if self.regime.volatility_normal_pct > self.regime.volatility_high_pct:
            errors.append("regime.volatility_normal_pct exceeds volatility_high_pct")
        if self.regime.volatility_high_pct > self.regime.volatility_extreme_pct:
            errors.append("regime.volatility_high_pct exceeds volatility_extreme_pct")
        return errors


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file values
    3. Default values
    """
    config_data = {}

    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    env_path = config_file.parent / ".env"
    settings = Settings(**config_data, _env_file=env_path)

    return settings


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    default_config = {
        "user_id": "default",
        "indicators": {
            "rsi_period": 14,
            "macd_fast": 12,
            "macd_slow": 26,
            "macd_signal": 9,
            "atr_period": 14,
            "relative_volume_period": 20,
        },
        "session": {
            "timezone": "Asia/Kolkata",
            "open_time": "09:15",
            "close_time": "15:30",
        },
        "regime": {
            "validity_minutes": 5,
            "volatility_baseline": 1000.0,
        },
        "rules": {
            "trending_multiplier": 1.2,
            "range_multiplier": 0.8,
            "high_volatility_multiplier": 0.6,
            "min_score_threshold": 60.0,
            "max_daily_trades": 10,
            "max_daily_loss": 5000.0,
            "consecutive_loss_limit": 3,
        },
        "learning": {
            "window_days": 7,
            "min_sample_size": 5,
            "damping": 0.2,
            "proposal_max_age_hours": 24,
        },
        "market_data": {
            "interval": "5min",
            "requests_per_minute": 5,
            "pacing_delay_ms": 300,
            "symbols": ["RELIANCE", "TCS", "INFY", "HDFCBANK", "ICICIBANK"],
        },
        "paper": {
            "enabled": True,
            "default_quantity": 1.0,
        },
        "storage": {
            "ledger_path": "./data/ledger",
            "state_path": "./data/state",
            "logs_path": "./logs",
        },
        "monitoring": {
            "metrics_port": 9090,
            "log_level": "INFO",
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
