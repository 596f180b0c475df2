"""
Global settings and configuration management for the rebalancing engine.

This module provides centralized configuration using Pydantic for validation
and environment variable support. Components receive explicit config objects;
the settings tree here is only the default source for those objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.types import ConfigurationError


# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
CONFIG_DIR = PROJECT_ROOT / "config"
LOGS_DIR = PROJECT_ROOT / "logs"


def get_logger(name: str | None = None) -> "logger":
    """
    Get a logger instance with optional name binding.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


class OptimizerSettings(BaseSettings):
    """Allocation optimizer tuning constants."""

    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_OPTIMIZER_",
        env_file=".env",
        extra="ignore"
    )

    default_volatility: float = 0.2  # Used when an asset has no usable volatility
    correlation_threshold: float = 0.7  # |corr| above this is penalized
    correlation_penalty: float = 0.3  # Penalty per unit of average |corr|
    max_correlation_penalty: float = 0.5
    blend_factor: float = 0.5  # Weight of diversified vs risk-parity weights
    weight_tolerance: float = 1e-9

    @field_validator("blend_factor", "max_correlation_penalty")
    @classmethod
    def check_unit_interval(cls, v: float) -> float:
        """Blend and penalty caps are fractions."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be between 0 and 1")
        return v

    @field_validator("default_volatility")
    @classmethod
    def check_positive(cls, v: float) -> float:
        """Fallback volatility must be usable as a divisor."""
        if v <= 0:
            raise ValueError("default_volatility must be positive")
        return v


class ExecutionSettings(BaseSettings):
    """Order pacing configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_EXECUTION_",
        env_file=".env",
        extra="ignore"
    )

    # Scheduler loop
    poll_interval_seconds: float = 0.5  # Max sleep of the dispatch loop

    # Iceberg defaults
    iceberg_slices: int = 5
    iceberg_price_range: float = 0.001  # +/- 0.1% limit price perturbation
    iceberg_time_interval: float = 30.0  # Seconds between slices

    # TWAP defaults
    twap_duration_minutes: float = 10.0
    twap_intervals: int = 5

    random_seed: int | None = None


class RoutingSettings(BaseSettings):
    """Smart order routing configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_ROUTING_",
        env_file=".env",
        extra="ignore"
    )

    quote_timeout_seconds: float = 5.0
    max_concurrent_quotes: int = 8

    # Composite score weights
    price_weight: float = 0.4
    liquidity_weight: float = 0.3
    fee_weight: float = 0.2
    latency_weight: float = 0.1

    # Fee charged by the fallback venue wrapping the primary executor
    default_venue_fee: float = 0.001


class AnalyticsSettings(BaseSettings):
    """Performance analytics configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_ANALYTICS_",
        env_file=".env",
        extra="ignore"
    )

    risk_free_rate: float = 0.02  # 2% annual risk-free rate
    trading_days_per_year: int = 252  # Snapshots are assumed to be daily
    days_per_year: float = 365.25
    pnl_bucket_size: float = 0.01
    pnl_bucket_count: int = 21


class PortfolioSettings(BaseSettings):
    """Portfolio manager configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_PORTFOLIO_",
        env_file=".env",
        extra="ignore"
    )

    default_expected_return: float = 0.08  # Flat 8% when no feed is injected
    dust_threshold: float = 0.01  # Quantity below which a delta is skipped
    small_notional: float = 500.0  # Below: direct smart-routed market order
    large_notional: float = 1000.0  # Above: iceberg; in between: TWAP

    @model_validator(mode="after")
    def check_thresholds(self) -> "PortfolioSettings":
        """Notional tiers must be ordered."""
        if self.small_notional > self.large_notional:
            raise ValueError("small_notional must not exceed large_notional")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="REBALANCER_LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
    log_file: Path | None = None
    trade_log_file: Path | None = None
    rotation: str = "10 MB"
    retention: str = "30 days"
    serialize: bool = False  # JSON logging


class Settings(BaseSettings):
    """Main settings container combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    # Sub-settings
    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    portfolio: PortfolioSettings = Field(default_factory=PortfolioSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Environment
    environment: Literal["development", "testing", "production"] = "development"
    debug: bool = False

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Settings":
        """
        Build settings from a YAML file.

        Sections of the file map onto the sub-settings by name; anything
        missing falls back to environment variables and defaults.

        Args:
            path: Path to the YAML file

        Returns:
            Settings instance

        Raises:
            ConfigurationError: File or section is not a mapping
        """
        with open(path, "r", encoding="utf-8") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        sections = {
            "optimizer": OptimizerSettings,
            "execution": ExecutionSettings,
            "routing": RoutingSettings,
            "analytics": AnalyticsSettings,
            "portfolio": PortfolioSettings,
            "logging": LoggingSettings,
        }
        kwargs: dict[str, Any] = {}
        for key, value in raw.items():
            if key in sections:
                if value is not None and not isinstance(value, dict):
                    raise ConfigurationError(f"Section '{key}' in {path} must be a mapping")
                kwargs[key] = sections[key](**(value or {}))
            else:
                kwargs[key] = value
        return cls(**kwargs)


# Default settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the default settings instance."""
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment and config files."""
    global settings
    settings = Settings()
    return settings
