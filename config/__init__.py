"""
Configuration module for the rebalancing engine.

This module provides centralized configuration management including:
- Global settings (settings.py)
- Engine configuration (engine_config.yaml)
"""

from pathlib import Path

import yaml

from config.settings import (
    PROJECT_ROOT,
    CONFIG_DIR,
    LOGS_DIR,
    AnalyticsSettings,
    ExecutionSettings,
    LoggingSettings,
    OptimizerSettings,
    PortfolioSettings,
    RoutingSettings,
    Settings,
    get_logger,
    get_settings,
    reload_settings,
    settings,
)


def load_yaml_config(config_name: str) -> dict:
    """
    Load a YAML configuration file.

    Args:
        config_name: Name of the config file (with or without .yaml extension)

    Returns:
        Dictionary containing the configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid
    """
    if not config_name.endswith(".yaml"):
        config_name = f"{config_name}.yaml"

    config_path = CONFIG_DIR / config_name

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_engine_config(path: Path | str | None = None) -> Settings:
    """Load engine settings from a YAML file (defaults to config/engine_config.yaml)."""
    return Settings.from_yaml(path or CONFIG_DIR / "engine_config.yaml")


__all__ = [
    "PROJECT_ROOT",
    "CONFIG_DIR",
    "LOGS_DIR",
    "AnalyticsSettings",
    "ExecutionSettings",
    "LoggingSettings",
    "OptimizerSettings",
    "PortfolioSettings",
    "RoutingSettings",
    "Settings",
    "get_logger",
    "get_settings",
    "reload_settings",
    "settings",
    "load_yaml_config",
    "load_engine_config",
]
