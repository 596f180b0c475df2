"""
Utility modules for the rebalancing engine.

This module provides common utilities including:
- Custom logging with loguru
- Trade-specific structured logging
"""

from utils.logger import (
    TradeLogger,
    add_trade_sink,
    configure_from_settings,
    get_logger,
    setup_logging,
)

__all__ = [
    "TradeLogger",
    "add_trade_sink",
    "configure_from_settings",
    "get_logger",
    "setup_logging",
]
