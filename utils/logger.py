"""
Custom logging configuration using loguru.

This module provides a centralized logging setup with:
- Console and file handlers
- Structured logging support
- Trade-specific logging for child orders and fills
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import LOGS_DIR, LoggingSettings, get_logger, settings


_TRADE_SINK_ID: int | None = None


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    rotation: str = "10 MB",
    retention: str = "30 days",
    serialize: bool = False,
    console: bool = True,
) -> None:
    """
    Configure the global logger with specified settings.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None to disable file logging)
        rotation: When to rotate the log file
        retention: How long to keep old log files
        serialize: Whether to output JSON logs
        console: Whether to log to console
    """
    global _TRADE_SINK_ID

    # Remove default handler
    logger.remove()
    _TRADE_SINK_ID = None

    # Console handler
    if console:
        logger.add(
            sys.stderr,
            level=level,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            colorize=True,
        )

    # File handler
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
        )


def configure_from_settings(log_settings: LoggingSettings) -> None:
    """Apply a LoggingSettings section, including the optional trade log sink."""
    setup_logging(
        level=log_settings.level,
        log_file=log_settings.log_file,
        rotation=log_settings.rotation,
        retention=log_settings.retention,
        serialize=log_settings.serialize,
    )
    if log_settings.trade_log_file:
        add_trade_sink(log_settings.trade_log_file)


def add_trade_sink(path: Path | str | None = None) -> int:
    """
    Route trade-category records to a dedicated file.

    Args:
        path: Trade log path (defaults to logs/trades.log)

    Returns:
        loguru sink id
    """
    global _TRADE_SINK_ID

    if _TRADE_SINK_ID is not None:
        return _TRADE_SINK_ID

    trade_log = Path(path) if path else LOGS_DIR / "trades.log"
    trade_log.parent.mkdir(parents=True, exist_ok=True)

    _TRADE_SINK_ID = logger.add(
        str(trade_log),
        level="INFO",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}",
        rotation="5 MB",
        retention="90 days",
        filter=lambda record: record["extra"].get("category") == "trades",
    )
    return _TRADE_SINK_ID


class TradeLogger:
    """
    Specialized logger for trade-related events.

    Provides structured logging for:
    - Child order submissions (slices, intervals, routed orders)
    - Fills
    - Skipped or rejected units
    """

    def __init__(self) -> None:
        self._logger = logger.bind(category="trades")

    def log_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        order_type: str,
        price: float | None = None,
        **kwargs: Any,
    ) -> None:
        """
        Log an order submission.

        Args:
            symbol: Trading symbol
            side: Order side (buy/sell)
            quantity: Order quantity
            order_type: Order type (market/iceberg/twap)
            price: Limit price (if applicable)
            **kwargs: Additional order details
        """
        self._logger.info(
            f"ORDER | {symbol} | {side} | qty={quantity:.6f} | type={order_type} | price={price}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            order_type=order_type,
            price=price,
            **kwargs,
        )

    def log_fill(
        self,
        symbol: str,
        side: str,
        quantity: float,
        fill_price: float,
        **kwargs: Any,
    ) -> None:
        """
        Log a trade fill/execution.

        Args:
            symbol: Trading symbol
            side: Trade side (buy/sell)
            quantity: Filled quantity
            fill_price: Execution price
            **kwargs: Additional fill details
        """
        self._logger.info(
            f"FILL | {symbol} | {side} | qty={quantity:.6f} | price={fill_price:.4f}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            fill_price=fill_price,
            **kwargs,
        )

    def log_skip(self, symbol: str, reason: str, **kwargs: Any) -> None:
        """Log a unit that was deliberately not executed."""
        self._logger.info(f"SKIP | {symbol} | {reason}", symbol=symbol, **kwargs)


# Initialize logging with default settings
configure_from_settings(settings.logging)


__all__ = [
    "setup_logging",
    "configure_from_settings",
    "add_trade_sink",
    "get_logger",
    "TradeLogger",
]
