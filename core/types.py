"""
Core Types Module
=================

Core data structures, enums, and exceptions for the rebalancing and
algorithmic execution engine.

Timestamps on trade records and performance snapshots are always supplied
by the caller (or the engine clock); nothing here defaults to
datetime.now().

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4


# =============================================================================
# EXCEPTIONS
# =============================================================================

class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class DataValidationError(EngineError):
    """Data validation failed."""
    pass


class ConfigurationError(EngineError):
    """Configuration error."""
    pass


class ExecutionError(EngineError):
    """Execution-related errors."""
    pass


class OrderRejectedError(ExecutionError):
    """Order was rejected."""
    pass


class NoLiquidityError(ExecutionError):
    """No venue returned a usable quote."""

    def __init__(self, symbol: str, side: str, amount: float, venues: list[str] | None = None):
        self.symbol = symbol
        self.side = side
        self.amount = amount
        self.venues = venues or []
        super().__init__(
            f"No liquidity for {side} {amount} {symbol} "
            f"(venues tried: {', '.join(self.venues) or 'none'})"
        )


class OrderNotFoundError(ExecutionError):
    """Unknown order identifier."""
    pass


# =============================================================================
# ENUMS
# =============================================================================

class OrderSide(str, Enum):
    """Order side."""
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        return 1 if self is OrderSide.BUY else -1


class AlgorithmType(str, Enum):
    """Execution algorithm tag."""
    MARKET = "market"
    ICEBERG = "iceberg"
    TWAP = "twap"


class ExecutionStatus(str, Enum):
    """Execution order lifecycle status."""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.ACTIVE


# =============================================================================
# ASSET UNIVERSE
# =============================================================================

@dataclass(slots=True)
class Asset:
    """Tradable asset as seen by the allocation optimizer."""
    symbol: str
    price: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    volatility: float | None = None  # Annualized
    beta: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "market_cap": self.market_cap,
            "volume_24h": self.volume_24h,
            "volatility": self.volatility,
            "beta": self.beta,
        }


# symbol -> symbol -> correlation
CorrelationMatrix = dict[str, dict[str, float]]


@dataclass
class OptimizationConstraints:
    """
    Constraints for a target allocation.

    Attributes:
        min_weight: Minimum weight per selected asset
        max_weight: Maximum weight per selected asset
        max_assets: Maximum number of assets selected
        target_volatility: Informational volatility target
        min_expected_return: Expected returns below this are not eligible
    """
    min_weight: float = 0.0
    max_weight: float = 1.0
    max_assets: int = 10
    target_volatility: float | None = None
    min_expected_return: float | None = None

    def validate(self) -> list[str]:
        """Validate constraints."""
        errors = []
        if self.min_weight < 0:
            errors.append("min_weight must be non-negative")
        if self.max_weight <= 0:
            errors.append("max_weight must be positive")
        if self.min_weight > self.max_weight:
            errors.append("min_weight must not exceed max_weight")
        if self.max_assets < 1:
            errors.append("max_assets must be at least 1")
        return errors


@dataclass
class Allocation:
    """Target versus current position for one symbol."""
    symbol: str
    target_weight: float
    current_weight: float = 0.0
    target_amount: float = 0.0
    current_amount: float = 0.0
    rebalance_amount: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "target_weight": self.target_weight,
            "current_weight": self.current_weight,
            "target_amount": self.target_amount,
            "current_amount": self.current_amount,
            "rebalance_amount": self.rebalance_amount,
        }


@dataclass
class PortfolioMetrics:
    """Ex-ante statistics of a target allocation."""
    total_value: float = 0.0
    expected_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    diversification_ratio: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_value": self.total_value,
            "expected_return": self.expected_return,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "diversification_ratio": self.diversification_ratio,
        }


# =============================================================================
# EXECUTION
# =============================================================================

@dataclass(frozen=True, slots=True)
class OrderFill:
    """Result of a single order placement."""
    order_id: str
    executed_amount: float
    average_price: float
    venue: str | None = None


@dataclass(frozen=True, slots=True)
class VenueQuote:
    """Quote returned by a venue for a prospective order."""
    price: float
    available_amount: float
    fee: float = 0.0
    latency_ms: float = 0.0


# =============================================================================
# TRADE LEDGER
# =============================================================================

@dataclass(frozen=True, slots=True)
class TradeRecord:
    """
    Closed trade record.

    Immutable once appended to the ledger. entry_time and exit_time must be
    explicitly provided.
    """
    trade_id: str
    symbol: str
    side: OrderSide
    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    quantity: float
    entry_value: float
    exit_value: float
    pnl: float
    fees: float = 0.0

    @classmethod
    def create(
        cls,
        symbol: str,
        side: OrderSide | str,
        entry_time: datetime,
        exit_time: datetime,
        entry_price: float,
        exit_price: float,
        quantity: float,
        fees: float = 0.0,
        trade_id: str | None = None,
    ) -> "TradeRecord":
        """
        Factory method deriving values and P&L from entry/exit legs.

        Args:
            symbol: Trading symbol
            side: Side of the entry leg (buy = long, sell = short)
            entry_time: Entry timestamp
            exit_time: Exit timestamp
            entry_price: Entry price
            exit_price: Exit price
            quantity: Trade quantity
            fees: Total fees paid on both legs
            trade_id: Optional identifier
        """
        side = OrderSide(side)
        entry_value = entry_price * quantity
        exit_value = exit_price * quantity

        if side is OrderSide.BUY:
            pnl = exit_value - entry_value - fees
        else:
            pnl = entry_value - exit_value - fees

        return cls(
            trade_id=trade_id or f"trade_{uuid4().hex[:12]}",
            symbol=symbol,
            side=side,
            entry_time=entry_time,
            exit_time=exit_time,
            entry_price=entry_price,
            exit_price=exit_price,
            quantity=quantity,
            entry_value=entry_value,
            exit_value=exit_value,
            pnl=pnl,
            fees=fees,
        )

    @property
    def return_pct(self) -> float:
        """P&L relative to the entry value (0 when entry value is 0)."""
        if self.entry_value == 0:
            return 0.0
        return self.pnl / self.entry_value

    @property
    def holding_seconds(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds()

    @property
    def is_winner(self) -> bool:
        """Check if trade was profitable."""
        return self.pnl > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "trade_id": self.trade_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "quantity": self.quantity,
            "entry_value": self.entry_value,
            "exit_value": self.exit_value,
            "pnl": self.pnl,
            "fees": self.fees,
        }


@dataclass(frozen=True, slots=True)
class PerformanceSnapshot:
    """Portfolio value at a point in time."""
    timestamp: datetime
    value: float


@dataclass(frozen=True, slots=True)
class DrawdownPeriod:
    """A run of the value series below its running peak."""
    start: datetime
    end: datetime
    duration: float  # Days
    drawdown: float  # Max drawdown within the run, fraction
    recovery: float  # Gain over the old peak when the run closed, 0 if open

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration": self.duration,
            "drawdown": self.drawdown,
            "recovery": self.recovery,
        }


# =============================================================================
# PERFORMANCE METRICS
# =============================================================================

@dataclass
class PerformanceMetrics:
    """Risk/return statistics derived from the value series and trade ledger."""
    total_return: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    calmar_ratio: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_return": self.total_return,
            "annualized_return": self.annualized_return,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "sortino_ratio": self.sortino_ratio,
            "max_drawdown": self.max_drawdown,
            "calmar_ratio": self.calmar_ratio,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "average_win": self.average_win,
            "average_loss": self.average_loss,
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Exceptions
    "EngineError",
    "DataValidationError",
    "ConfigurationError",
    "ExecutionError",
    "OrderRejectedError",
    "NoLiquidityError",
    "OrderNotFoundError",
    # Enums
    "OrderSide",
    "AlgorithmType",
    "ExecutionStatus",
    # Data structures
    "Asset",
    "CorrelationMatrix",
    "OptimizationConstraints",
    "Allocation",
    "PortfolioMetrics",
    "OrderFill",
    "VenueQuote",
    "TradeRecord",
    "PerformanceSnapshot",
    "DrawdownPeriod",
    "PerformanceMetrics",
]
