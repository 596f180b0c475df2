"""
Core Module
===========

Shared types and ports for the rebalancing engine:
- types.py: exceptions, enums and domain records
- interfaces.py: order placement, price feed and venue ports
"""

from core.types import (
    # Exceptions
    EngineError,
    DataValidationError,
    ConfigurationError,
    ExecutionError,
    OrderRejectedError,
    NoLiquidityError,
    OrderNotFoundError,
    # Enums
    OrderSide,
    AlgorithmType,
    ExecutionStatus,
    # Records
    Asset,
    CorrelationMatrix,
    OptimizationConstraints,
    Allocation,
    PortfolioMetrics,
    OrderFill,
    VenueQuote,
    TradeRecord,
    PerformanceSnapshot,
    DrawdownPeriod,
    PerformanceMetrics,
)
from core.interfaces import (
    OrderExecutor,
    CallableOrderExecutor,
    PriceFeed,
    CallablePriceFeed,
    Venue,
)

__all__ = [
    "EngineError",
    "DataValidationError",
    "ConfigurationError",
    "ExecutionError",
    "OrderRejectedError",
    "NoLiquidityError",
    "OrderNotFoundError",
    "OrderSide",
    "AlgorithmType",
    "ExecutionStatus",
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
    "OrderExecutor",
    "CallableOrderExecutor",
    "PriceFeed",
    "CallablePriceFeed",
    "Venue",
]
