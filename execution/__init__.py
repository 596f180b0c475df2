"""
Execution Module
================

Paced execution and venue selection for the rebalancing engine.

Components:
- scheduler: clocks and the time-ordered step scheduler
- algorithms: iceberg and TWAP execution state machines
- smart_routing: quote scoring and best-venue execution

Author: Algo Trading Platform
License: MIT
"""

from execution.scheduler import (
    Clock,
    SystemClock,
    VirtualClock,
    ScheduledStep,
    StepScheduler,
)
from execution.algorithms import (
    IcebergConfig,
    TWAPConfig,
    IcebergSlice,
    TWAPInterval,
    ExecutionOrder,
    ExecutionScheduler,
    compute_slice_amounts,
    compute_interval_amounts,
)
from execution.smart_routing import (
    RoutingConfig,
    ScoredQuote,
    RoutingResult,
    ExecutorVenue,
    SmartRouter,
)

__all__ = [
    # Scheduling
    "Clock",
    "SystemClock",
    "VirtualClock",
    "ScheduledStep",
    "StepScheduler",
    # Algorithms
    "IcebergConfig",
    "TWAPConfig",
    "IcebergSlice",
    "TWAPInterval",
    "ExecutionOrder",
    "ExecutionScheduler",
    "compute_slice_amounts",
    "compute_interval_amounts",
    # Routing
    "RoutingConfig",
    "ScoredQuote",
    "RoutingResult",
    "ExecutorVenue",
    "SmartRouter",
]
