"""
Portfolio Module
================

Target allocation and rebalancing orchestration.

Components:
- optimizer: baseline, diversification and risk-parity target weights
- manager: composition root running the rebalancing cycle

Author: Algo Trading Platform
License: MIT
"""

from portfolio.optimizer import (
    OptimizerConfig,
    AllocationOptimizer,
    pearson_correlation,
    calculate_correlation_matrix,
    normalize_weights,
    blend_weights,
    inverse_volatility_weights,
    project_to_bounds,
)
from portfolio.manager import (
    RejectedLeg,
    PortfolioStatus,
    PortfolioManager,
)

__all__ = [
    # Optimizer
    "OptimizerConfig",
    "AllocationOptimizer",
    "pearson_correlation",
    "calculate_correlation_matrix",
    "normalize_weights",
    "blend_weights",
    "inverse_volatility_weights",
    "project_to_bounds",
    # Manager
    "RejectedLeg",
    "PortfolioStatus",
    "PortfolioManager",
]
