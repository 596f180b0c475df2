"""
Analytics Module
================

Portfolio performance analytics:
- metrics: pure statistic reducers (returns, volatility, drawdowns, trades)
- performance: append-only snapshot/trade ledger and reports

Author: Algo Trading Platform
License: MIT
"""

from analytics.metrics import (
    BenchmarkComparison,
    PnLBucket,
    TradeDistribution,
    TradeMetrics,
    analyze_trade_distribution,
    annualized_return,
    calculate_returns,
    calculate_trade_metrics,
    calmar_ratio,
    compare_to_benchmark,
    downside_deviation,
    drawdown_periods,
    max_drawdown,
    sharpe_ratio,
    sortino_ratio,
    total_return,
    volatility,
)
from analytics.performance import PerformanceAnalytics, PerformanceReport

__all__ = [
    "BenchmarkComparison",
    "PnLBucket",
    "TradeDistribution",
    "TradeMetrics",
    "analyze_trade_distribution",
    "annualized_return",
    "calculate_returns",
    "calculate_trade_metrics",
    "calmar_ratio",
    "compare_to_benchmark",
    "downside_deviation",
    "drawdown_periods",
    "max_drawdown",
    "sharpe_ratio",
    "sortino_ratio",
    "total_return",
    "volatility",
    "PerformanceAnalytics",
    "PerformanceReport",
]
