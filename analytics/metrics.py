"""
Performance Metrics Module
==========================

Pure statistic reducers over a portfolio value series, its returns and the
trade ledger.

Conventions:
- Returns are simple period returns, assumed daily (annualized with 252)
- Annualized return uses calendar time (elapsed days / 365.25)
- Max drawdown is a positive fraction in [0, 1]
- Every function returns zero (or an empty, well-formed result) when given
  fewer than two points; none of them raise on short input

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import stats as scipy_stats

from config.settings import get_logger
from core.types import DrawdownPeriod, TradeRecord

logger = get_logger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365.25
SECONDS_PER_DAY = 86_400.0

# Volatilities below this are treated as zero
VOLATILITY_EPSILON = 1e-12

# Annualizing very short series is capped here (1e6 = 100,000,000%)
MAX_ANNUALIZED_RETURN = 1e6


# =============================================================================
# RETURN METRICS
# =============================================================================

def calculate_returns(values: Sequence[float]) -> NDArray[np.float64]:
    """
    Simple returns between consecutive values.

    Pairs whose previous value is not positive contribute no return.
    """
    if len(values) < 2:
        return np.array([], dtype=np.float64)

    arr = np.asarray(values, dtype=np.float64)
    prev = arr[:-1]
    curr = arr[1:]
    valid = prev > 0
    return (curr[valid] - prev[valid]) / prev[valid]


def total_return(values: Sequence[float]) -> float:
    """
    Calculate total return.

    Returns:
        (last - first) / first, 0 when the first value is not positive
    """
    if len(values) < 2 or values[0] <= 0:
        return 0.0
    return float((values[-1] - values[0]) / values[0])


def annualized_return(
    values: Sequence[float],
    timestamps: Sequence[datetime],
    days_per_year: float = DAYS_PER_YEAR,
) -> float:
    """
    Calculate annualized return over calendar time.

    Formula:
        (1 + total_return) ** (1 / years) - 1, years = elapsed days / 365.25

    Returns 0 when no time has elapsed and -1 for a total loss. Growth that
    annualizes past MAX_ANNUALIZED_RETURN (e.g. a few seconds of data) is
    capped there.
    """
    if len(values) < 2 or len(timestamps) < 2:
        return 0.0

    elapsed_days = (timestamps[-1] - timestamps[0]).total_seconds() / SECONDS_PER_DAY
    years = elapsed_days / days_per_year
    if years <= 0:
        return 0.0

    growth = 1 + total_return(values)
    if growth <= 0:
        return -1.0

    try:
        annual = float(growth ** (1 / years) - 1)
    except OverflowError:
        annual = math.inf

    if annual > MAX_ANNUALIZED_RETURN:
        logger.warning(
            f"Annualized return over {elapsed_days:.4f} days exceeds cap; "
            f"reporting {MAX_ANNUALIZED_RETURN:g}"
        )
        return MAX_ANNUALIZED_RETURN
    return annual


# =============================================================================
# VOLATILITY METRICS
# =============================================================================

def volatility(
    returns: NDArray[np.float64] | Sequence[float],
    periods_per_year: float = TRADING_DAYS_PER_YEAR,
) -> float:
    """
    Annualized volatility (sample standard deviation of returns).
    """
    arr = np.asarray(returns, dtype=np.float64)
    if len(arr) < 2:
        return 0.0
    return float(np.std(arr, ddof=1) * np.sqrt(periods_per_year))


def downside_deviation(
    returns: NDArray[np.float64] | Sequence[float],
    periods_per_year: float = TRADING_DAYS_PER_YEAR,
) -> float:
    """
    Annualized dispersion of the negative returns only.

    Population standard deviation of the returns below zero; 0 when there
    are none.
    """
    arr = np.asarray(returns, dtype=np.float64)
    negative = arr[arr < 0]
    if len(negative) == 0:
        return 0.0
    return float(np.std(negative, ddof=0) * np.sqrt(periods_per_year))


# =============================================================================
# RISK-ADJUSTED RETURN METRICS
# =============================================================================

def sharpe_ratio(annual_return: float, annual_volatility: float, risk_free_rate: float = 0.02) -> float:
    """
    Calculate Sharpe Ratio.

    Formula:
        Sharpe = (Annualized Return - Risk-Free) / Annualized Volatility

    Zero-variance series score exactly 0.
    """
    if annual_volatility <= VOLATILITY_EPSILON:
        return 0.0
    return float((annual_return - risk_free_rate) / annual_volatility)


def sortino_ratio(annual_return: float, downside_dev: float, risk_free_rate: float = 0.02) -> float:
    """
    Calculate Sortino Ratio.

    Like Sharpe but uses downside deviation only.
    """
    if downside_dev <= VOLATILITY_EPSILON:
        return 0.0
    return float((annual_return - risk_free_rate) / downside_dev)


def calmar_ratio(annual_return: float, max_dd: float) -> float:
    """Annualized return over max drawdown, 0 without drawdown."""
    if max_dd <= 0:
        return 0.0
    return float(annual_return / max_dd)


# =============================================================================
# DRAWDOWN METRICS
# =============================================================================

def calculate_drawdown_series(values: Sequence[float]) -> NDArray[np.float64]:
    """Drawdown from the running peak at each point, as a positive fraction."""
    if len(values) < 1:
        return np.array([], dtype=np.float64)

    arr = np.asarray(values, dtype=np.float64)
    running_max = np.maximum.accumulate(arr)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(running_max > 0, (running_max - arr) / running_max, 0.0)
    return drawdowns


def max_drawdown(values: Sequence[float]) -> float:
    """
    Calculate maximum drawdown.

    Returns:
        Largest peak-to-trough decline as a fraction in [0, 1]
    """
    if len(values) < 2:
        return 0.0
    return float(np.clip(np.max(calculate_drawdown_series(values)), 0.0, 1.0))


def drawdown_periods(
    values: Sequence[float],
    timestamps: Sequence[datetime],
) -> list[DrawdownPeriod]:
    """
    Runs of the value series below its running peak.

    A run starts at the first value below the peak and closes at the first
    value back at or above it; recovery is that value's gain over the old
    peak. A run still open at the end closes at the last point with
    recovery 0.
    """
    if len(values) < 2 or len(values) != len(timestamps):
        return []

    periods: list[DrawdownPeriod] = []
    peak = values[0]
    start: datetime | None = None
    deepest = 0.0

    for value, ts in zip(values[1:], timestamps[1:]):
        if value >= peak:
            if start is not None:
                periods.append(
                    DrawdownPeriod(
                        start=start,
                        end=ts,
                        duration=(ts - start).total_seconds() / SECONDS_PER_DAY,
                        drawdown=deepest,
                        recovery=(value - peak) / peak if peak > 0 else 0.0,
                    )
                )
                start = None
                deepest = 0.0
            peak = value
        else:
            if start is None:
                start = ts
            if peak > 0:
                deepest = max(deepest, (peak - value) / peak)

    if start is not None:
        end = timestamps[-1]
        periods.append(
            DrawdownPeriod(
                start=start,
                end=end,
                duration=(end - start).total_seconds() / SECONDS_PER_DAY,
                drawdown=deepest,
                recovery=0.0,
            )
        )

    return periods


# =============================================================================
# TRADE STATISTICS
# =============================================================================

@dataclass
class TradeMetrics:
    """Win/loss statistics of the trade ledger."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0  # Positive magnitude

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "gross_profit": self.gross_profit,
            "gross_loss": self.gross_loss,
            "profit_factor": self.profit_factor,
            "average_win": self.average_win,
            "average_loss": self.average_loss,
        }


def calculate_trade_metrics(trades: Sequence[TradeRecord]) -> TradeMetrics:
    """
    Calculate trade statistics.

    Profit factor is gross profit over gross loss, 0 when nothing was lost.
    Breakeven trades count toward the total only.
    """
    stats = TradeMetrics()
    if not trades:
        return stats

    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [t.pnl for t in trades if t.pnl < 0]

    stats.total_trades = len(trades)
    stats.winning_trades = len(wins)
    stats.losing_trades = len(losses)
    stats.win_rate = len(wins) / len(trades)

    stats.gross_profit = float(sum(wins))
    stats.gross_loss = float(abs(sum(losses)))
    stats.profit_factor = stats.gross_profit / stats.gross_loss if stats.gross_loss > 0 else 0.0

    if wins:
        stats.average_win = stats.gross_profit / len(wins)
    if losses:
        stats.average_loss = stats.gross_loss / len(losses)

    return stats


# =============================================================================
# BENCHMARK COMPARISON
# =============================================================================

@dataclass
class BenchmarkComparison:
    """Portfolio returns measured against a benchmark return series."""
    alpha: float = 0.0
    beta: float = 0.0
    correlation: float = 0.0
    tracking_error: float = 0.0
    information_ratio: float = 0.0
    observations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "alpha": self.alpha,
            "beta": self.beta,
            "correlation": self.correlation,
            "tracking_error": self.tracking_error,
            "information_ratio": self.information_ratio,
            "observations": self.observations,
        }


def compare_to_benchmark(
    returns: Sequence[float],
    benchmark_returns: Sequence[float],
    periods_per_year: float = TRADING_DAYS_PER_YEAR,
) -> BenchmarkComparison:
    """
    Compare portfolio and benchmark returns over their overlapping suffix.

    - beta: cov(p, b) / var(b)
    - alpha: mean(p) - beta * mean(b), per period
    - tracking_error: annualized sample stdev of p - b
    - information_ratio: alpha / tracking_error
    """
    n = min(len(returns), len(benchmark_returns))
    if n < 2:
        return BenchmarkComparison()

    p = np.asarray(returns, dtype=np.float64)[-n:]
    b = np.asarray(benchmark_returns, dtype=np.float64)[-n:]

    dp = p - p.mean()
    db = b - b.mean()
    var_b = float(np.dot(db, db))
    beta = float(np.dot(dp, db) / var_b) if var_b > 0 else 0.0
    alpha = float(p.mean() - beta * b.mean())

    denom = math.sqrt(float(np.dot(dp, dp)) * var_b)
    correlation = float(np.dot(dp, db) / denom) if denom > 0 else 0.0

    tracking_error = volatility(p - b, periods_per_year)
    information_ratio = alpha / tracking_error if tracking_error > VOLATILITY_EPSILON else 0.0

    return BenchmarkComparison(
        alpha=alpha,
        beta=beta,
        correlation=correlation,
        tracking_error=tracking_error,
        information_ratio=information_ratio,
        observations=n,
    )


# =============================================================================
# DISTRIBUTION METRICS
# =============================================================================

@dataclass(frozen=True)
class PnLBucket:
    """Histogram bucket [min, max) of trade returns."""
    min: float
    max: float
    count: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {"min": self.min, "max": self.max, "count": self.count, "percentage": self.percentage}


@dataclass
class TradeDistribution:
    """Shape of the trade ledger."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    average_holding_hours: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0
    pnl_distribution: list[PnLBucket] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "largest_win": self.largest_win,
            "largest_loss": self.largest_loss,
            "average_holding_hours": self.average_holding_hours,
            "skewness": self.skewness,
            "kurtosis": self.kurtosis,
            "pnl_distribution": [b.to_dict() for b in self.pnl_distribution],
        }


def skewness(returns: NDArray[np.float64] | Sequence[float]) -> float:
    """Calculate skewness of returns."""
    arr = np.asarray(returns, dtype=np.float64)
    if len(arr) < 3 or np.ptp(arr) == 0:
        return 0.0
    value = float(scipy_stats.skew(arr))
    return value if math.isfinite(value) else 0.0


def kurtosis(returns: NDArray[np.float64] | Sequence[float]) -> float:
    """Calculate excess kurtosis."""
    arr = np.asarray(returns, dtype=np.float64)
    if len(arr) < 4 or np.ptp(arr) == 0:
        return 0.0
    value = float(scipy_stats.kurtosis(arr))
    return value if math.isfinite(value) else 0.0


def pnl_histogram(
    trade_returns: Sequence[float],
    bucket_size: float = 0.01,
    bucket_count: int = 21,
) -> list[PnLBucket]:
    """
    Fixed-width histogram of trade returns.

    Bucket i covers [(i - half) * size, (i - half + 1) * size) with
    half = bucket_count // 2; returns outside all buckets are not counted.
    """
    total = len(trade_returns)
    half = bucket_count // 2
    buckets = []
    for i in range(bucket_count):
        lo = (i - half) * bucket_size
        hi = (i - half + 1) * bucket_size
        count = sum(1 for r in trade_returns if lo <= r < hi)
        buckets.append(
            PnLBucket(min=lo, max=hi, count=count, percentage=count / total if total else 0.0)
        )
    return buckets


def analyze_trade_distribution(
    trades: Sequence[TradeRecord],
    bucket_size: float = 0.01,
    bucket_count: int = 21,
) -> TradeDistribution:
    """Totals, extremes, holding time, return moments and P&L histogram."""
    if not trades:
        return TradeDistribution()

    pnls = [t.pnl for t in trades]
    trade_returns = [t.return_pct for t in trades]
    holding_hours = sum(t.holding_seconds for t in trades) / len(trades) / 3600.0

    return TradeDistribution(
        total_trades=len(trades),
        winning_trades=sum(1 for p in pnls if p > 0),
        losing_trades=sum(1 for p in pnls if p < 0),
        largest_win=float(max(pnls)),
        largest_loss=float(min(pnls)),
        average_holding_hours=holding_hours,
        skewness=skewness(trade_returns),
        kurtosis=kurtosis(trade_returns),
        pnl_distribution=pnl_histogram(trade_returns, bucket_size, bucket_count),
    )


__all__ = [
    "TRADING_DAYS_PER_YEAR",
    "DAYS_PER_YEAR",
    "VOLATILITY_EPSILON",
    "MAX_ANNUALIZED_RETURN",
    "calculate_returns",
    "total_return",
    "annualized_return",
    "volatility",
    "downside_deviation",
    "sharpe_ratio",
    "sortino_ratio",
    "calmar_ratio",
    "calculate_drawdown_series",
    "max_drawdown",
    "drawdown_periods",
    "TradeMetrics",
    "calculate_trade_metrics",
    "BenchmarkComparison",
    "compare_to_benchmark",
    "PnLBucket",
    "TradeDistribution",
    "skewness",
    "kurtosis",
    "pnl_histogram",
    "analyze_trade_distribution",
]
