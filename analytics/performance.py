"""
Performance Analytics Module
============================

Append-only ledger of portfolio value snapshots and closed trades, with the
risk/return statistics derived from it.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray

from analytics import metrics
from analytics.metrics import BenchmarkComparison, TradeDistribution, TradeMetrics
from config.settings import AnalyticsSettings, get_logger
from core.types import (
    DrawdownPeriod,
    PerformanceMetrics,
    PerformanceSnapshot,
    TradeRecord,
)

logger = get_logger(__name__)


@dataclass
class PerformanceReport:
    """Full performance report."""
    metrics: PerformanceMetrics
    drawdowns: list[DrawdownPeriod]
    trade_metrics: TradeMetrics
    trade_analysis: TradeDistribution
    generated_at: datetime
    benchmark: BenchmarkComparison | None = None
    snapshot_count: int = 0
    start: datetime | None = None
    end: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "metrics": self.metrics.to_dict(),
            "drawdowns": [d.to_dict() for d in self.drawdowns],
            "trade_metrics": self.trade_metrics.to_dict(),
            "trade_analysis": self.trade_analysis.to_dict(),
            "benchmark": self.benchmark.to_dict() if self.benchmark else None,
            "generated_at": self.generated_at.isoformat(),
            "snapshot_count": self.snapshot_count,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            **self.extra,
        }


class PerformanceAnalytics:
    """
    Performance analytics over the value series and trade ledger.

    Example:
        analytics = PerformanceAnalytics()
        analytics.add_portfolio_value(t0, 100_000)
        analytics.add_portfolio_value(t1, 101_500)
        metrics = analytics.calculate_performance_metrics()
    """

    def __init__(self, config: AnalyticsSettings | None = None):
        """
        Initialize analytics.

        Args:
            config: Analytics settings (defaults when omitted)
        """
        self.config = config or AnalyticsSettings()
        self._snapshots: list[PerformanceSnapshot] = []
        self._returns: list[float] = []
        self._trades: list[TradeRecord] = []

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def add_portfolio_value(self, timestamp: datetime, value: float) -> bool:
        """
        Append a value snapshot.

        A return is recorded only when the previous value is positive.
        Snapshots dated before the last one are logged and dropped.

        Returns:
            True if the snapshot was recorded
        """
        if self._snapshots and timestamp < self._snapshots[-1].timestamp:
            logger.warning(
                f"Snapshot at {timestamp.isoformat()} precedes last snapshot "
                f"at {self._snapshots[-1].timestamp.isoformat()}; ignored"
            )
            return False

        if self._snapshots:
            prev = self._snapshots[-1].value
            if prev > 0:
                self._returns.append((value - prev) / prev)
            else:
                logger.debug(f"Previous value {prev} not positive; no return recorded")

        self._snapshots.append(PerformanceSnapshot(timestamp=timestamp, value=value))
        return True

    def add_trade(self, trade: TradeRecord) -> None:
        """Append a closed trade."""
        self._trades.append(trade)

    @property
    def snapshots(self) -> list[PerformanceSnapshot]:
        return list(self._snapshots)

    @property
    def values(self) -> list[float]:
        return [s.value for s in self._snapshots]

    @property
    def timestamps(self) -> list[datetime]:
        return [s.timestamp for s in self._snapshots]

    @property
    def returns(self) -> NDArray[np.float64]:
        return np.asarray(self._returns, dtype=np.float64)

    @property
    def trades(self) -> list[TradeRecord]:
        return list(self._trades)

    @property
    def latest_value(self) -> float | None:
        return self._snapshots[-1].value if self._snapshots else None

    def reset(self) -> None:
        """Clear all snapshots and trades."""
        self._snapshots.clear()
        self._returns.clear()
        self._trades.clear()

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def calculate_performance_metrics(self, risk_free_rate: float | None = None) -> PerformanceMetrics:
        """
        Calculate performance metrics.

        Args:
            risk_free_rate: Annual risk-free rate (configured default when None)
        """
        trade_stats = metrics.calculate_trade_metrics(self._trades)
        if not self._returns:
            return PerformanceMetrics(
                win_rate=trade_stats.win_rate,
                profit_factor=trade_stats.profit_factor,
                average_win=trade_stats.average_win,
                average_loss=trade_stats.average_loss,
            )

        rf = self.config.risk_free_rate if risk_free_rate is None else risk_free_rate
        periods = self.config.trading_days_per_year
        values = self.values
        returns = self.returns

        annual = metrics.annualized_return(values, self.timestamps, self.config.days_per_year)
        vol = metrics.volatility(returns, periods)
        downside = metrics.downside_deviation(returns, periods)
        max_dd = metrics.max_drawdown(values)

        return PerformanceMetrics(
            total_return=metrics.total_return(values),
            annualized_return=annual,
            volatility=vol,
            sharpe_ratio=metrics.sharpe_ratio(annual, vol, rf),
            sortino_ratio=metrics.sortino_ratio(annual, downside, rf),
            max_drawdown=max_dd,
            calmar_ratio=metrics.calmar_ratio(annual, max_dd),
            win_rate=trade_stats.win_rate,
            profit_factor=trade_stats.profit_factor,
            average_win=trade_stats.average_win,
            average_loss=trade_stats.average_loss,
        )

    def calculate_max_drawdown(self) -> float:
        return metrics.max_drawdown(self.values)

    def calculate_drawdown_periods(self) -> list[DrawdownPeriod]:
        return metrics.drawdown_periods(self.values, self.timestamps)

    def calculate_trade_metrics(self) -> TradeMetrics:
        return metrics.calculate_trade_metrics(self._trades)

    def analyze_trade_distribution(self) -> TradeDistribution:
        return metrics.analyze_trade_distribution(
            self._trades,
            self.config.pnl_bucket_size,
            self.config.pnl_bucket_count,
        )

    def compare_to_benchmark(self, benchmark_returns: Sequence[float]) -> BenchmarkComparison:
        """Compare recorded returns with a benchmark over the overlapping suffix."""
        return metrics.compare_to_benchmark(
            self._returns,
            benchmark_returns,
            self.config.trading_days_per_year,
        )

    def generate_performance_report(
        self,
        risk_free_rate: float | None = None,
        benchmark_returns: Sequence[float] | None = None,
        generated_at: datetime | None = None,
    ) -> PerformanceReport:
        """
        Generate a full performance report.

        Args:
            risk_free_rate: Annual risk-free rate
            benchmark_returns: Optional benchmark series to compare against
            generated_at: Report timestamp (now when omitted)
        """
        report = PerformanceReport(
            metrics=self.calculate_performance_metrics(risk_free_rate),
            drawdowns=self.calculate_drawdown_periods(),
            trade_metrics=self.calculate_trade_metrics(),
            trade_analysis=self.analyze_trade_distribution(),
            generated_at=generated_at or datetime.now(),
            benchmark=self.compare_to_benchmark(benchmark_returns) if benchmark_returns else None,
            snapshot_count=len(self._snapshots),
            start=self._snapshots[0].timestamp if self._snapshots else None,
            end=self._snapshots[-1].timestamp if self._snapshots else None,
        )

        logger.info(
            f"Performance report: {report.snapshot_count} snapshots, "
            f"{report.trade_metrics.total_trades} trades, "
            f"total return {report.metrics.total_return:.2%}, "
            f"max drawdown {report.metrics.max_drawdown:.2%}"
        )
        return report


__all__ = [
    "PerformanceReport",
    "PerformanceAnalytics",
]
