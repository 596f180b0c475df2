"""
Portfolio Manager Module
========================

Composition root of the rebalancing engine.

Owns one optimizer, one step scheduler, one execution scheduler, one smart
router and one analytics ledger, and wires them into the rebalancing cycle:

    optimize -> diff against holdings -> execute legs -> record values/trades

Leg routing by notional (|amount| x price), advanced orders enabled:
- notional > large_notional: iceberg
- notional > small_notional: TWAP
- otherwise: smart-routed market order
Without advanced orders every leg is a smart-routed market order.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from analytics.performance import PerformanceAnalytics, PerformanceReport
from config.settings import Settings, get_logger, get_settings
from core.interfaces import (
    CallableOrderExecutor,
    CallablePriceFeed,
    GetPriceFn,
    OrderExecutor,
    PlaceOrderFn,
    PriceFeed,
    Venue,
)
from core.types import (
    AlgorithmType,
    Allocation,
    Asset,
    DataValidationError,
    ExecutionError,
    OptimizationConstraints,
    OrderSide,
    PerformanceMetrics,
    TradeRecord,
)
from execution.algorithms import ExecutionScheduler, IcebergConfig, TWAPConfig
from execution.scheduler import Clock, StepScheduler
from execution.smart_routing import ExecutorVenue, RoutingConfig, SmartRouter
from portfolio.optimizer import AllocationOptimizer, OptimizerConfig
from utils.logger import configure_from_settings

logger = get_logger(__name__)


# =============================================================================
# RESULT RECORDS
# =============================================================================

@dataclass(frozen=True)
class RejectedLeg:
    """Rebalancing leg that could not be executed."""
    symbol: str
    side: OrderSide
    amount: float
    algorithm: AlgorithmType
    reason: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "amount": self.amount,
            "algorithm": self.algorithm.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PortfolioStatus:
    """Point-in-time view of the managed portfolio."""
    allocations: list[Allocation]
    total_value: float
    performance: PerformanceMetrics
    max_drawdown: float
    last_updated: datetime
    rejected_legs: list[RejectedLeg] = field(default_factory=list)
    active_orders: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "allocations": [a.to_dict() for a in self.allocations],
            "total_value": self.total_value,
            "performance": self.performance.to_dict(),
            "max_drawdown": self.max_drawdown,
            "last_updated": self.last_updated.isoformat(),
            "rejected_legs": [r.to_dict() for r in self.rejected_legs],
            "active_orders": self.active_orders,
        }


# =============================================================================
# PORTFOLIO MANAGER
# =============================================================================

class PortfolioManager:
    """
    Coordinates optimization, execution and analytics.

    Example:
        manager = PortfolioManager(executor, price_feed, venues=[venue_a, venue_b])
        manager.initialize(assets, OptimizationConstraints(max_assets=5), 100_000)

        order_ids = await manager.rebalance({"BTC": 0.5}, use_advanced_orders=True)
        manager.update_portfolio_value(101_250)
        report = manager.generate_performance_report()
    """

    def __init__(
        self,
        executor: OrderExecutor,
        price_feed: PriceFeed,
        venues: Sequence[Venue] | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
        optimizer: AllocationOptimizer | None = None,
        scheduler: StepScheduler | None = None,
        execution: ExecutionScheduler | None = None,
        router: SmartRouter | None = None,
        analytics: PerformanceAnalytics | None = None,
        configure_logging: bool = False,
    ):
        """
        Initialize manager.

        Args:
            executor: Order placement port
            price_feed: Live price port
            venues: Routing venues (the executor itself when omitted)
            settings: Engine settings (process defaults when omitted)
            clock: Engine clock for pacing and timestamps
            optimizer: Allocation optimizer override
            scheduler: Step scheduler override
            execution: Execution scheduler override
            router: Smart router override
            analytics: Analytics ledger override
            configure_logging: Apply the logging settings section (sinks, trade log)
        """
        self.settings = settings or get_settings()
        if configure_logging:
            configure_from_settings(self.settings.logging)
        self.price_feed = price_feed

        self.optimizer = optimizer if optimizer is not None else AllocationOptimizer(
            OptimizerConfig.from_settings(self.settings.optimizer)
        )

        if execution is not None:
            self.execution = execution
            self.scheduler = execution.scheduler
        else:
            if scheduler is None:
                scheduler = StepScheduler(
                    clock, poll_interval=self.settings.execution.poll_interval_seconds
                )
            self.scheduler = scheduler
            self.execution = ExecutionScheduler.from_settings(
                executor, price_feed, self.settings.execution, self.scheduler
            )
        self.clock = self.scheduler.clock

        if router is None:
            if not venues:
                venues = [
                    ExecutorVenue(
                        "primary",
                        executor,
                        price_feed,
                        fee=self.settings.routing.default_venue_fee,
                    )
                ]
            router = SmartRouter(venues, RoutingConfig.from_settings(self.settings.routing))
        self.router = router

        self.analytics = analytics if analytics is not None else PerformanceAnalytics(self.settings.analytics)

        self._constraints = OptimizationConstraints()
        self._allocations: list[Allocation] = []
        self._portfolio_value = 0.0
        self._rejected_legs: list[RejectedLeg] = []
        self._rebalance_lock = asyncio.Lock()
        self._last_updated: datetime | None = None

    @classmethod
    def from_callables(
        cls,
        place_order: PlaceOrderFn,
        get_price: GetPriceFn,
        **kwargs: Any,
    ) -> PortfolioManager:
        """
        Build a manager from plain async callables.

        Args:
            place_order: async (symbol, side, amount, price) -> OrderFill
            get_price: async (symbol) -> price
            **kwargs: Forwarded to the constructor
        """
        return cls(CallableOrderExecutor(place_order), CallablePriceFeed(get_price), **kwargs)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def allocations(self) -> list[Allocation]:
        return list(self._allocations)

    @property
    def portfolio_value(self) -> float:
        return self._portfolio_value

    @property
    def constraints(self) -> OptimizationConstraints:
        return self._constraints

    @property
    def rejected_legs(self) -> list[RejectedLeg]:
        return list(self._rejected_legs)

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def initialize(
        self,
        assets: Iterable[Asset],
        constraints: OptimizationConstraints,
        initial_value: float,
        expected_returns: Mapping[str, float] | None = None,
        return_history: Mapping[str, Sequence[float]] | None = None,
    ) -> list[Allocation]:
        """
        Register assets, compute the first target allocation and seed analytics.

        Args:
            assets: Asset universe
            constraints: Optimization constraints
            initial_value: Starting portfolio value
            expected_returns: Per-symbol expected returns (flat default when None)
            return_history: Per-symbol return history for correlations

        Returns:
            Target allocations
        """
        assets = list(assets)
        self._constraints = constraints
        self._portfolio_value = initial_value

        self.reoptimize(expected_returns, return_history, assets)
        self.analytics.add_portfolio_value(self.clock.now(), initial_value)
        self._last_updated = self.clock.now()

        logger.info(
            f"Portfolio initialized with {len(self._allocations)} allocations, "
            f"value {initial_value:,.2f}"
        )
        return self.allocations

    def reoptimize(
        self,
        expected_returns: Mapping[str, float] | None = None,
        return_history: Mapping[str, Sequence[float]] | None = None,
        assets: Iterable[Asset] | None = None,
    ) -> list[Allocation]:
        """
        Refresh the universe and recompute the target allocation.

        Args:
            expected_returns: Per-symbol expected returns (flat default when None)
            return_history: Per-symbol return history for correlations
            assets: Assets to upsert before optimizing

        Returns:
            Target allocations
        """
        if assets is not None:
            self.optimizer.add_assets(assets)

        if expected_returns is None:
            default = self.settings.portfolio.default_expected_return
            expected_returns = {a.symbol: default for a in self.optimizer.assets}

        self._allocations = self.optimizer.optimize(
            expected_returns,
            self._constraints,
            return_history=return_history,
        )
        return self.allocations

    # -------------------------------------------------------------------------
    # Rebalancing
    # -------------------------------------------------------------------------

    async def rebalance(
        self,
        current_holdings: Mapping[str, float],
        use_advanced_orders: bool = False,
    ) -> list[str]:
        """
        Execute the trades that move holdings to the target allocation.

        Only one rebalance runs at a time.

        Args:
            current_holdings: symbol -> quantity held
            use_advanced_orders: Route large legs through iceberg/TWAP

        Returns:
            Order ids of submitted or executed legs
        """
        async with self._rebalance_lock:
            deltas = self.optimizer.rebalance(
                self._allocations, current_holdings, self._portfolio_value
            )
            dust = self.settings.portfolio.dust_threshold

            order_ids: list[str] = []
            for allocation in deltas:
                if abs(allocation.rebalance_amount) < dust:
                    continue

                side = OrderSide.BUY if allocation.rebalance_amount > 0 else OrderSide.SELL
                amount = abs(allocation.rebalance_amount)
                price = await self._reference_price(allocation.symbol)
                notional = amount * price

                algorithm = self._select_algorithm(notional, use_advanced_orders)
                try:
                    order_id = await self._execute_leg(allocation.symbol, side, amount, algorithm)
                except ExecutionError as e:
                    rejected = RejectedLeg(
                        symbol=allocation.symbol,
                        side=side,
                        amount=amount,
                        algorithm=algorithm,
                        reason=str(e),
                        timestamp=self.clock.now(),
                    )
                    self._rejected_legs.append(rejected)
                    logger.warning(
                        f"Rebalance leg rejected: {side.value} {amount} {allocation.symbol} "
                        f"({algorithm.value}): {e}"
                    )
                    continue

                order_ids.append(order_id)

            self._last_updated = self.clock.now()
            logger.info(
                f"Rebalance submitted {len(order_ids)} legs "
                f"({len(deltas)} deltas, advanced={use_advanced_orders})"
            )
            return order_ids

    def _select_algorithm(self, notional: float, use_advanced_orders: bool) -> AlgorithmType:
        cfg = self.settings.portfolio
        if use_advanced_orders and notional > cfg.large_notional:
            return AlgorithmType.ICEBERG
        if use_advanced_orders and notional > cfg.small_notional:
            return AlgorithmType.TWAP
        return AlgorithmType.MARKET

    async def _reference_price(self, symbol: str) -> float:
        """Optimizer price, or the live price when the universe has none."""
        price = self.optimizer.price_of(symbol)
        if price > 0:
            return price
        try:
            price = await self.price_feed.get_price(symbol)
        except Exception as e:
            logger.warning(f"No reference price for {symbol}: {e}")
            return 0.0
        return price if math.isfinite(price) and price > 0 else 0.0

    async def _execute_leg(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        algorithm: AlgorithmType,
    ) -> str:
        exec_cfg = self.settings.execution

        if algorithm is AlgorithmType.ICEBERG:
            return self.execution.submit_iceberg(
                symbol,
                side,
                IcebergConfig(
                    total_amount=amount,
                    slice_size=amount / exec_cfg.iceberg_slices,
                    price_range=exec_cfg.iceberg_price_range,
                    time_interval=exec_cfg.iceberg_time_interval,
                ),
            )

        if algorithm is AlgorithmType.TWAP:
            return self.execution.submit_twap(
                symbol,
                side,
                TWAPConfig(
                    total_amount=amount,
                    duration_minutes=exec_cfg.twap_duration_minutes,
                    intervals=exec_cfg.twap_intervals,
                ),
            )

        result = await self.router.route_and_execute(symbol, side, amount)
        return self.execution.record_market_execution(symbol, side, amount, result.fill)

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def get_order_status(self, order_id: str) -> dict[str, Any] | None:
        return self.execution.get_status(order_id)

    def cancel_order(self, order_id: str) -> bool:
        cancelled = self.execution.cancel(order_id)
        if cancelled:
            logger.info(f"Order {order_id} cancelled")
        return cancelled

    async def wait_for_order(self, order_id: str) -> dict[str, Any] | None:
        """Drive pacing until the order is terminal and return its status."""
        await self.execution.wait(order_id)
        return self.execution.get_status(order_id)

    async def start(self) -> None:
        """Start background pacing of execution steps."""
        await self.scheduler.start()

    async def stop(self) -> None:
        """Stop background pacing; queued steps stay queued."""
        await self.scheduler.stop()

    # -------------------------------------------------------------------------
    # Performance
    # -------------------------------------------------------------------------

    def record_trade(
        self,
        symbol: str,
        side: OrderSide | str,
        entry_time: datetime,
        exit_time: datetime,
        entry_price: float,
        exit_price: float,
        quantity: float,
        fees: float = 0.0,
    ) -> TradeRecord:
        """Append a closed trade to the analytics ledger."""
        trade = TradeRecord.create(
            symbol=symbol,
            side=side,
            entry_time=entry_time,
            exit_time=exit_time,
            entry_price=entry_price,
            exit_price=exit_price,
            quantity=quantity,
            fees=fees,
        )
        self.analytics.add_trade(trade)
        logger.debug(f"Trade recorded: {trade.side.value} {quantity} {symbol} pnl={trade.pnl:.4f}")
        return trade

    def update_portfolio_value(
        self,
        value: float,
        timestamp: datetime | None = None,
    ) -> PerformanceMetrics:
        """
        Record a new portfolio value and recompute performance.

        Back-dated values are dropped by the analytics ledger and leave the
        current value unchanged.

        Args:
            value: Portfolio value
            timestamp: Snapshot time (engine clock when None)

        Raises:
            DataValidationError: Value is negative or not finite
        """
        if not math.isfinite(value) or value < 0:
            raise DataValidationError(f"Invalid portfolio value: {value}")

        timestamp = timestamp or self.clock.now()
        if self.analytics.add_portfolio_value(timestamp, value):
            self._portfolio_value = value
            self._last_updated = timestamp
        return self.analytics.calculate_performance_metrics()

    def get_portfolio_status(self) -> PortfolioStatus:
        return PortfolioStatus(
            allocations=self.allocations,
            total_value=self._portfolio_value,
            performance=self.analytics.calculate_performance_metrics(),
            max_drawdown=self.analytics.calculate_max_drawdown(),
            last_updated=self._last_updated or self.clock.now(),
            rejected_legs=self.rejected_legs,
            active_orders=len(self.execution.active_orders()),
        )

    def generate_performance_report(
        self,
        benchmark_returns: Sequence[float] | None = None,
    ) -> PerformanceReport:
        return self.analytics.generate_performance_report(
            benchmark_returns=benchmark_returns,
            generated_at=self.clock.now(),
        )


__all__ = [
    "RejectedLeg",
    "PortfolioStatus",
    "PortfolioManager",
]
