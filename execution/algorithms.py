"""
Execution Algorithms Module
===========================

Paced execution of large orders to limit market impact.

Algorithms:
- Iceberg: fixed-size slices executed strictly in sequence, each at a
  randomized limit price around the live price
- TWAP: equal interval amounts at evenly spaced times, optional price limit

Each order is a small state machine (active -> completed | cancelled |
failed) driven by steps on a shared StepScheduler. A step checks the order
status first, so cancellation simply flips the status and every later step
becomes a no-op.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

import numpy as np

from config.settings import ExecutionSettings, get_logger
from core.interfaces import OrderExecutor, PriceFeed
from core.types import (
    AlgorithmType,
    ExecutionError,
    ExecutionStatus,
    OrderFill,
    OrderNotFoundError,
    OrderSide,
)
from execution.scheduler import StepScheduler
from utils.logger import TradeLogger

logger = get_logger(__name__)


# Relative tolerance when deciding whether total / slice_size is integral
_SLICE_COUNT_TOLERANCE = 1e-9


# =============================================================================
# CONFIGURATIONS
# =============================================================================

@dataclass
class IcebergConfig:
    """
    Iceberg order configuration.

    Attributes:
        total_amount: Total quantity to execute
        slice_size: Quantity per slice (last slice takes the remainder)
        price_range: Max relative limit-price offset from the live price
        time_interval: Seconds between the end of one slice and the next
    """
    total_amount: float
    slice_size: float
    price_range: float = 0.001
    time_interval: float = 30.0

    def validate(self) -> list[str]:
        """Validate configuration."""
        errors = []
        if not self.total_amount > 0:
            errors.append("total_amount must be positive")
        if not self.slice_size > 0:
            errors.append("slice_size must be positive")
        if self.price_range < 0:
            errors.append("price_range must be non-negative")
        if self.time_interval < 0:
            errors.append("time_interval must be non-negative")
        return errors

    def slice_amounts(self) -> list[float]:
        return compute_slice_amounts(self.total_amount, self.slice_size)


@dataclass
class TWAPConfig:
    """
    TWAP (Time-Weighted Average Price) configuration.

    Attributes:
        total_amount: Total quantity to execute
        duration_minutes: Total execution window
        intervals: Number of evenly spaced intervals
        price_limit: Buy: skip intervals priced above; sell: below
    """
    total_amount: float
    duration_minutes: float
    intervals: int
    price_limit: float | None = None

    def validate(self) -> list[str]:
        """Validate configuration."""
        errors = []
        if not self.total_amount > 0:
            errors.append("total_amount must be positive")
        if self.duration_minutes < 0:
            errors.append("duration_minutes must be non-negative")
        if self.intervals < 1:
            errors.append("intervals must be at least 1")
        if self.price_limit is not None and self.price_limit <= 0:
            errors.append("price_limit must be positive")
        return errors

    def interval_amounts(self) -> list[float]:
        return compute_interval_amounts(self.total_amount, self.intervals)


def compute_slice_amounts(total_amount: float, slice_size: float) -> list[float]:
    """
    Split a total into fixed-size slices with the remainder last.

    A ratio within floating-point noise of an integer is treated as exact,
    so 0.3 / 0.1 yields three slices rather than four.
    """
    ratio = total_amount / slice_size
    nearest = round(ratio)
    if nearest >= 1 and abs(ratio - nearest) <= _SLICE_COUNT_TOLERANCE * max(1.0, ratio):
        count = int(nearest)
    else:
        count = max(1, math.ceil(ratio))

    amounts = [slice_size] * (count - 1)
    amounts.append(total_amount - slice_size * (count - 1))
    return amounts


def compute_interval_amounts(total_amount: float, intervals: int) -> list[float]:
    """Equal interval amounts; the last absorbs the rounding remainder."""
    base = total_amount / intervals
    amounts = [base] * (intervals - 1)
    amounts.append(total_amount - base * (intervals - 1))
    return amounts


# =============================================================================
# ORDER STATE
# =============================================================================

@dataclass
class IcebergSlice:
    """One iceberg slice."""
    index: int
    amount: float
    executed: bool = False
    executed_amount: float = 0.0
    limit_price: float | None = None
    fill_price: float | None = None
    child_order_id: str | None = None
    executed_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "amount": self.amount,
            "executed": self.executed,
            "executed_amount": self.executed_amount,
            "limit_price": self.limit_price,
            "fill_price": self.fill_price,
            "child_order_id": self.child_order_id,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "error": self.error,
        }


@dataclass
class TWAPInterval:
    """One TWAP interval."""
    index: int
    amount: float
    scheduled_at: datetime
    executed: bool = False
    skipped: bool = False
    executed_amount: float = 0.0
    fill_price: float | None = None
    child_order_id: str | None = None
    executed_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "amount": self.amount,
            "scheduled_at": self.scheduled_at.isoformat(),
            "executed": self.executed,
            "skipped": self.skipped,
            "executed_amount": self.executed_amount,
            "fill_price": self.fill_price,
            "child_order_id": self.child_order_id,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "error": self.error,
        }


@dataclass
class ExecutionOrder:
    """
    Parent order tracked by the ExecutionScheduler.

    Attributes:
        order_id: Engine order identifier
        symbol: Trading symbol
        side: Buy or sell
        algorithm: Execution algorithm
        total_amount: Quantity to execute
        created_at: Submission time (engine clock)
        status: Lifecycle status; final once terminal
        executed_amount: Filled quantity, never above total_amount
        average_price: Volume-weighted fill price
        slices: Iceberg slices
        intervals: TWAP intervals
    """
    order_id: str
    symbol: str
    side: OrderSide
    algorithm: AlgorithmType
    total_amount: float
    created_at: datetime
    status: ExecutionStatus = ExecutionStatus.ACTIVE
    executed_amount: float = 0.0
    average_price: float = 0.0
    slices: list[IcebergSlice] = field(default_factory=list)
    intervals: list[TWAPInterval] = field(default_factory=list)
    completed_at: datetime | None = None
    error: str | None = None
    venue: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is ExecutionStatus.ACTIVE

    @property
    def progress(self) -> float:
        """Executed fraction of the total (0 when total is 0)."""
        if self.total_amount <= 0:
            return 0.0
        return self.executed_amount / self.total_amount

    def record_fill(self, quantity: float, price: float) -> None:
        """Fold a child fill into the executed amount and running average."""
        if quantity <= 0:
            return
        notional = self.average_price * self.executed_amount + quantity * price
        self.executed_amount += quantity
        self.average_price = notional / self.executed_amount

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "algorithm": self.algorithm.value,
            "status": self.status.value,
            "total_amount": self.total_amount,
            "executed_amount": self.executed_amount,
            "average_price": self.average_price,
            "progress": self.progress,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "venue": self.venue,
            "slices": [s.to_dict() for s in self.slices],
            "intervals": [i.to_dict() for i in self.intervals],
        }


# =============================================================================
# EXECUTION SCHEDULER
# =============================================================================

class ExecutionScheduler:
    """
    Owner of all paced execution orders.

    Example:
        executor = ExecutionScheduler(broker, price_feed, StepScheduler(clock))
        order_id = executor.submit_iceberg(
            "BTC", OrderSide.BUY, IcebergConfig(total_amount=10, slice_size=2)
        )
        await executor.wait(order_id)
        executor.get_status(order_id)
    """

    def __init__(
        self,
        executor: OrderExecutor,
        price_feed: PriceFeed,
        scheduler: StepScheduler | None = None,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
    ):
        """
        Initialize execution scheduler.

        Args:
            executor: Order placement port
            price_feed: Live price port
            scheduler: Step scheduler (a wall-clock one when omitted)
            rng: Random generator for iceberg price offsets
            seed: Seed used when no generator is given
        """
        self.executor = executor
        self.price_feed = price_feed
        self.scheduler = scheduler if scheduler is not None else StepScheduler()
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self._orders: dict[str, ExecutionOrder] = {}
        self._trade_logger = TradeLogger()

    @classmethod
    def from_settings(
        cls,
        executor: OrderExecutor,
        price_feed: PriceFeed,
        settings: ExecutionSettings,
        scheduler: StepScheduler | None = None,
    ) -> "ExecutionScheduler":
        return cls(
            executor,
            price_feed,
            scheduler if scheduler is not None else StepScheduler(poll_interval=settings.poll_interval_seconds),
            seed=settings.random_seed,
        )

    @property
    def clock(self):
        return self.scheduler.clock

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit_iceberg(
        self,
        symbol: str,
        side: OrderSide | str,
        config: IcebergConfig,
    ) -> str:
        """
        Submit an iceberg order.

        Args:
            symbol: Trading symbol
            side: Buy or sell
            config: Iceberg configuration

        Returns:
            Order id

        Raises:
            ExecutionError: Invalid configuration
        """
        errors = config.validate()
        if errors:
            raise ExecutionError(f"Invalid iceberg config: {'; '.join(errors)}")

        side = OrderSide(side)
        order = ExecutionOrder(
            order_id=f"iceberg_{uuid4().hex[:12]}",
            symbol=symbol,
            side=side,
            algorithm=AlgorithmType.ICEBERG,
            total_amount=config.total_amount,
            created_at=self.clock.now(),
            slices=[
                IcebergSlice(index=i, amount=amount)
                for i, amount in enumerate(config.slice_amounts())
            ],
        )
        self._orders[order.order_id] = order

        self._schedule_iceberg_slice(order.order_id, config, 0, self.clock.now())

        logger.info(
            f"Iceberg {order.order_id} submitted: {side.value} {config.total_amount} {symbol} "
            f"in {len(order.slices)} slices of {config.slice_size}"
        )
        return order.order_id

    def submit_twap(
        self,
        symbol: str,
        side: OrderSide | str,
        config: TWAPConfig,
    ) -> str:
        """
        Submit a TWAP order.

        Args:
            symbol: Trading symbol
            side: Buy or sell
            config: TWAP configuration

        Returns:
            Order id

        Raises:
            ExecutionError: Invalid configuration
        """
        errors = config.validate()
        if errors:
            raise ExecutionError(f"Invalid TWAP config: {'; '.join(errors)}")

        side = OrderSide(side)
        start = self.clock.now()
        step = timedelta(minutes=config.duration_minutes) / config.intervals

        order = ExecutionOrder(
            order_id=f"twap_{uuid4().hex[:12]}",
            symbol=symbol,
            side=side,
            algorithm=AlgorithmType.TWAP,
            total_amount=config.total_amount,
            created_at=start,
            intervals=[
                TWAPInterval(index=i, amount=amount, scheduled_at=start + step * i)
                for i, amount in enumerate(config.interval_amounts())
            ],
        )
        self._orders[order.order_id] = order

        self._schedule_twap_interval(order.order_id, config, 0)

        logger.info(
            f"TWAP {order.order_id} submitted: {side.value} {config.total_amount} {symbol} "
            f"over {config.duration_minutes} min in {config.intervals} intervals"
        )
        return order.order_id

    def record_market_execution(
        self,
        symbol: str,
        side: OrderSide | str,
        amount: float,
        fill: OrderFill,
    ) -> str:
        """
        Register an already executed market order for status queries.

        Returns:
            Order id
        """
        side = OrderSide(side)
        now = self.clock.now()
        order = ExecutionOrder(
            order_id=f"market_{uuid4().hex[:12]}",
            symbol=symbol,
            side=side,
            algorithm=AlgorithmType.MARKET,
            total_amount=amount,
            created_at=now,
            status=ExecutionStatus.COMPLETED,
            completed_at=now,
            venue=fill.venue,
        )
        order.record_fill(min(fill.executed_amount, amount), fill.average_price)
        self._orders[order.order_id] = order
        return order.order_id

    # -------------------------------------------------------------------------
    # Iceberg steps
    # -------------------------------------------------------------------------

    def _schedule_iceberg_slice(
        self,
        order_id: str,
        config: IcebergConfig,
        index: int,
        run_at: datetime,
    ) -> None:
        async def step() -> None:
            await self._execute_iceberg_slice(order_id, config, index)

        self.scheduler.schedule(run_at, step, key=order_id)

    async def _execute_iceberg_slice(
        self,
        order_id: str,
        config: IcebergConfig,
        index: int,
    ) -> None:
        order = self._orders[order_id]
        if not order.is_active:
            logger.debug(f"Iceberg {order_id} is {order.status.value}; slice {index} not executed")
            return

        slice_ = order.slices[index]
        try:
            price = await self.price_feed.get_price(order.symbol)
            offset = float(self.rng.uniform(-config.price_range, config.price_range))
            slice_.limit_price = price * (1 + offset)

            self._trade_logger.log_order(
                order.symbol,
                order.side.value,
                slice_.amount,
                AlgorithmType.ICEBERG.value,
                price=slice_.limit_price,
                order_id=order_id,
                slice=index,
            )
            fill = await self.executor.place_order(
                order.symbol, order.side, slice_.amount, slice_.limit_price
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            slice_.error = str(e)
            if order.is_active:
                self._finish(order, ExecutionStatus.FAILED, error=f"slice {index}: {e}")
            logger.error(f"Iceberg {order_id} slice {index + 1}/{len(order.slices)} failed: {e}")
            return

        quantity = min(max(fill.executed_amount, 0.0), slice_.amount)
        slice_.executed = True
        slice_.executed_amount = quantity
        slice_.fill_price = fill.average_price
        slice_.child_order_id = fill.order_id
        slice_.executed_at = self.clock.now()
        order.record_fill(quantity, fill.average_price)

        self._trade_logger.log_fill(
            order.symbol, order.side.value, quantity, fill.average_price, order_id=order_id
        )
        logger.debug(
            f"Iceberg {order_id} slice {index + 1}/{len(order.slices)} executed: "
            f"{quantity} @ {fill.average_price:.4f}"
        )

        # Cancelled while the venue call was in flight
        if not order.is_active:
            return

        if index + 1 >= len(order.slices):
            self._finish(order, ExecutionStatus.COMPLETED)
            return

        next_run = self.clock.now() + timedelta(seconds=config.time_interval)
        self._schedule_iceberg_slice(order_id, config, index + 1, next_run)

    # -------------------------------------------------------------------------
    # TWAP steps
    # -------------------------------------------------------------------------

    def _schedule_twap_interval(self, order_id: str, config: TWAPConfig, index: int) -> None:
        order = self._orders[order_id]

        async def step() -> None:
            await self._execute_twap_interval(order_id, config, index)

        self.scheduler.schedule(order.intervals[index].scheduled_at, step, key=order_id)

    async def _execute_twap_interval(
        self,
        order_id: str,
        config: TWAPConfig,
        index: int,
    ) -> None:
        order = self._orders[order_id]
        if not order.is_active:
            logger.debug(f"TWAP {order_id} is {order.status.value}; interval {index} not executed")
            return

        interval = order.intervals[index]
        try:
            if config.price_limit is not None:
                price = await self.price_feed.get_price(order.symbol)
                if self._violates_limit(order.side, price, config.price_limit):
                    interval.skipped = True
                    self._trade_logger.log_skip(
                        order.symbol,
                        f"price {price:.4f} beyond limit {config.price_limit:.4f}",
                        order_id=order_id,
                        interval=index,
                    )
                    logger.info(
                        f"TWAP {order_id} interval {index + 1}/{len(order.intervals)} skipped: "
                        f"price {price} vs limit {config.price_limit}"
                    )

            if not interval.skipped:
                self._trade_logger.log_order(
                    order.symbol,
                    order.side.value,
                    interval.amount,
                    AlgorithmType.TWAP.value,
                    order_id=order_id,
                    interval=index,
                )
                fill = await self.executor.place_order(order.symbol, order.side, interval.amount)

                quantity = min(max(fill.executed_amount, 0.0), interval.amount)
                interval.executed = True
                interval.executed_amount = quantity
                interval.fill_price = fill.average_price
                interval.child_order_id = fill.order_id
                interval.executed_at = self.clock.now()
                order.record_fill(quantity, fill.average_price)

                self._trade_logger.log_fill(
                    order.symbol, order.side.value, quantity, fill.average_price, order_id=order_id
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            interval.error = str(e)
            logger.error(f"TWAP {order_id} interval {index + 1}/{len(order.intervals)} failed: {e}")

        if not order.is_active:
            return

        if index + 1 < len(order.intervals):
            self._schedule_twap_interval(order_id, config, index + 1)
        elif all(i.error is not None for i in order.intervals):
            self._finish(order, ExecutionStatus.FAILED, error="all intervals failed")
        else:
            self._finish(order, ExecutionStatus.COMPLETED)

    @staticmethod
    def _violates_limit(side: OrderSide, price: float, limit: float) -> bool:
        if side is OrderSide.BUY:
            return price > limit
        return price < limit

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _finish(
        self,
        order: ExecutionOrder,
        status: ExecutionStatus,
        error: str | None = None,
    ) -> None:
        order.status = status
        order.error = error
        order.completed_at = self.clock.now()

        log = logger.warning if status is ExecutionStatus.FAILED else logger.info
        log(
            f"{order.algorithm.value.upper()} {order.order_id} {status.value}: "
            f"{order.executed_amount}/{order.total_amount} {order.symbol}"
        )

    def cancel(self, order_id: str) -> bool:
        """
        Cancel an active order.

        Returns:
            False for unknown or already terminal orders
        """
        order = self._orders.get(order_id)
        if order is None or not order.is_active:
            return False

        self._finish(order, ExecutionStatus.CANCELLED)
        return True

    def get_order(self, order_id: str) -> ExecutionOrder | None:
        return self._orders.get(order_id)

    def get_status(self, order_id: str) -> dict[str, Any] | None:
        """Status summary of an order, None when unknown."""
        order = self._orders.get(order_id)
        if order is None:
            return None

        status: dict[str, Any] = {
            "order_id": order.order_id,
            "symbol": order.symbol,
            "side": order.side.value,
            "algorithm": order.algorithm.value,
            "status": order.status.value,
            "executed_amount": order.executed_amount,
            "total_amount": order.total_amount,
            "progress": order.progress,
            "average_price": order.average_price,
        }
        if order.slices:
            status["slices_executed"] = sum(1 for s in order.slices if s.executed)
            status["slices_total"] = len(order.slices)
        if order.intervals:
            status["intervals_executed"] = sum(1 for i in order.intervals if i.executed)
            status["intervals_skipped"] = sum(1 for i in order.intervals if i.skipped)
            status["intervals_total"] = len(order.intervals)
        return status

    def active_orders(self) -> list[ExecutionOrder]:
        return [o for o in self._orders.values() if o.is_active]

    @property
    def orders(self) -> list[ExecutionOrder]:
        return list(self._orders.values())

    async def wait(self, order_id: str) -> ExecutionOrder:
        """
        Drive the step queue until the order is terminal.

        With the background loop running this polls instead of dispatching.

        Raises:
            OrderNotFoundError: Unknown order id
        """
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Unknown order: {order_id}")

        while order.is_active:
            if self.scheduler.is_running:
                await asyncio.sleep(self.scheduler.poll_interval)
            elif not await self.scheduler.advance():
                break
        return order


__all__ = [
    "IcebergConfig",
    "TWAPConfig",
    "compute_slice_amounts",
    "compute_interval_amounts",
    "IcebergSlice",
    "TWAPInterval",
    "ExecutionOrder",
    "ExecutionScheduler",
]
