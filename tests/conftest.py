"""
Pytest Configuration and Fixtures
==================================

Shared fixtures and mock ports for the rebalancing engine tests.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.interfaces import OrderExecutor, PriceFeed, Venue
from core.types import Asset, OrderFill, OrderRejectedError, OrderSide, VenueQuote
from execution.algorithms import ExecutionScheduler
from execution.scheduler import StepScheduler, VirtualClock


START_TIME = datetime(2024, 1, 1, 9, 30)


# =============================================================================
# MOCK PORTS
# =============================================================================

class MockExecutor(OrderExecutor):
    """
    Order executor filling every order at the limit price or a fixed price.

    Args:
        fill_price: Price for market orders
        fail_on: Call indexes (0-based) that raise OrderRejectedError
        fill_ratio: Executed fraction of the requested amount
        on_place: Hook invoked with the call record before filling
    """

    def __init__(
        self,
        fill_price: float = 100.0,
        fail_on: set[int] | None = None,
        fill_ratio: float = 1.0,
        on_place: Callable[[dict[str, Any]], None] | None = None,
    ):
        self.fill_price = fill_price
        self.fail_on = fail_on or set()
        self.fill_ratio = fill_ratio
        self.on_place = on_place
        self.calls: list[dict[str, Any]] = []

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        price: float | None = None,
    ) -> OrderFill:
        index = len(self.calls)
        call = {"symbol": symbol, "side": side, "amount": amount, "price": price}
        self.calls.append(call)

        if self.on_place is not None:
            self.on_place(call)
        await asyncio.sleep(0)

        if index in self.fail_on:
            raise OrderRejectedError(f"order {index} rejected")

        return OrderFill(
            order_id=f"child_{index}",
            executed_amount=amount * self.fill_ratio,
            average_price=price if price is not None else self.fill_price,
        )


class MockPriceFeed(PriceFeed):
    """
    Price feed with static prices and optional per-symbol price sequences.

    A sequence is consumed one price per call; its last price then sticks.
    """

    def __init__(
        self,
        prices: dict[str, float] | None = None,
        default: float = 100.0,
        sequences: dict[str, list[float]] | None = None,
    ):
        self.prices = dict(prices or {})
        self.default = default
        self.sequences = {k: list(v) for k, v in (sequences or {}).items()}
        self.requests: list[str] = []

    async def get_price(self, symbol: str) -> float:
        self.requests.append(symbol)
        sequence = self.sequences.get(symbol)
        if sequence:
            price = sequence.pop(0) if len(sequence) > 1 else sequence[0]
            return price
        return self.prices.get(symbol, self.default)


class MockVenue(Venue):
    """Venue returning a fixed quote."""

    def __init__(
        self,
        name: str,
        price: float,
        available: float,
        fee: float = 0.0,
        latency_ms: float = 0.0,
        fail_quote: bool = False,
        fail_order: bool = False,
        delay: float = 0.0,
    ):
        super().__init__(name)
        self.price = price
        self.available = available
        self.fee = fee
        self.latency_ms = latency_ms
        self.fail_quote = fail_quote
        self.fail_order = fail_order
        self.delay = delay
        self.quote_requests = 0
        self.orders: list[dict[str, Any]] = []

    async def get_quote(self, symbol: str, side: OrderSide, amount: float) -> VenueQuote:
        self.quote_requests += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_quote:
            raise ConnectionError(f"{self.name} unreachable")
        return VenueQuote(
            price=self.price,
            available_amount=self.available,
            fee=self.fee,
            latency_ms=self.latency_ms,
        )

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        price: float | None = None,
    ) -> OrderFill:
        self.orders.append({"symbol": symbol, "side": side, "amount": amount, "price": price})
        if self.fail_order:
            raise ConnectionError(f"{self.name} dropped the order")
        return OrderFill(
            order_id=f"{self.name}_{len(self.orders)}",
            executed_amount=amount,
            average_price=price if price is not None else self.price,
            venue=self.name,
        )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def start_time() -> datetime:
    return START_TIME


@pytest.fixture
def clock() -> VirtualClock:
    """Virtual clock starting at a fixed time."""
    return VirtualClock(START_TIME)


@pytest.fixture
def step_scheduler(clock: VirtualClock) -> StepScheduler:
    return StepScheduler(clock)


@pytest.fixture
def executor() -> MockExecutor:
    return MockExecutor()


@pytest.fixture
def price_feed() -> MockPriceFeed:
    return MockPriceFeed({"BTC": 50_000.0, "ETH": 3_000.0, "SOL": 100.0})


@pytest.fixture
def execution_scheduler(
    executor: MockExecutor,
    price_feed: MockPriceFeed,
    step_scheduler: StepScheduler,
) -> ExecutionScheduler:
    """Execution scheduler with a seeded generator."""
    return ExecutionScheduler(executor, price_feed, step_scheduler, seed=42)


@pytest.fixture
def sample_assets() -> list[Asset]:
    """Three assets with equal caps and volatilities."""
    return [
        Asset(symbol="BTC", price=50_000.0, market_cap=1e9, volume_24h=1e8, volatility=0.5),
        Asset(symbol="ETH", price=3_000.0, market_cap=1e9, volume_24h=1e8, volatility=0.5),
        Asset(symbol="SOL", price=100.0, market_cap=1e9, volume_24h=1e8, volatility=0.5),
    ]


@pytest.fixture
def daily_timestamps() -> Callable[[int], list[datetime]]:
    """Factory for n consecutive daily timestamps."""
    def make(n: int) -> list[datetime]:
        return [START_TIME + timedelta(days=i) for i in range(n)]
    return make


@pytest.fixture
def random_returns() -> dict[str, list[float]]:
    """Independent daily return histories for six symbols."""
    rng = np.random.default_rng(42)
    return {
        symbol: rng.normal(0.0005, 0.02, 250).tolist()
        for symbol in ["A", "B", "C", "D", "E", "F"]
    }
