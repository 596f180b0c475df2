"""
Interfaces Module
=================

Abstract base classes defining the narrow ports through which the engine
reaches the outside world:

- OrderExecutor: the only way an order reaches an exchange
- PriceFeed: live price lookup
- Venue: a quotable execution venue for smart routing

Exchange connectivity, authentication and signing live behind these ports
and are never implemented by the engine itself.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from core.types import OrderFill, OrderSide, VenueQuote


PlaceOrderFn = Callable[[str, OrderSide, float, "float | None"], Awaitable[OrderFill]]
GetPriceFn = Callable[[str], Awaitable[float]]


# =============================================================================
# ORDER PLACEMENT
# =============================================================================

class OrderExecutor(ABC):
    """Port for placing a single order on an exchange."""

    @abstractmethod
    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        price: float | None = None,
    ) -> OrderFill:
        """
        Place one order.

        Args:
            symbol: Trading symbol
            side: Buy or sell
            amount: Quantity to trade
            price: Limit price, None for a market order

        Returns:
            Fill with the exchange order id, executed amount and average price
        """
        ...


class CallableOrderExecutor(OrderExecutor):
    """Adapter turning a plain async callable into an OrderExecutor."""

    def __init__(self, func: PlaceOrderFn):
        self._func = func

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        price: float | None = None,
    ) -> OrderFill:
        return await self._func(symbol, side, amount, price)


# =============================================================================
# MARKET DATA
# =============================================================================

class PriceFeed(ABC):
    """Port for live prices."""

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Return the latest traded price for a symbol."""
        ...


class CallablePriceFeed(PriceFeed):
    """Adapter turning a plain async callable into a PriceFeed."""

    def __init__(self, func: GetPriceFn):
        self._func = func

    async def get_price(self, symbol: str) -> float:
        return await self._func(symbol)


# =============================================================================
# EXECUTION VENUE
# =============================================================================

class Venue(OrderExecutor):
    """
    Execution venue used by the smart router.

    A venue quotes a prospective order and, when selected, executes it.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def get_quote(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
    ) -> VenueQuote:
        """
        Quote a prospective order.

        Args:
            symbol: Trading symbol
            side: Buy or sell
            amount: Requested quantity

        Returns:
            Quote with price, available amount, fee and latency
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


__all__ = [
    "PlaceOrderFn",
    "GetPriceFn",
    "OrderExecutor",
    "CallableOrderExecutor",
    "PriceFeed",
    "CallablePriceFeed",
    "Venue",
]
