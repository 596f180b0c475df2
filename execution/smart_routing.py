"""
Smart Order Routing Module
==========================

Venue selection for single market orders.

Quotes are requested from every venue concurrently (bounded fan-out, per-venue
timeout), scored on price, liquidity, fee and latency, and the order is
placed on the best-scoring venue at its quoted price.

Score = w_price * price + w_liquidity * liquidity + w_fee * fee + w_latency * latency

- price:     best / price for buys, price / best for sells (best quote = 1.0)
- liquidity: min(available / requested, 1)
- fee:       1 / (1 + fee)
- latency:   1 / (1 + latency_ms / 100)

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import asyncio
import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from config.settings import RoutingSettings, get_logger
from core.interfaces import OrderExecutor, PriceFeed, Venue
from core.types import (
    NoLiquidityError,
    OrderFill,
    OrderRejectedError,
    OrderSide,
    VenueQuote,
)
from utils.logger import TradeLogger

logger = get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class RoutingConfig:
    """
    Smart router configuration.

    Attributes:
        quote_timeout: Seconds allowed per venue quote
        max_concurrent_quotes: Upper bound on in-flight quote requests
        price_weight: Weight of the price score
        liquidity_weight: Weight of the liquidity score
        fee_weight: Weight of the fee score
        latency_weight: Weight of the latency score
    """
    quote_timeout: float = 5.0
    max_concurrent_quotes: int = 8
    price_weight: float = 0.4
    liquidity_weight: float = 0.3
    fee_weight: float = 0.2
    latency_weight: float = 0.1

    @classmethod
    def from_settings(cls, settings: RoutingSettings) -> "RoutingConfig":
        return cls(
            quote_timeout=settings.quote_timeout_seconds,
            max_concurrent_quotes=settings.max_concurrent_quotes,
            price_weight=settings.price_weight,
            liquidity_weight=settings.liquidity_weight,
            fee_weight=settings.fee_weight,
            latency_weight=settings.latency_weight,
        )


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class ScoredQuote:
    """Venue quote with its component scores."""
    venue: str
    quote: VenueQuote
    score: float
    price_score: float
    liquidity_score: float
    fee_score: float
    latency_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "venue": self.venue,
            "price": self.quote.price,
            "available_amount": self.quote.available_amount,
            "fee": self.quote.fee,
            "latency_ms": self.quote.latency_ms,
            "score": self.score,
            "price_score": self.price_score,
            "liquidity_score": self.liquidity_score,
            "fee_score": self.fee_score,
            "latency_score": self.latency_score,
        }


@dataclass
class RoutingResult:
    """
    Outcome of a routed order.

    Attributes:
        symbol: Trading symbol
        side: Buy or sell
        amount: Requested quantity
        venue: Selected venue name
        quote: Selected quote
        fill: Fill returned by the venue
        scored_quotes: All usable quotes with scores, in venue order
        failed_venues: Venues that errored, timed out or quoted nothing usable
    """
    symbol: str
    side: OrderSide
    amount: float
    venue: str
    quote: VenueQuote
    fill: OrderFill
    scored_quotes: list[ScoredQuote] = field(default_factory=list)
    failed_venues: list[str] = field(default_factory=list)

    @property
    def score(self) -> float:
        for scored in self.scored_quotes:
            if scored.venue == self.venue:
                return scored.score
        return 0.0

    @property
    def executed_amount(self) -> float:
        return self.fill.executed_amount

    @property
    def average_price(self) -> float:
        return self.fill.average_price

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "amount": self.amount,
            "venue": self.venue,
            "order_id": self.fill.order_id,
            "executed_amount": self.executed_amount,
            "average_price": self.average_price,
            "score": self.score,
            "scored_quotes": [q.to_dict() for q in self.scored_quotes],
            "failed_venues": list(self.failed_venues),
        }


# =============================================================================
# VENUE ADAPTER
# =============================================================================

class ExecutorVenue(Venue):
    """
    Venue backed by an order executor and a price feed.

    Quotes the live price with full liquidity, a fixed fee and zero latency,
    so a single exchange connection can be routed through the SmartRouter.
    """

    def __init__(
        self,
        name: str,
        executor: OrderExecutor,
        price_feed: PriceFeed,
        fee: float = 0.001,
    ):
        super().__init__(name)
        self.executor = executor
        self.price_feed = price_feed
        self.fee = fee

    async def get_quote(self, symbol: str, side: OrderSide, amount: float) -> VenueQuote:
        price = await self.price_feed.get_price(symbol)
        return VenueQuote(price=price, available_amount=amount, fee=self.fee, latency_ms=0.0)

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        price: float | None = None,
    ) -> OrderFill:
        fill = await self.executor.place_order(symbol, side, amount, price)
        if fill.venue is None:
            fill = dataclasses.replace(fill, venue=self.name)
        return fill


# =============================================================================
# SMART ROUTER
# =============================================================================

class SmartRouter:
    """
    Scores venue quotes and places each order on the best venue.

    Example:
        router = SmartRouter([binance, kraken])
        result = await router.route_and_execute("BTC", OrderSide.BUY, 0.5)
        print(result.venue, result.average_price)
    """

    def __init__(
        self,
        venues: Sequence[Venue] | None = None,
        config: RoutingConfig | None = None,
    ):
        """
        Initialize router.

        Args:
            venues: Venues in preference order (first wins ties)
            config: Routing configuration
        """
        self.config = config or RoutingConfig()
        self._venues: list[Venue] = list(venues or [])
        self._trade_logger = TradeLogger()

    @property
    def venues(self) -> list[Venue]:
        return list(self._venues)

    def add_venue(self, venue: Venue) -> None:
        """Add a venue, replacing any venue with the same name in place."""
        for i, existing in enumerate(self._venues):
            if existing.name == venue.name:
                self._venues[i] = venue
                return
        self._venues.append(venue)

    def remove_venue(self, name: str) -> bool:
        before = len(self._venues)
        self._venues = [v for v in self._venues if v.name != name]
        return len(self._venues) < before

    # -------------------------------------------------------------------------
    # Quotes
    # -------------------------------------------------------------------------

    async def get_quotes(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        venues: Sequence[Venue] | None = None,
    ) -> list[tuple[Venue, VenueQuote | None]]:
        """
        Request quotes from all venues concurrently.

        A venue that raises or exceeds the timeout yields None without
        affecting the others.
        """
        venues = list(venues) if venues is not None else self._venues
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_quotes))

        async def fetch(venue: Venue) -> VenueQuote | None:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        venue.get_quote(symbol, side, amount),
                        timeout=self.config.quote_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Quote from {venue.name} for {symbol} timed out "
                        f"after {self.config.quote_timeout}s"
                    )
                except Exception as e:
                    logger.warning(f"Quote from {venue.name} for {symbol} failed: {e}")
                return None

        quotes = await asyncio.gather(*(fetch(v) for v in venues))
        return list(zip(venues, quotes))

    @staticmethod
    def _is_usable(quote: VenueQuote | None) -> bool:
        return (
            quote is not None
            and math.isfinite(quote.price)
            and quote.price > 0
            and quote.available_amount > 0
        )

    def score_quotes(
        self,
        side: OrderSide | str,
        amount: float,
        quotes: Sequence[tuple[str, VenueQuote]],
    ) -> list[ScoredQuote]:
        """
        Score usable quotes.

        Args:
            side: Buy or sell
            amount: Requested quantity
            quotes: (venue name, quote) pairs

        Returns:
            Scored quotes in input order
        """
        side = OrderSide(side)
        usable = [(name, q) for name, q in quotes if self._is_usable(q)]
        if not usable:
            return []

        prices = [q.price for _, q in usable]
        best = min(prices) if side is OrderSide.BUY else max(prices)
        cfg = self.config

        scored = []
        for name, quote in usable:
            if side is OrderSide.BUY:
                price_score = best / quote.price
            else:
                price_score = quote.price / best
            liquidity_score = min(quote.available_amount / amount, 1.0) if amount > 0 else 1.0
            fee_score = 1.0 / (1.0 + max(quote.fee, 0.0))
            latency_score = 1.0 / (1.0 + max(quote.latency_ms, 0.0) / 100.0)

            score = (
                cfg.price_weight * price_score
                + cfg.liquidity_weight * liquidity_score
                + cfg.fee_weight * fee_score
                + cfg.latency_weight * latency_score
            )
            scored.append(
                ScoredQuote(
                    venue=name,
                    quote=quote,
                    score=score,
                    price_score=price_score,
                    liquidity_score=liquidity_score,
                    fee_score=fee_score,
                    latency_score=latency_score,
                )
            )
        return scored

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    async def route_and_execute(
        self,
        symbol: str,
        side: OrderSide | str,
        amount: float,
        venues: Sequence[Venue] | None = None,
    ) -> RoutingResult:
        """
        Quote, score and execute on the best venue.

        Raises:
            NoLiquidityError: No venue returned a usable quote
            OrderRejectedError: The selected venue failed to place the order
        """
        side = OrderSide(side)
        quoted = await self.get_quotes(symbol, side, amount, venues)

        by_name = {venue.name: venue for venue, _ in quoted}
        failed = [venue.name for venue, quote in quoted if not self._is_usable(quote)]
        scored = self.score_quotes(
            side, amount, [(venue.name, quote) for venue, quote in quoted if quote is not None]
        )

        if not scored:
            raise NoLiquidityError(symbol, side.value, amount, [v.name for v, _ in quoted])

        # max() keeps the first venue on ties
        best = max(scored, key=lambda s: s.score)
        venue = by_name[best.venue]

        logger.info(
            f"Routing {side.value} {amount} {symbol} to {venue.name} "
            f"@ {best.quote.price:.4f} (score {best.score:.4f}, "
            f"{len(scored)}/{len(quoted)} venues quoted)"
        )
        self._trade_logger.log_order(
            symbol, side.value, amount, "market", price=best.quote.price, venue=venue.name
        )

        try:
            fill = await venue.place_order(symbol, side, amount, best.quote.price)
        except Exception as e:
            logger.error(f"Order on {venue.name} for {symbol} failed: {e}")
            raise OrderRejectedError(f"{venue.name} rejected {side.value} {amount} {symbol}: {e}") from e

        if fill.venue is None:
            fill = dataclasses.replace(fill, venue=venue.name)

        self._trade_logger.log_fill(
            symbol, side.value, fill.executed_amount, fill.average_price, venue=venue.name
        )

        return RoutingResult(
            symbol=symbol,
            side=side,
            amount=amount,
            venue=venue.name,
            quote=best.quote,
            fill=fill,
            scored_quotes=scored,
            failed_venues=failed,
        )


__all__ = [
    "RoutingConfig",
    "ScoredQuote",
    "RoutingResult",
    "ExecutorVenue",
    "SmartRouter",
]
