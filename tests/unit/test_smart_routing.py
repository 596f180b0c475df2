"""
Unit tests for smart order routing.
"""

import asyncio

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from core.types import NoLiquidityError, OrderRejectedError, OrderSide, VenueQuote
from execution.smart_routing import ExecutorVenue, RoutingConfig, SmartRouter
from tests.conftest import MockExecutor, MockPriceFeed, MockVenue


class TestScoring:
    """Tests for quote scoring."""

    def test_component_scores(self):
        router = SmartRouter()
        scored = router.score_quotes(
            OrderSide.BUY,
            10.0,
            [
                ("A", VenueQuote(price=100.0, available_amount=5.0, fee=0.001, latency_ms=50.0)),
                ("B", VenueQuote(price=125.0, available_amount=20.0, fee=0.0, latency_ms=0.0)),
            ],
        )

        a, b = scored
        assert a.price_score == pytest.approx(1.0)
        assert a.liquidity_score == pytest.approx(0.5)
        assert a.fee_score == pytest.approx(1 / 1.001)
        assert a.latency_score == pytest.approx(1 / 1.5)
        assert b.price_score == pytest.approx(0.8)
        assert b.liquidity_score == pytest.approx(1.0)
        assert b.score == pytest.approx(0.4 * 0.8 + 0.3 + 0.2 + 0.1)

    def test_sell_prefers_higher_price(self):
        router = SmartRouter()
        scored = router.score_quotes(
            "sell",
            1.0,
            [
                ("LOW", VenueQuote(price=99.0, available_amount=1.0)),
                ("HIGH", VenueQuote(price=100.0, available_amount=1.0)),
            ],
        )

        assert scored[1].price_score == pytest.approx(1.0)
        assert scored[0].price_score == pytest.approx(0.99)
        assert scored[1].score > scored[0].score

    def test_unusable_quotes_dropped(self):
        router = SmartRouter()
        scored = router.score_quotes(
            "buy",
            1.0,
            [
                ("ZERO", VenueQuote(price=0.0, available_amount=1.0)),
                ("DRY", VenueQuote(price=100.0, available_amount=0.0)),
            ],
        )
        assert scored == []

    def test_custom_weights(self):
        router = SmartRouter(config=RoutingConfig(price_weight=1.0, liquidity_weight=0.0, fee_weight=0.0, latency_weight=0.0))
        (scored,) = router.score_quotes("buy", 1.0, [("A", VenueQuote(price=10.0, available_amount=1.0))])
        assert scored.score == pytest.approx(1.0)


class TestRouting:
    """Tests for quote fan-out and execution."""

    @pytest.mark.asyncio
    async def test_liquidity_beats_better_price(self):
        venue_a = MockVenue("A", price=100.0, available=1.0)
        venue_b = MockVenue("B", price=101.0, available=10.0)
        router = SmartRouter([venue_a, venue_b])

        result = await router.route_and_execute("BTC", OrderSide.BUY, 5.0)

        assert result.venue == "B"
        assert venue_a.orders == []
        assert venue_b.orders[0]["price"] == pytest.approx(101.0)
        assert venue_b.orders[0]["amount"] == pytest.approx(5.0)
        assert result.executed_amount == pytest.approx(5.0)
        assert result.fill.venue == "B"

    @pytest.mark.asyncio
    async def test_best_price_wins_with_equal_liquidity(self):
        router = SmartRouter([
            MockVenue("A", price=101.0, available=10.0),
            MockVenue("B", price=100.0, available=10.0),
        ])

        result = await router.route_and_execute("BTC", "buy", 1.0)

        assert result.venue == "B"
        assert result.average_price == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_tie_goes_to_first_venue(self):
        router = SmartRouter([
            MockVenue("FIRST", price=100.0, available=10.0),
            MockVenue("SECOND", price=100.0, available=10.0),
        ])

        result = await router.route_and_execute("BTC", "buy", 1.0)
        assert result.venue == "FIRST"

    @pytest.mark.asyncio
    async def test_failed_quote_is_excluded(self):
        router = SmartRouter([
            MockVenue("DOWN", price=90.0, available=10.0, fail_quote=True),
            MockVenue("UP", price=100.0, available=10.0),
        ])

        result = await router.route_and_execute("BTC", "buy", 1.0)

        assert result.venue == "UP"
        assert result.failed_venues == ["DOWN"]
        assert [q.venue for q in result.scored_quotes] == ["UP"]

    @pytest.mark.asyncio
    async def test_slow_quote_times_out(self):
        router = SmartRouter(
            [
                MockVenue("SLOW", price=90.0, available=10.0, delay=1.0),
                MockVenue("FAST", price=100.0, available=10.0),
            ],
            RoutingConfig(quote_timeout=0.05),
        )

        result = await router.route_and_execute("BTC", "buy", 1.0)

        assert result.venue == "FAST"
        assert "SLOW" in result.failed_venues

    @pytest.mark.asyncio
    async def test_no_usable_quote_raises(self):
        router = SmartRouter([
            MockVenue("A", price=100.0, available=10.0, fail_quote=True),
            MockVenue("B", price=100.0, available=0.0),
        ])

        with pytest.raises(NoLiquidityError) as exc_info:
            await router.route_and_execute("BTC", "sell", 1.0)

        assert exc_info.value.symbol == "BTC"
        assert exc_info.value.venues == ["A", "B"]

    @pytest.mark.asyncio
    async def test_no_venues_raises(self):
        with pytest.raises(NoLiquidityError):
            await SmartRouter().route_and_execute("BTC", "buy", 1.0)

    @pytest.mark.asyncio
    async def test_placement_failure_is_rejection(self):
        router = SmartRouter([MockVenue("A", price=100.0, available=10.0, fail_order=True)])

        with pytest.raises(OrderRejectedError):
            await router.route_and_execute("BTC", "buy", 1.0)

    @pytest.mark.asyncio
    async def test_explicit_venues_override(self):
        default = MockVenue("DEFAULT", price=100.0, available=10.0)
        other = MockVenue("OTHER", price=100.0, available=10.0)
        router = SmartRouter([default])

        result = await router.route_and_execute("BTC", "buy", 1.0, venues=[other])

        assert result.venue == "OTHER"
        assert default.quote_requests == 0

    @pytest.mark.asyncio
    async def test_quote_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        class CountingVenue(MockVenue):
            async def get_quote(self, symbol, side, amount):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return await super().get_quote(symbol, side, amount)

        venues = [CountingVenue(f"V{i}", price=100.0, available=10.0) for i in range(6)]
        router = SmartRouter(venues, RoutingConfig(max_concurrent_quotes=2))

        await router.route_and_execute("BTC", "buy", 1.0)

        assert peak == 2


class TestVenueManagement:
    """Tests for venue registration."""

    def test_add_replaces_same_name(self):
        router = SmartRouter([MockVenue("A", 100.0, 1.0)])
        replacement = MockVenue("A", 99.0, 1.0)

        router.add_venue(replacement)
        router.add_venue(MockVenue("B", 100.0, 1.0))

        assert [v.name for v in router.venues] == ["A", "B"]
        assert router.venues[0] is replacement

    def test_remove(self):
        router = SmartRouter([MockVenue("A", 100.0, 1.0)])
        assert router.remove_venue("A") is True
        assert router.remove_venue("A") is False


class TestExecutorVenue:
    """Tests for the executor-backed venue adapter."""

    @pytest.mark.asyncio
    async def test_quote_and_fill(self):
        executor = MockExecutor()
        venue = ExecutorVenue("primary", executor, MockPriceFeed({"BTC": 50_000.0}), fee=0.002)

        quote = await venue.get_quote("BTC", OrderSide.BUY, 0.5)
        fill = await venue.place_order("BTC", OrderSide.BUY, 0.5, quote.price)

        assert quote.price == 50_000.0
        assert quote.available_amount == 0.5
        assert quote.fee == 0.002
        assert quote.latency_ms == 0.0
        assert fill.venue == "primary"
        assert executor.calls[0]["price"] == 50_000.0
