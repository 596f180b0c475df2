"""
Integration tests for the full rebalancing cycle.

Optimize -> diff holdings -> execute legs (iceberg / TWAP / smart-routed
market) -> record values and trades -> report.
"""

import asyncio
from datetime import timedelta

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from config.settings import ExecutionSettings, Settings
from core.types import (
    AlgorithmType,
    Asset,
    DataValidationError,
    OptimizationConstraints,
    OrderFill,
    OrderSide,
)
from execution.scheduler import StepScheduler, VirtualClock
from portfolio.manager import PortfolioManager
from utils.logger import setup_logging
from tests.conftest import START_TIME, MockExecutor, MockPriceFeed, MockVenue


# Equal weights on 90k: 30k per asset -> BTC 0.6, ETH 10, SOL 300
PORTFOLIO_VALUE = 90_000.0
MIXED_HOLDINGS = {
    "BTC": 0.54,   # buy 0.06 ~ 3000 notional -> iceberg
    "ETH": 9.75,   # buy 0.25 ~ 750 notional -> TWAP
    "SOL": 298.0,  # buy 2 ~ 200 notional -> market
}


@pytest.fixture
def manager(executor, price_feed, sample_assets):
    manager = PortfolioManager(
        executor,
        price_feed,
        settings=Settings(),
        clock=VirtualClock(START_TIME),
    )
    manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)
    return manager


def _algorithms(manager, order_ids):
    return {
        manager.get_order_status(oid)["symbol"]: manager.get_order_status(oid)["algorithm"]
        for oid in order_ids
    }


class TestInitialization:
    """Tests for the first allocation."""

    def test_equal_targets(self, manager):
        allocations = manager.allocations

        assert [a.symbol for a in allocations] == ["BTC", "ETH", "SOL"]
        for allocation in allocations:
            assert allocation.target_weight == pytest.approx(1 / 3)

    def test_analytics_seeded(self, manager):
        assert manager.analytics.latest_value == PORTFOLIO_VALUE
        assert manager.analytics.snapshots[0].timestamp == START_TIME

    def test_reoptimize_with_expected_returns(self, manager):
        manager.constraints.min_expected_return = 0.05
        allocations = manager.reoptimize({"BTC": 0.10, "ETH": 0.02, "SOL": 0.07})

        assert sorted(a.symbol for a in allocations) == ["BTC", "SOL"]
        assert sum(a.target_weight for a in allocations) == pytest.approx(1.0)


class TestRebalance:
    """Tests for leg selection and execution."""

    @pytest.mark.asyncio
    async def test_advanced_orders_by_notional(self, manager):
        order_ids = await manager.rebalance(MIXED_HOLDINGS, use_advanced_orders=True)

        assert _algorithms(manager, order_ids) == {
            "BTC": AlgorithmType.ICEBERG.value,
            "ETH": AlgorithmType.TWAP.value,
            "SOL": AlgorithmType.MARKET.value,
        }

        for order_id in order_ids:
            status = await manager.wait_for_order(order_id)
            assert status["status"] == "completed"
            assert status["progress"] == pytest.approx(1.0)

        by_symbol = {manager.get_order_status(oid)["symbol"]: manager.get_order_status(oid) for oid in order_ids}
        assert by_symbol["BTC"]["executed_amount"] == pytest.approx(0.06)
        assert by_symbol["BTC"]["slices_total"] == 5
        assert by_symbol["ETH"]["executed_amount"] == pytest.approx(0.25)
        assert by_symbol["ETH"]["intervals_total"] == 5
        assert by_symbol["SOL"]["executed_amount"] == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_advanced_orders_pace_on_engine_clock(self, manager):
        order_ids = await manager.rebalance(
            {"BTC": 0.54, "ETH": 10.0, "SOL": 300.0}, use_advanced_orders=True
        )
        iceberg = [oid for oid in order_ids if oid.startswith("iceberg_")]

        await manager.wait_for_order(iceberg[0])

        # Five slices, 30 seconds apart
        order = manager.execution.get_order(iceberg[0])
        assert order.created_at == START_TIME
        assert order.completed_at == START_TIME + timedelta(seconds=120)
        assert manager.clock.now() == START_TIME + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_plain_rebalance_uses_market_orders(self, manager, executor):
        order_ids = await manager.rebalance(MIXED_HOLDINGS)

        assert set(_algorithms(manager, order_ids).values()) == {AlgorithmType.MARKET.value}
        assert len(executor.calls) == 3
        assert all(manager.get_order_status(oid)["status"] == "completed" for oid in order_ids)

    @pytest.mark.asyncio
    async def test_sell_leg_for_overweight_holding(self, manager, executor):
        await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 310.0})

        (call,) = executor.calls
        assert call["symbol"] == "SOL"
        assert call["side"] is OrderSide.SELL
        assert call["amount"] == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_dust_deltas_skipped(self, manager, executor):
        order_ids = await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 300.005})

        assert order_ids == []
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_untargeted_holding_is_sold(self, manager, executor):
        manager.optimizer.add_asset(Asset(symbol="DOGE", price=0.1, market_cap=1e6))
        await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 300.0, "DOGE": 1000.0})

        (call,) = executor.calls
        assert call["symbol"] == "DOGE"
        assert call["side"] is OrderSide.SELL
        assert call["amount"] == pytest.approx(1000.0)

    @pytest.mark.asyncio
    async def test_concurrent_rebalances_serialize(self, manager, executor):
        first, second = await asyncio.gather(
            manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 298.0}),
            manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 298.0}),
        )

        assert len(first) == 1
        assert len(second) == 1
        assert len(executor.calls) == 2


class TestRouting:
    """Tests for routed market legs."""

    @pytest.mark.asyncio
    async def test_market_leg_goes_to_best_venue(self, executor, price_feed, sample_assets):
        cheap = MockVenue("CHEAP", price=99.0, available=100.0)
        dear = MockVenue("DEAR", price=101.0, available=100.0)
        manager = PortfolioManager(
            executor,
            price_feed,
            venues=[dear, cheap],
            settings=Settings(),
            clock=VirtualClock(START_TIME),
        )
        manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)

        (order_id,) = await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 298.0})

        assert len(cheap.orders) == 1
        assert dear.orders == []
        assert manager.get_order_status(order_id)["average_price"] == pytest.approx(99.0)
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_unroutable_leg_is_rejected(self, executor, price_feed, sample_assets):
        manager = PortfolioManager(
            executor,
            price_feed,
            venues=[MockVenue("DOWN", price=100.0, available=10.0, fail_quote=True)],
            settings=Settings(),
            clock=VirtualClock(START_TIME),
        )
        manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)

        order_ids = await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 298.0})

        assert order_ids == []
        status = manager.get_portfolio_status()
        (rejected,) = status.rejected_legs
        assert rejected.symbol == "SOL"
        assert rejected.side is OrderSide.BUY
        assert rejected.algorithm is AlgorithmType.MARKET
        assert status.to_dict()["rejected_legs"][0]["symbol"] == "SOL"


class TestOrders:
    """Tests for order control through the manager."""

    @pytest.mark.asyncio
    async def test_cancel_iceberg(self, manager):
        order_ids = await manager.rebalance(
            {"BTC": 0.54, "ETH": 10.0, "SOL": 300.0}, use_advanced_orders=True
        )
        iceberg = next(oid for oid in order_ids if oid.startswith("iceberg_"))

        assert manager.get_portfolio_status().active_orders >= 1
        assert manager.cancel_order(iceberg) is True
        assert manager.cancel_order(iceberg) is False

        status = await manager.wait_for_order(iceberg)
        assert status["status"] == "cancelled"
        assert status["executed_amount"] == 0.0

    def test_unknown_order(self, manager):
        assert manager.get_order_status("missing") is None
        assert manager.cancel_order("missing") is False

    def test_manager_shares_one_step_scheduler(self, manager):
        assert manager.scheduler is manager.execution.scheduler
        assert manager.clock is manager.execution.clock
        assert manager.clock.now() == START_TIME

    def test_injected_scheduler_is_kept(self, executor, price_feed):
        step = StepScheduler(VirtualClock(START_TIME))

        manager = PortfolioManager(executor, price_feed, settings=Settings(), scheduler=step)

        assert manager.scheduler is step
        assert manager.execution.scheduler is step

    @pytest.mark.asyncio
    async def test_background_loop_completes_all_legs(self, sample_assets):
        settings = Settings(
            execution=ExecutionSettings(
                iceberg_time_interval=0.0,
                twap_duration_minutes=0.0,
                poll_interval_seconds=0.01,
            )
        )
        manager = PortfolioManager(
            MockExecutor(),
            MockPriceFeed({"BTC": 50_000.0, "ETH": 3_000.0, "SOL": 100.0}),
            settings=settings,
        )
        manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)

        await manager.start()
        try:
            order_ids = await manager.rebalance(MIXED_HOLDINGS, use_advanced_orders=True)
            for _ in range(200):
                if manager.get_portfolio_status().active_orders == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await manager.stop()

        statuses = [manager.get_order_status(oid)["status"] for oid in order_ids]
        assert statuses == ["completed"] * 3
        assert manager.scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_background_pacing_on_wall_clock(self, sample_assets):
        settings = Settings(
            execution=ExecutionSettings(
                twap_duration_minutes=0.001,
                twap_intervals=2,
                poll_interval_seconds=0.01,
            )
        )
        manager = PortfolioManager(
            MockExecutor(),
            MockPriceFeed({"BTC": 50_000.0, "ETH": 3_000.0, "SOL": 100.0}),
            settings=settings,
        )
        manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)

        await manager.start()
        try:
            order_ids = await manager.rebalance({"BTC": 0.6, "ETH": 9.75, "SOL": 300.0}, use_advanced_orders=True)
            status = await asyncio.wait_for(manager.wait_for_order(order_ids[0]), timeout=10.0)
        finally:
            await manager.stop()

        assert status["status"] == "completed"


class TestPerformance:
    """Tests for value tracking and reporting."""

    def test_value_updates_feed_metrics(self, manager):
        manager.update_portfolio_value(99_000.0, START_TIME + timedelta(days=1))
        metrics = manager.update_portfolio_value(94_050.0, START_TIME + timedelta(days=2))

        assert manager.portfolio_value == 94_050.0
        assert metrics.total_return == pytest.approx(94_050.0 / 90_000.0 - 1)
        assert metrics.max_drawdown == pytest.approx(0.05)
        assert manager.get_portfolio_status().max_drawdown == pytest.approx(0.05)

    def test_value_update_defaults_to_engine_clock(self, manager):
        manager.clock.advance(3600)
        manager.update_portfolio_value(91_000.0)

        assert manager.analytics.timestamps[-1] == START_TIME + timedelta(hours=1)
        assert manager.get_portfolio_status().last_updated == START_TIME + timedelta(hours=1)

    def test_record_trade_and_report(self, manager):
        manager.record_trade(
            "BTC", "buy", START_TIME, START_TIME + timedelta(hours=6), 50_000.0, 51_000.0, 0.1
        )
        manager.record_trade(
            "ETH", "sell", START_TIME, START_TIME + timedelta(hours=2), 3_000.0, 3_100.0, 1.0
        )
        manager.update_portfolio_value(90_900.0, START_TIME + timedelta(days=1))
        manager.update_portfolio_value(91_809.0, START_TIME + timedelta(days=2))

        report = manager.generate_performance_report(benchmark_returns=[0.005, 0.005])

        assert report.trade_metrics.total_trades == 2
        assert report.trade_metrics.win_rate == pytest.approx(0.5)
        assert report.trade_metrics.profit_factor == pytest.approx(1.0)
        assert report.trade_analysis.average_holding_hours == pytest.approx(4.0)
        assert report.benchmark.observations == 2
        assert report.generated_at == manager.clock.now()
        assert report.to_dict()["snapshot_count"] == 3

    def test_back_dated_value_keeps_current_value(self, manager):
        manager.update_portfolio_value(91_000.0, START_TIME + timedelta(days=1))
        manager.update_portfolio_value(80_000.0, START_TIME + timedelta(hours=1))

        assert manager.portfolio_value == 91_000.0
        assert manager.analytics.values == [PORTFOLIO_VALUE, 91_000.0]
        assert manager.get_portfolio_status().last_updated == START_TIME + timedelta(days=1)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), -1.0])
    def test_invalid_value_rejected(self, manager, value):
        with pytest.raises(DataValidationError):
            manager.update_portfolio_value(value, START_TIME + timedelta(days=1))

        assert manager.portfolio_value == PORTFOLIO_VALUE
        assert len(manager.analytics.snapshots) == 1


class TestComposition:
    """Tests for building the manager from plain callables and settings."""

    @pytest.mark.asyncio
    async def test_from_callables(self, sample_assets):
        placed = []

        async def place_order(symbol, side, amount, price):
            placed.append((symbol, side, amount, price))
            return OrderFill(order_id=f"fill_{len(placed)}", executed_amount=amount, average_price=100.0)

        async def get_price(symbol):
            return {"BTC": 50_000.0, "ETH": 3_000.0, "SOL": 100.0}[symbol]

        manager = PortfolioManager.from_callables(
            place_order, get_price, settings=Settings(), clock=VirtualClock(START_TIME)
        )
        manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)

        order_ids = await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 298.0})

        assert placed == [("SOL", OrderSide.BUY, pytest.approx(2.0), pytest.approx(100.0))]
        assert manager.get_order_status(order_ids[0])["status"] == "completed"

    @pytest.mark.asyncio
    async def test_configure_logging_writes_trade_log(self, tmp_path, sample_assets):
        settings = Settings()
        settings.logging.log_file = tmp_path / "engine.log"
        settings.logging.trade_log_file = tmp_path / "trades.log"

        try:
            manager = PortfolioManager(
                MockExecutor(),
                MockPriceFeed({"BTC": 50_000.0, "ETH": 3_000.0, "SOL": 100.0}),
                settings=settings,
                clock=VirtualClock(START_TIME),
                configure_logging=True,
            )
            manager.initialize(sample_assets, OptimizationConstraints(max_assets=3), PORTFOLIO_VALUE)
            await manager.rebalance({"BTC": 0.6, "ETH": 10.0, "SOL": 298.0})
        finally:
            setup_logging()

        trade_lines = (tmp_path / "trades.log").read_text().splitlines()
        assert any("SOL" in line for line in trade_lines)
        assert all(" | ORDER | " in line or " | FILL | " in line or " | SKIP | " in line for line in trade_lines)
        assert (tmp_path / "engine.log").read_text()
