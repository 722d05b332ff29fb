"""
Unit Tests for MarketDataContext

These tests verify component wiring and the series status rules:
- live / reconnecting while subscribed
- cached / no_data otherwise

Run with:
    pytest tests/unit/test_context.py -v
"""

import pytest

from core.config import Settings
from core.errors import UnsupportedExchangeError
from core.schemas import ConnectionStatus
from services.context import MarketDataContext
from services.synthetic import SyntheticExchange
from tests.fakes import T0, FakeExchange, make_candles, wait_until


def build_context(**overrides):
    config = Settings(_env_file=None, **overrides)
    return MarketDataContext(config=config, exchanges={
        "binance": FakeExchange("binance", candles=make_candles(10)),
        "synthetic": SyntheticExchange(seed=11, tick_seconds=0.01),
    })


class TestWiring:
    """Tests for the composition root"""

    def test_components_share_cache_and_bus(self):
        context = build_context()

        mux = context.manager.get_exchange("binance").multiplexer
        assert mux.sink is context.cache
        assert mux.event_bus is context.bus
        assert context.fetcher.cache is context.cache
        assert context.scheduler.cache is context.cache

    def test_settings_are_applied(self):
        context = build_context(cache_expiry_seconds=60, request_timeout=2.5)
        assert context.cache.expiry_seconds == 60
        assert context.fetcher.timeout == 2.5

    @pytest.mark.asyncio
    async def test_start_and_stop_with_scheduler(self):
        context = build_context(scheduler_enabled=True, scheduler_tick_seconds=3600)

        async with context:
            assert context.scheduler.is_running is True
            assert len(context.scheduler.jobs) == 42

        assert context.scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_scheduler_disabled_by_default(self):
        context = build_context()
        await context.start()
        try:
            assert context.scheduler.is_running is False
        finally:
            await context.stop()


class TestSeriesStatus:
    """Tests for get_series_status"""

    def test_no_data(self):
        status = build_context().get_series_status("binance", "BTCUSDT", "1m")

        assert status.status == ConnectionStatus.NO_DATA
        assert status.cached_candles == 0
        assert status.last_candle_time is None

    @pytest.mark.asyncio
    async def test_cached_after_fetch(self):
        context = build_context()
        await context.fetcher.fetch_candles("binance", "BTCUSDT", "1m", limit=10)

        status = context.get_series_status("binance", "btcusdt", "1m")

        assert status.status == ConnectionStatus.CACHED
        assert status.symbol == "BTCUSDT"
        assert status.cached_candles == 10
        assert status.last_candle_time == T0 + 540
        assert status.is_fresh is False

    @pytest.mark.asyncio
    async def test_live_while_subscribed(self):
        context = build_context()
        exchange = context.manager.get_exchange("synthetic")
        callback_id = await exchange.subscribe("ETHUSDT", "1m", "kline", lambda key, candle: None)
        try:
            await wait_until(
                lambda: context.get_series_status("synthetic", "ETHUSDT", "1m").status == ConnectionStatus.LIVE
            )
        finally:
            await exchange.unsubscribe("ETHUSDT", "1m", callback_id=callback_id)

        assert context.get_series_status("synthetic", "ETHUSDT", "1m").status in (
            ConnectionStatus.CACHED, ConnectionStatus.NO_DATA
        )

    def test_unknown_exchange(self):
        with pytest.raises(UnsupportedExchangeError):
            build_context().get_series_status("kraken", "BTCUSDT", "1m")
