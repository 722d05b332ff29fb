"""
Unit Tests for the Exchange Registry and Connector Contract

These tests verify that:
- The default registry holds the four spot exchanges (plus synthetic when enabled)
- Unknown names raise UnsupportedExchangeError
- Every registered connector gets a multiplexer bound to the shared cache and bus
- Connectors validate keys before subscribing and normalize symbols

Run with:
    pytest tests/unit/test_exchange_manager.py -v
"""

import pytest
from unittest.mock import AsyncMock

from core.cache import CandleCache
from core.errors import UnsupportedExchangeError, ValidationError
from core.exchange_manager import ExchangeManager
from core.multiplexer import ConnectionMultiplexer
from core.schemas import SubscriptionKey
from exchanges.binance import BinanceExchange
from exchanges.bybit import BybitExchange
from exchanges.mexc import MEXCExchange
from exchanges.okx import OKXExchange
from services.event_bus import EventBus
from tests.fakes import FakeExchange


# ============================================
# Registry
# ============================================

class TestRegistry:
    """Tests for ExchangeManager lookups"""

    def test_default_exchanges(self):
        manager = ExchangeManager(enable_synthetic=False)
        assert manager.list_exchanges() == ["binance", "okx", "bybit", "mexc"]
        assert len(manager) == 4

    def test_synthetic_is_opt_in(self):
        manager = ExchangeManager(enable_synthetic=True)
        assert manager.has_exchange("synthetic")
        assert not ExchangeManager(enable_synthetic=False).has_exchange("synthetic")

    def test_lookup_is_case_insensitive(self):
        manager = ExchangeManager(enable_synthetic=False)
        assert isinstance(manager.get_exchange("OKX"), OKXExchange)
        assert isinstance(manager.get_exchange("binance"), BinanceExchange)
        assert isinstance(manager.get_exchange("Bybit"), BybitExchange)
        assert isinstance(manager.get_exchange("mexc"), MEXCExchange)

    def test_unknown_exchange(self):
        manager = ExchangeManager(exchanges={"fake": FakeExchange()})

        with pytest.raises(UnsupportedExchangeError) as exc_info:
            manager.get_exchange("kraken")

        assert exc_info.value.name == "kraken"
        assert "fake" in str(exc_info.value)
        assert isinstance(exc_info.value, ValueError)

    def test_capabilities_are_copied(self):
        manager = ExchangeManager(exchanges={"fake": FakeExchange()})
        caps = manager.get_exchange_capabilities("fake")
        caps["live_candles"] = False
        assert manager.get_exchange("fake").supports("live_candles") is True

    def test_multiplexer_is_attached(self):
        cache = CandleCache()
        bus = EventBus()
        manager = ExchangeManager(cache=cache, event_bus=bus, exchanges={"fake": FakeExchange()})

        mux = manager.get_exchange("fake").multiplexer
        assert isinstance(mux, ConnectionMultiplexer)
        assert mux.exchange == "fake"
        assert mux.sink is cache
        assert mux.event_bus is bus


# ============================================
# Lifecycle and Health
# ============================================

class TestLifecycle:
    """Tests for initialize_all / shutdown_all / health_check_all"""

    @pytest.mark.asyncio
    async def test_failing_initialize_does_not_stop_others(self, caplog):
        broken = FakeExchange("broken")
        broken.initialize = AsyncMock(side_effect=RuntimeError("no route"))
        healthy = FakeExchange("healthy")
        healthy.initialize = AsyncMock()

        manager = ExchangeManager(exchanges={"broken": broken, "healthy": healthy})
        await manager.initialize_all()

        healthy.initialize.assert_awaited_once()
        assert "Failed to initialize broken: no route" in caplog.text

    @pytest.mark.asyncio
    async def test_health_check(self):
        manager = ExchangeManager(exchanges={
            "up": FakeExchange("up"),
            "down": FakeExchange("down", error=RuntimeError("x")),
        })
        crashing = FakeExchange("crash")
        crashing.check_status = AsyncMock(side_effect=RuntimeError("boom"))
        manager.register(crashing)

        assert await manager.health_check_all() == {"up": True, "down": False, "crash": False}

    @pytest.mark.asyncio
    async def test_shutdown_closes_multiplexers(self):
        exchange = FakeExchange()
        manager = ExchangeManager(exchanges={"fake": exchange})
        exchange.multiplexer.close = AsyncMock()

        await manager.shutdown_all()
        exchange.multiplexer.close.assert_awaited_once()


# ============================================
# Connector Contract
# ============================================

class TestConnectorContract:
    """Tests for ExchangeConnector helpers"""

    def test_default_symbol_format(self):
        assert FakeExchange().format_symbol("btc-usdt") == "BTCUSDT"

    def test_okx_symbol_format(self):
        exchange = OKXExchange()
        assert exchange.format_symbol("BTCUSDT") == "BTC-USDT"
        assert exchange.format_symbol("eth-usdc") == "ETH-USDC"
        assert exchange.subscription_key("solusdt", "1m") == SubscriptionKey("okx", "SOL-USDT", "1m", "kline")

    @pytest.mark.asyncio
    async def test_subscribe_requires_multiplexer(self):
        with pytest.raises(RuntimeError, match="no multiplexer"):
            await FakeExchange().subscribe("BTCUSDT", "1m", "kline", lambda key, candle: None)

    @pytest.mark.asyncio
    async def test_subscribe_rejects_unknown_stream(self):
        exchange = FakeExchange()
        ExchangeManager(exchanges={"fake": exchange})

        with pytest.raises(ValidationError, match="unsupported stream"):
            await exchange.subscribe("BTCUSDT", "1m", "trades", lambda key, candle: None)

    @pytest.mark.asyncio
    async def test_subscribe_rejects_unknown_interval(self):
        exchange = FakeExchange()
        ExchangeManager(exchanges={"fake": exchange})

        with pytest.raises(ValidationError):
            await exchange.subscribe("BTCUSDT", "7x", "kline", lambda key, candle: None)

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe_go_through_multiplexer(self):
        exchange = FakeExchange()
        ExchangeManager(exchanges={"fake": exchange})
        exchange.multiplexer.subscribe = AsyncMock(return_value="cb-1")
        exchange.multiplexer.unsubscribe = AsyncMock(return_value=True)

        callback_id = await exchange.subscribe("btc-usdt", "1m", "kline", lambda key, candle: None)
        assert callback_id == "cb-1"
        key = exchange.multiplexer.subscribe.await_args.args[0]
        assert key == SubscriptionKey("fake", "BTCUSDT", "1m", "kline")

        assert await exchange.unsubscribe("BTCUSDT", "1m", callback_id="cb-1") is True
        exchange.multiplexer.unsubscribe.assert_awaited_once_with(key, "cb-1")

    @pytest.mark.asyncio
    async def test_rest_requires_initialize(self):
        exchange = BinanceExchange()
        with pytest.raises(RuntimeError, match="not initialized"):
            await exchange.get_historical_candles("BTCUSDT", "1m", 10)
