"""
Unit Tests for the Synthetic Exchange

These tests verify that:
- Generated candles are aligned, continuous and tagged "mock"
- History ends at the slot containing end_time
- Live candles flow through the regular multiplexer path into the cache

Run with:
    pytest tests/unit/test_synthetic.py -v
"""

import json

import pytest

from core.cache import CandleCache
from core.exchange_manager import ExchangeManager
from core.schemas import CandleSource, SeriesKey, SubscriptionKey
from services.synthetic import (
    RandomWalkGenerator,
    SyntheticExchange,
    SyntheticStreamProtocol,
    base_price_for,
    volatility_for,
)
from tests.fakes import wait_until


class TestGenerator:
    """Tests for RandomWalkGenerator"""

    def test_base_prices(self):
        assert base_price_for("BTCUSDT") == 65000.0
        assert base_price_for("eth-usdc") == 3500.0
        assert base_price_for("DOGEUSDT") == 100.0

    def test_volatility_grows_with_interval(self):
        assert volatility_for("1m") < volatility_for("15m") < volatility_for("1h") < volatility_for("1d")

    def test_history_is_aligned_and_continuous(self):
        candles = RandomWalkGenerator(seed=1).history("BTCUSDT", "5m", limit=12, end_time=1700000123)

        assert len(candles) == 12
        assert candles[-1].time == 1700000100
        assert all(b.time - a.time == 300 for a, b in zip(candles, candles[1:]))
        assert all(c.source == CandleSource.MOCK for c in candles)
        assert all(c.low <= min(c.open, c.close) and c.high >= max(c.open, c.close) for c in candles)

    def test_seed_is_reproducible(self):
        a = RandomWalkGenerator(seed=42).history("ETHUSDT", "1m", 5, end_time=1700000000)
        b = RandomWalkGenerator(seed=42).history("ETHUSDT", "1m", 5, end_time=1700000000)
        assert a == b


class TestSyntheticProtocol:
    """Tests for SyntheticStreamProtocol"""

    protocol = SyntheticStreamProtocol("synthetic://local")

    def test_url_carries_symbol_and_interval(self):
        url = self.protocol.connection_url(SubscriptionKey("synthetic", "BTCUSDT", "1m"))
        assert url == "synthetic://local/BTCUSDT/1m"

    def test_parse_frame(self):
        frame = {"symbol": "btcusdt", "interval": "1m",
                 "k": {"t": 1700000040, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 3}}
        [update] = self.protocol.parse_message(json.dumps(frame))

        assert update.symbol == "BTCUSDT"
        assert update.candle.source == CandleSource.MOCK


class TestSyntheticExchange:
    """Tests for SyntheticExchange"""

    @pytest.mark.asyncio
    async def test_historical_candles(self):
        exchange = SyntheticExchange(seed=3)
        candles = await exchange.get_historical_candles("BTCUSDT", "1h", limit=24, end_time=1700000123)

        assert len(candles) == 24
        assert candles[-1].time == 1699999200
        assert await exchange.check_status() is True

    @pytest.mark.asyncio
    async def test_live_stream_through_multiplexer(self):
        cache = CandleCache()
        exchange = SyntheticExchange(seed=5, tick_seconds=0.01)
        ExchangeManager(cache=cache, exchanges={"synthetic": exchange})
        received = []

        callback_id = await exchange.subscribe("BTCUSDT", "1m", "kline", lambda key, candle: received.append(candle))
        try:
            await wait_until(lambda: received)
        finally:
            await exchange.unsubscribe("BTCUSDT", "1m", callback_id=callback_id)

        assert received[0].source == CandleSource.MOCK
        assert cache.has_candles(SeriesKey("synthetic", "BTCUSDT", "1m"))
        assert exchange.multiplexer.connection_count == 0
