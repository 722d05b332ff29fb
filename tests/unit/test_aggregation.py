"""
Unit Tests for the Aggregation Engine

These tests verify that:
- Candles sharing a timestamp are merged by volume-weighted average price
- Zero-volume buckets fall back to the arithmetic mean
- Gaps wider than 1.5 intervals are filled with flat zero-volume candles
- is_aggregated reflects the number of contributing sources

Run with:
    pytest tests/unit/test_aggregation.py -v
"""

from core.schemas import Candle, CandleSource
from services.aggregation import AggregationEngine, fill_gaps, vwap_bucket


def make_candle(time, price, volume, source=CandleSource.HISTORICAL):
    return Candle(time=time, open=price, high=price, low=price, close=price, volume=volume, source=source)


# ============================================
# VWAP
# ============================================

class TestVwapBucket:
    """Tests for per-timestamp merging"""

    def test_volume_weighted_close(self):
        """Volumes {10, 30} with closes {100, 200} give 175"""
        merged = vwap_bucket(0, [make_candle(0, 100, 10), make_candle(0, 200, 30)])
        assert merged.close == 175.0
        assert merged.open == 175.0
        assert merged.volume == 40.0

    def test_zero_volume_uses_mean(self):
        merged = vwap_bucket(0, [make_candle(0, 100, 0), make_candle(0, 200, 0)])
        assert merged.close == 150.0
        assert merged.volume == 0.0

    def test_single_candle_is_unchanged(self):
        merged = vwap_bucket(60, [make_candle(60, 123.0, 4)])
        assert merged.close == 123.0
        assert merged.time == 60


# ============================================
# Gap Filling
# ============================================

class TestFillGaps:
    """Tests for flat candle insertion"""

    def test_gap_is_filled_with_flat_candles(self):
        """Candles at 0 and 300 on 1m produce fills at 60..240"""
        first = make_candle(0, 100, 5)
        last = make_candle(300, 110, 5)
        filled = fill_gaps([first, last], "1m")

        assert [c.time for c in filled] == [0, 60, 120, 180, 240, 300]
        for candle in filled[1:-1]:
            assert candle.open == candle.high == candle.low == candle.close == first.close
            assert candle.volume == 0
            assert candle.source == CandleSource.MOCK

    def test_small_gap_is_not_filled(self):
        """A gap of 1.5 intervals or less is left alone"""
        candles = [make_candle(0, 100, 1), make_candle(90, 100, 1)]
        assert fill_gaps(candles, "1m") == candles

    def test_contiguous_series_unchanged(self):
        candles = [make_candle(t, 100, 1) for t in (0, 60, 120)]
        assert fill_gaps(candles, "1m") == candles


# ============================================
# Engine
# ============================================

class TestAggregationEngine:
    """Tests for AggregationEngine.merge"""

    def test_two_sources_are_aggregated(self):
        engine = AggregationEngine()
        result = engine.merge(
            "btc",
            "1m",
            {
                "binance:BTCUSDT": [make_candle(0, 100, 10), make_candle(60, 100, 10)],
                "okx:BTC-USDT": [make_candle(0, 200, 30)],
            },
            limit=10
        )

        assert result.base_asset == "BTC"
        assert result.is_aggregated is True
        assert result.sources == ["binance:BTCUSDT", "okx:BTC-USDT"]
        assert [c.time for c in result.candles] == [0, 60]
        assert result.candles[0].close == 175.0

    def test_single_source_is_not_aggregated(self):
        result = AggregationEngine().merge(
            "ETH", "1m", {"binance:ETHUSDT": [make_candle(0, 10, 1)], "okx:ETH-USDT": []}, limit=10
        )
        assert result.is_aggregated is False
        assert result.sources == ["binance:ETHUSDT"]

    def test_limit_keeps_newest(self):
        candles = [make_candle(t, 100, 1) for t in range(0, 600, 60)]
        result = AggregationEngine().merge("BTC", "1m", {"binance:BTCUSDT": candles}, limit=3)
        assert [c.time for c in result.candles] == [420, 480, 540]

    def test_gaps_filled_before_limit(self):
        candles = [make_candle(0, 100, 1), make_candle(300, 100, 1)]
        result = AggregationEngine().merge("BTC", "1m", {"binance:BTCUSDT": candles}, limit=3)
        assert [c.time for c in result.candles] == [180, 240, 300]
