"""
Unit Tests for CandleCache

These tests verify that the in-memory cache:
- Keeps each series ascending with unique timestamps
- Resolves collisions by source priority, then volume
- Is idempotent when the same candles are stored twice
- Reports freshness against the expiry window
- Purges old candles and forgets emptied series

Run with:
    pytest tests/unit/test_cache.py -v
"""

import pytest

from core.cache import CandleCache, should_replace
from core.schemas import Candle, CandleSource, SeriesKey


KEY = SeriesKey("binance", "BTCUSDT", "1m")
NOW = 1_700_000_000


def make_candle(time, close=100.0, volume=1.0, source=CandleSource.HISTORICAL):
    return Candle(time=time, open=close, high=close, low=close, close=close, volume=volume, source=source)


@pytest.fixture
def cache():
    return CandleCache(expiry_seconds=1800, max_candles=100, clock=lambda: NOW)


# ============================================
# Collision Policy
# ============================================

class TestShouldReplace:
    """Tests for the dedup priority rules"""

    def test_real_beats_historical(self):
        assert should_replace(make_candle(60), make_candle(60, source=CandleSource.REAL))

    def test_historical_beats_mock_even_with_less_volume(self):
        existing = make_candle(60, volume=100, source=CandleSource.MOCK)
        incoming = make_candle(60, volume=1, source=CandleSource.HISTORICAL)
        assert should_replace(existing, incoming)

    def test_mock_never_replaces_real(self):
        existing = make_candle(60, source=CandleSource.REAL)
        incoming = make_candle(60, volume=1000, source=CandleSource.MOCK)
        assert not should_replace(existing, incoming)

    def test_same_priority_higher_volume_wins(self):
        assert should_replace(make_candle(60, volume=1), make_candle(60, volume=2))

    def test_exact_tie_keeps_existing(self):
        assert not should_replace(make_candle(60, volume=1), make_candle(60, volume=1))


# ============================================
# Writes and Reads
# ============================================

class TestStoreCandles:
    """Tests for store_candles/get_candles"""

    @pytest.mark.asyncio
    async def test_series_is_ascending_and_unique(self, cache):
        await cache.store_candles(KEY, [make_candle(180), make_candle(60)])
        await cache.store_candles(KEY, [make_candle(120), make_candle(60)])

        times = [c.time for c in cache.get_candles(KEY)]
        assert times == [60, 120, 180]

    @pytest.mark.asyncio
    async def test_storing_twice_is_idempotent(self, cache):
        candles = [make_candle(60, volume=5), make_candle(120, volume=7)]
        first = await cache.store_candles(KEY, candles)
        second = await cache.store_candles(KEY, candles)
        assert first == second

    @pytest.mark.asyncio
    async def test_live_candle_overrides_historical(self, cache):
        await cache.store_candles(KEY, [make_candle(60, close=100)])
        await cache.store_candles(KEY, [make_candle(60, close=101, source=CandleSource.REAL)])

        [candle] = cache.get_candles(KEY)
        assert candle.close == 101
        assert candle.source == CandleSource.REAL

    @pytest.mark.asyncio
    async def test_key_is_normalized(self, cache):
        await cache.store_candles(("Binance", "btcusdt", "1m"), [make_candle(60)])
        assert cache.has_candles(KEY)
        assert KEY in cache

    @pytest.mark.asyncio
    async def test_limit_returns_newest(self, cache):
        await cache.store_candles(KEY, [make_candle(t) for t in (60, 120, 180, 240)])
        assert [c.time for c in cache.get_candles(KEY, limit=2)] == [180, 240]

    @pytest.mark.asyncio
    async def test_max_candles_trims_oldest(self):
        cache = CandleCache(expiry_seconds=1800, max_candles=3, clock=lambda: NOW)
        await cache.store_candles(KEY, [make_candle(t) for t in (60, 120, 180, 240, 300)])
        assert [c.time for c in cache.get_candles(KEY)] == [180, 240, 300]

    def test_unknown_key_is_empty(self, cache):
        assert cache.get_candles(KEY) == []
        assert not cache.has_candles(KEY)


# ============================================
# Freshness
# ============================================

class TestFreshness:
    """Tests for is_fresh"""

    @pytest.mark.asyncio
    async def test_recent_candle_is_fresh(self, cache):
        await cache.store_candles(KEY, [make_candle(NOW - 60)])
        assert cache.is_fresh(KEY)

    @pytest.mark.asyncio
    async def test_candle_older_than_expiry_is_stale(self, cache):
        """Newest candle 31 minutes old under a 30 minute expiry"""
        await cache.store_candles(KEY, [make_candle(NOW - 31 * 60)])
        assert not cache.is_fresh(KEY)

    @pytest.mark.asyncio
    async def test_too_few_candles_is_not_fresh(self, cache):
        await cache.store_candles(KEY, [make_candle(NOW - 120), make_candle(NOW - 60)])
        assert cache.is_fresh(KEY, limit=2)
        assert not cache.is_fresh(KEY, limit=3)

    def test_missing_key_is_not_fresh(self, cache):
        assert not cache.is_fresh(KEY)


# ============================================
# Purge
# ============================================

class TestPurge:
    """Tests for purge_old_candles"""

    @pytest.mark.asyncio
    async def test_purge_removes_old_candles(self, cache):
        await cache.store_candles(KEY, [make_candle(t) for t in (60, 120, 180)])
        removed = await cache.purge_old_candles(cutoff=120)

        assert removed == 1
        assert [c.time for c in cache.get_candles(KEY)] == [120, 180]

    @pytest.mark.asyncio
    async def test_purge_forgets_empty_series(self, cache):
        await cache.store_candles(KEY, [make_candle(60)])
        await cache.purge_old_candles(cutoff=1000)

        assert KEY not in cache.keys()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_purge_by_age(self, cache):
        old = NOW - 8 * 86400
        await cache.store_candles(KEY, [make_candle(old), make_candle(NOW - 60)])
        removed = await cache.purge_old_candles(max_age_days=7)

        assert removed == 1
        assert cache.get_candles(KEY)[0].time == NOW - 60
