"""
Historical Candle Fetcher

Cache-first access to historical candles, for one series or aggregated across
several exchange/quote sources.

Flow for a single series:
    1. widen the requested limit by the interval multiplier, capped at the
       connector's largest request
    2. serve from the cache when the entry is fresh and covers the requested
       range (unless force_fresh)
    3. otherwise fetch over REST with a bounded timeout, normalize, store
    4. on failure, fall back to whatever the cache holds, even stale data
"""

import asyncio
import math
from typing import Dict, Iterable, List, Optional, Tuple

from core.cache import CandleCache
from core.config import settings
from core.errors import AggregationError, TransportError, ValidationError
from core.exchange_manager import ExchangeManager
from core.logging import get_logger
from core.normalizer import normalize_candles
from core.schemas import AggregatedCandles, Candle, SeriesKey
from core.utils.symbols import symbol_for_exchange
from core.utils.time import to_epoch_seconds
from services.aggregation import AggregationEngine


logger = get_logger(__name__)

# Interval -> multiplier applied to the requested limit
LIMIT_MULTIPLIERS: Dict[str, float] = {
    "1m": 1.0,
    "5m": 1.5,
    "15m": 2.0,
    "30m": 2.5,
    "1h": 3.0,
    "4h": 5.0,
    "1d": 10.0,
}


def adjusted_limit(limit: int, interval: str) -> int:
    """
    Example:
        >>> adjusted_limit(100, "4h")
        500
    """
    return math.ceil(limit * LIMIT_MULTIPLIERS.get(interval, 1.0))


def filter_range(candles: Iterable[Candle], start_time: Optional[int], end_time: Optional[int]) -> List[Candle]:
    return [
        c for c in candles
        if (start_time is None or c.time >= start_time) and (end_time is None or c.time <= end_time)
    ]


class HistoricalCandleFetcher:
    """
    Fetches historical candles through the exchange connectors and the cache.

    Args:
        manager: Registry used to resolve exchange names
        cache: Shared candle cache
        engine: Merger used by fetch_aggregated_candles
        timeout: Per-request bound in seconds (default settings.request_timeout)
    """

    def __init__(
        self,
        manager: ExchangeManager,
        cache: CandleCache,
        engine: Optional[AggregationEngine] = None,
        timeout: Optional[float] = None
    ) -> None:
        self.manager = manager
        self.cache = cache
        self.engine = engine or AggregationEngine()
        self.timeout = timeout if timeout is not None else settings.request_timeout

    # ============================================
    # Single Series
    # ============================================

    async def fetch_candles(
        self,
        exchange: str,
        symbol: str,
        interval: str,
        limit: Optional[int] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        try_cache: bool = True,
        force_fresh: bool = False
    ) -> List[Candle]:
        """
        Return up to `limit` ascending candles for one series.

        Raises:
            UnsupportedExchangeError: Unknown exchange name
            TransportError: Fetch failed (or timed out) and nothing is cached
            ValidationError: Payload was malformed and nothing is cached
        """
        connector = self.manager.get_exchange(exchange)
        limit = limit or settings.default_candle_limit
        start_time = to_epoch_seconds(start_time) if start_time is not None else None
        end_time = to_epoch_seconds(end_time) if end_time is not None else None
        wanted = adjusted_limit(limit, interval)
        if connector.max_request_limit is not None:
            wanted = min(wanted, connector.max_request_limit)
        key = SeriesKey(connector.name, connector.format_symbol(symbol), interval)

        if try_cache and not force_fresh:
            cached = self._cached_window(key, min(limit, wanted), start_time, end_time)
            if cached is not None:
                logger.debug(f"Cache hit for {key.exchange}/{key.symbol}/{interval}")
                return cached[-limit:]

        try:
            candles = await asyncio.wait_for(
                connector.get_historical_candles(key.symbol, interval, wanted, start_time, end_time),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            error = TransportError(f"Request timed out after {self.timeout}s", exchange=key.exchange)
            return self._fallback(key, error, limit, start_time, end_time)
        except (TransportError, ValidationError) as e:
            return self._fallback(key, e, limit, start_time, end_time)

        fetched = normalize_candles(candles, interval)
        stored = await self.cache.store_candles(key, fetched)
        logger.info(
            f"Fetched {len(candles)} candle(s) for {key.exchange}/{key.symbol}/{interval}"
        )

        view = filter_range(stored, start_time, end_time)
        if start_time is not None or end_time is not None:
            # An old window may already be trimmed out of the cache by max_candles
            requested = filter_range(fetched, start_time, end_time)
            if len(requested) > len(view):
                view = requested
        return view[-limit:]

    def _cached_window(
        self,
        key: SeriesKey,
        min_count: int,
        start_time: Optional[int],
        end_time: Optional[int]
    ) -> Optional[List[Candle]]:
        """
        Cached candles answering the request, or None when the cache cannot.

        The entry must be fresh with at least `min_count` candles. A ranged
        request also needs the cached span to reach back to start_time, and an
        end-only request needs `min_count` candles at or before end_time.
        """
        if not self.cache.is_fresh(key, min_count):
            return None

        cached = normalize_candles(self.cache.get_candles(key), key.interval)
        window = filter_range(cached, start_time, end_time)
        if start_time is not None and cached[0].time > start_time:
            return None
        if start_time is None and end_time is not None and len(window) < min_count:
            return None
        return window

    def _fallback(
        self,
        key: SeriesKey,
        error: Exception,
        limit: int,
        start_time: Optional[int],
        end_time: Optional[int]
    ) -> List[Candle]:
        """Serve cached candles after a failed fetch, or re-raise when there are none."""
        cached = self.cache.get_candles(key)
        if not cached:
            logger.error(f"Fetch failed for {key.exchange}/{key.symbol}/{key.interval}: {error}")
            raise error
        logger.warning(
            f"Fetch failed for {key.exchange}/{key.symbol}/{key.interval} ({error}); "
            f"serving {len(cached)} cached candle(s)"
        )
        return filter_range(cached, start_time, end_time)[-limit:]

    # ============================================
    # Aggregated Series
    # ============================================

    async def fetch_aggregated_candles(
        self,
        base_asset: str,
        interval: str,
        quote_assets: Optional[List[str]] = None,
        exchanges: Optional[List[str]] = None,
        limit: Optional[int] = None
    ) -> AggregatedCandles:
        """
        Fetch base_asset against every quote on every exchange and merge the results.

        Raises:
            UnsupportedExchangeError: An exchange name is unknown
            AggregationError: No source returned candles
        """
        quote_assets = quote_assets or settings.quote_assets_list
        exchanges = exchanges or settings.popular_exchanges_list
        limit = limit or settings.default_candle_limit

        for name in exchanges:
            self.manager.get_exchange(name)

        pairs: List[Tuple[str, str]] = [
            (name.lower(), symbol_for_exchange(name, base_asset, quote))
            for name in exchanges
            for quote in quote_assets
        ]

        results = await asyncio.gather(
            *(self.fetch_candles(name, symbol, interval, limit) for name, symbol in pairs),
            return_exceptions=True
        )

        series: Dict[str, List[Candle]] = {}
        for (name, symbol), result in zip(pairs, results):
            if isinstance(result, BaseException):
                logger.warning(f"Aggregation source {name}:{symbol} failed: {result}")
                continue
            if result:
                series[f"{name}:{symbol}"] = result

        if not series:
            raise AggregationError(
                f"No data for {base_asset.upper()}/{interval} from any of {len(pairs)} source(s)"
            )

        return self.engine.merge(base_asset, interval, series, limit)
