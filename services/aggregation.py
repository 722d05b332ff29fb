"""
Aggregation Engine

Merges candle series from several exchange/quote sources into one
volume-weighted series.

Per timestamp bucket:
    price  = sum(price_i * volume_i) / sum(volume_i)   (open, high, low, close)
    price  = mean(price_i)                              when the bucket volume is 0
    volume = sum(volume_i)

Afterwards the series is sorted, gaps wider than 1.5 intervals are filled with
flat zero-volume candles (source "mock") and only the newest `limit` are kept.
"""

from collections import defaultdict
from typing import Dict, List, Sequence

from core.logging import get_logger
from core.normalizer import align_timestamp
from core.schemas import AggregatedCandles, Candle, CandleSource
from core.utils.time import interval_to_seconds, to_iso


logger = get_logger(__name__)

GAP_TOLERANCE = 1.5


def vwap_bucket(time: int, candles: Sequence[Candle]) -> Candle:
    """
    Combine candles sharing one timestamp.

    Example:
        >>> a = Candle(time=0, open=100, high=100, low=100, close=100, volume=10)
        >>> b = Candle(time=0, open=200, high=200, low=200, close=200, volume=30)
        >>> vwap_bucket(0, [a, b]).close
        175.0
    """
    total_volume = sum(c.volume for c in candles)

    def weighted(field: str) -> float:
        if total_volume > 0:
            return sum(getattr(c, field) * c.volume for c in candles) / total_volume
        return sum(getattr(c, field) for c in candles) / len(candles)

    source = max((c.source for c in candles), key=lambda s: s.priority)
    return Candle(
        time=time,
        open=weighted("open"),
        high=weighted("high"),
        low=weighted("low"),
        close=weighted("close"),
        volume=total_volume,
        source=source
    )


def fill_gaps(candles: List[Candle], interval: str) -> List[Candle]:
    """
    Insert flat candles where consecutive times are more than 1.5 intervals apart.

    Each fill repeats the previous close with zero volume.
    """
    if len(candles) < 2:
        return list(candles)

    step = interval_to_seconds(interval)
    filled: List[Candle] = [candles[0]]

    for current in candles[1:]:
        previous = filled[-1]
        gap = current.time - previous.time
        if gap > step * GAP_TOLERANCE:
            missing = gap // step - 1
            logger.debug(
                f"Filling {missing} candle(s) between {to_iso(previous.time)} and {to_iso(current.time)}"
            )
            for i in range(1, missing + 1):
                filled.append(Candle(
                    time=previous.time + i * step,
                    open=previous.close,
                    high=previous.close,
                    low=previous.close,
                    close=previous.close,
                    volume=0.0,
                    source=CandleSource.MOCK
                ))
        filled.append(current)

    return filled


class AggregationEngine:
    """
    Stateless merger of per-source candle series.

    Example:
        >>> engine = AggregationEngine()
        >>> result = engine.merge("BTC", "1h", {"binance:BTCUSDT": a, "okx:BTC-USDT": b}, limit=100)
        >>> result.is_aggregated
        True
    """

    def merge(
        self,
        base_asset: str,
        interval: str,
        series: Dict[str, Sequence[Candle]],
        limit: int
    ) -> AggregatedCandles:
        """
        Args:
            base_asset: Base asset the series describe (e.g., "BTC")
            interval: Candle interval shared by every series
            series: source label -> candles; empty series are ignored
            limit: Number of newest candles to keep

        Returns:
            AggregatedCandles with is_aggregated set when 2+ sources contributed
        """
        sources = [label for label, candles in series.items() if candles]

        buckets: Dict[int, List[Candle]] = defaultdict(list)
        for label in sources:
            for candle in series[label]:
                buckets[align_timestamp(candle.time, interval)].append(candle)

        merged = [vwap_bucket(time, buckets[time]) for time in sorted(buckets)]
        merged = fill_gaps(merged, interval)
        if limit > 0:
            merged = merged[-limit:]

        logger.info(
            f"Aggregated {base_asset.upper()}/{interval}: {len(merged)} candle(s) "
            f"from {len(sources)} source(s)"
        )

        return AggregatedCandles(
            base_asset=base_asset,
            interval=interval,
            candles=merged,
            is_aggregated=len(sources) > 1,
            sources=sources
        )
