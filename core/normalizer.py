"""
Candle Normalizer

Pure functions that turn raw exchange frames into canonical Candle objects.

Steps applied to every candle:
    1. Numeric coercion: string-encoded numbers become floats; missing or
       non-numeric fields raise ValidationError
    2. Time units: millisecond timestamps become whole seconds (integer division)
    3. Alignment: the open time is snapped to its interval boundary
       - intervals >= 1h: hour-aligned first, then to the sub-day slot of that
         hour of the UTC day
       - intervals < 1h: floor to a multiple of the interval length

Nothing here touches the network or the cache.
"""

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError
from core.schemas import Candle, CandleSource
from core.utils.time import interval_to_seconds, to_epoch_seconds


SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# Default index layout of array-style klines: [openTime, o, h, l, c, v, ...]
ROW_LAYOUT = (0, 1, 2, 3, 4, 5)

PRICE_FIELDS = ("open", "high", "low", "close", "volume")


def coerce_float(value: Any, field: str) -> float:
    """
    Coerce a numeric or numeric-string field to float.

    Raises:
        ValidationError: If the value is missing, non-numeric or not finite
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Missing numeric field '{field}'")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Field '{field}' is not numeric: {value!r}") from None
    if not math.isfinite(result):
        raise ValidationError(f"Field '{field}' is not finite: {value!r}")
    return result


def align_timestamp(timestamp: int, interval: str) -> int:
    """
    Snap an open time (seconds or milliseconds) to its interval boundary.

    Examples:
        >>> align_timestamp(1700000123, "1m")
        1700000100
        >>> align_timestamp(1700000123, "4h")   # 22:15 UTC -> 20:00 slot
        1699992000
    """
    interval_seconds = interval_to_seconds(interval)
    seconds = to_epoch_seconds(timestamp)

    if interval_seconds >= SECONDS_PER_HOUR:
        hour_aligned = (seconds // SECONDS_PER_HOUR) * SECONDS_PER_HOUR
        hour_of_day = (hour_aligned % SECONDS_PER_DAY) // SECONDS_PER_HOUR
        hours_per_interval = interval_seconds // SECONDS_PER_HOUR
        interval_number = hour_of_day // hours_per_interval
        day_start = (hour_aligned // SECONDS_PER_DAY) * SECONDS_PER_DAY
        return day_start + interval_number * interval_seconds

    return (seconds // interval_seconds) * interval_seconds


def normalize_candle(
    timestamp: Any,
    open_: Any,
    high: Any,
    low: Any,
    close: Any,
    volume: Any,
    interval: str,
    source: CandleSource = CandleSource.HISTORICAL
) -> Candle:
    """
    Build an aligned canonical candle from raw field values.

    Raises:
        ValidationError: On a missing/non-numeric field, a negative value or
            an unknown interval
    """
    if timestamp is None:
        raise ValidationError("Missing field 'time'")

    values = {
        name: coerce_float(raw, name)
        for name, raw in zip(PRICE_FIELDS, (open_, high, low, close, volume))
    }

    try:
        return Candle(time=align_timestamp(timestamp, interval), source=source, **values)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid candle values: {e.errors()[0].get('msg', e)}") from None


def candle_from_row(
    row: Sequence[Any],
    interval: str,
    source: CandleSource = CandleSource.HISTORICAL,
    layout: Sequence[int] = ROW_LAYOUT
) -> Candle:
    """
    Normalize an array-style kline (Binance, OKX, Bybit and MEXC REST).

    Args:
        row: Raw kline, e.g. [1700000000000, "100", "101", "99", "100.5", "12.3", ...]
        interval: Canonical interval
        source: Candle provenance
        layout: Indices of (time, open, high, low, close, volume) within the row
    """
    if not isinstance(row, (list, tuple)):
        raise ValidationError(f"Kline row must be an array, got {type(row).__name__}")
    if len(row) <= max(layout):
        raise ValidationError(f"Kline row too short ({len(row)} fields): {row!r}")
    return normalize_candle(*(row[i] for i in layout), interval=interval, source=source)


def candle_from_mapping(
    data: Mapping[str, Any],
    interval: str,
    source: CandleSource = CandleSource.REAL,
    keys: Optional[Dict[str, str]] = None
) -> Candle:
    """
    Normalize an object-style kline (Binance/MEXC/Bybit push frames).

    Args:
        data: Raw kline object
        interval: Canonical interval
        source: Candle provenance
        keys: Mapping of canonical field -> payload key. Defaults to the
            single-letter Binance layout {"time": "t", "open": "o", ...}

    Example:
        >>> candle_from_mapping({"t": 1700000000000, "o": "1", "h": "2", "l": "0.5",
        ...                      "c": "1.5", "v": "10"}, "1m").time
        1699999980
    """
    if not isinstance(data, Mapping):
        raise ValidationError(f"Kline payload must be an object, got {type(data).__name__}")
    keys = keys or {"time": "t", "open": "o", "high": "h", "low": "l", "close": "c", "volume": "v"}
    return normalize_candle(
        data.get(keys["time"]),
        data.get(keys["open"]),
        data.get(keys["high"]),
        data.get(keys["low"]),
        data.get(keys["close"]),
        data.get(keys["volume"]),
        interval=interval,
        source=source
    )


def normalize_candles(candles: Iterable[Candle], interval: str) -> List[Candle]:
    """
    Re-align already-built candles and return them ascending and unique.

    When two candles collapse onto the same aligned slot the later one in the
    input wins, matching wire order.
    """
    by_time: Dict[int, Candle] = {}
    for candle in candles:
        aligned = align_timestamp(candle.time, interval)
        if aligned != candle.time:
            candle = candle.model_copy(update={"time": aligned})
        by_time[aligned] = candle
    return [by_time[t] for t in sorted(by_time)]
