"""
Time Utilities

Exchanges disagree on timestamp units:
- Binance, OKX, Bybit, MEXC: milliseconds since epoch (e.g., 1704110400000)
- Candles inside candlehub: whole seconds since epoch (e.g., 1704110400)

The helpers here convert between the two and translate interval strings
("1m", "4h", "1d") into seconds.
"""

import time
from datetime import datetime, timezone
from typing import Dict, Union

from core.errors import ValidationError


# Timestamps above this are treated as milliseconds (1e12 ms = Sept 2001,
# 1e12 s = year 33658)
MILLISECONDS_THRESHOLD = 1e12

INTERVAL_SECONDS: Dict[str, int] = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "6h": 21600,
    "12h": 43200,
    "1d": 86400,
}


def interval_to_seconds(interval: str) -> int:
    """
    Translate a canonical interval string into its length in seconds.

    Args:
        interval: Canonical interval ("1m", "5m", "1h", "1d", ...)

    Returns:
        int: Interval length in seconds

    Raises:
        ValidationError: If the interval is not recognised

    Examples:
        >>> interval_to_seconds("15m")
        900
        >>> interval_to_seconds("1d")
        86400
    """
    try:
        return INTERVAL_SECONDS[interval]
    except (KeyError, TypeError):
        raise ValidationError(
            f"Unknown interval: '{interval}'. "
            f"Must be one of: {', '.join(INTERVAL_SECONDS)}"
        ) from None


def to_epoch_seconds(timestamp: Union[int, float, str]) -> int:
    """
    Convert a timestamp in seconds or milliseconds to whole epoch seconds.

    Millisecond values are reduced by integer division, so sub-second
    precision is dropped rather than rounded.

    Raises:
        ValidationError: If the value is not numeric or is negative

    Examples:
        >>> to_epoch_seconds(1700000000000)
        1700000000
        >>> to_epoch_seconds("1700000000999")
        1700000000
        >>> to_epoch_seconds(1700000000)
        1700000000
    """
    try:
        value = int(float(timestamp))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid timestamp: {timestamp!r}") from None

    if value < 0:
        raise ValidationError(f"Timestamp cannot be negative: {timestamp}")

    if value > MILLISECONDS_THRESHOLD:
        value //= 1000
    return value


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to a timezone-aware UTC datetime.

    Raises:
        ValueError: If timestamp is negative or invalid

    Example:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > MILLISECONDS_THRESHOLD:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def to_iso(timestamp: int) -> str:
    """Render epoch seconds as an ISO-8601 UTC string (used in log lines)."""
    return to_utc_datetime(timestamp).isoformat()


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """
    Get current UTC timestamp.

    Examples:
        >>> current_utc_timestamp()
        1704110400
        >>> current_utc_timestamp(milliseconds=True)
        1704110400000
    """
    now = time.time()
    return int(now * 1000) if milliseconds else int(now)
