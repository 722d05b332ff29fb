"""
Normalized Data Schemas

Whatever exchange a candle comes from, it is normalized into the models below
before it reaches the cache, the aggregation engine or an API consumer.

Models:
    - Candle: Immutable OHLCV bar keyed by its aligned open time (epoch seconds)
    - CandleSource: Provenance of a candle, used to settle timestamp collisions
    - SeriesKey / SubscriptionKey: Hashable identities for cache entries and live streams
    - ConnectionStatus: User-visible state of a live series
    - AggregatedCandles: Response model for the multi-source VWAP series
    - SeriesStatus: Response model for the status endpoint
"""

from enum import Enum
from typing import List, NamedTuple, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict


# ============================================
# Candle Provenance
# ============================================

class CandleSource(str, Enum):
    """
    Where a candle came from.

    On a timestamp collision the higher priority wins:
        real (live socket) > historical (REST) > mock (synthetic / gap fill)
    """

    REAL = "real"
    HISTORICAL = "historical"
    MOCK = "mock"

    @property
    def priority(self) -> int:
        return _SOURCE_PRIORITY[self]


_SOURCE_PRIORITY = {
    CandleSource.REAL: 3,
    CandleSource.HISTORICAL: 2,
    CandleSource.MOCK: 1,
}


# ============================================
# Candle Schema
# ============================================

class Candle(BaseModel):
    """
    Canonical OHLCV candle.

    Attributes:
        time: Open time, epoch seconds, aligned to the interval boundary
        open: Opening price
        high: Highest price during the interval
        low: Lowest price during the interval
        close: Closing (or latest) price
        volume: Traded volume in base asset
        source: Provenance used for dedup priority

    Notes:
        - Candles are frozen; the cache replaces them on conflict, never mutates
        - Within one series, time is strictly increasing and unique
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "time": 1704110400,
                "open": 42000.0,
                "high": 42150.5,
                "low": 41980.0,
                "close": 42100.0,
                "volume": 125.5,
                "source": "historical"
            }
        }
    )

    time: int = Field(..., ge=0, description="Aligned open time (epoch seconds)")
    open: float = Field(..., ge=0, description="Opening price")
    high: float = Field(..., ge=0, description="Highest price")
    low: float = Field(..., ge=0, description="Lowest price")
    close: float = Field(..., ge=0, description="Closing price")
    volume: float = Field(..., ge=0, description="Volume in base asset")
    source: CandleSource = Field(
        default=CandleSource.HISTORICAL,
        description="Candle provenance",
        examples=["real", "historical", "mock"]
    )

    def with_source(self, source: CandleSource) -> "Candle":
        """Return a copy tagged with a different source."""
        return self.model_copy(update={"source": source})


# ============================================
# Keys
# ============================================

class SeriesKey(NamedTuple):
    """Cache key: one candle series."""

    exchange: str
    symbol: str
    interval: str


class SubscriptionKey(NamedTuple):
    """Live stream key. Several callbacks may share one key."""

    exchange: str
    symbol: str
    interval: str
    stream: str = "kline"

    @property
    def series(self) -> SeriesKey:
        return SeriesKey(self.exchange, self.symbol, self.interval)


# ============================================
# Status
# ============================================

class ConnectionStatus(str, Enum):
    """
    State of a live series as shown to users.

        live          bound to an open socket
        connecting    subscribed, first connect attempt still pending
        reconnecting  socket dropped and is being reopened; cached data is served meanwhile
        cached        not subscribed, cache holds data
        no_data       not subscribed, nothing cached
    """

    LIVE = "live"
    CONNECTING = "connecting"
    RECONNECTING = "reconnecting"
    CACHED = "cached"
    NO_DATA = "no_data"


class SeriesStatus(BaseModel):
    """Connection and cache state of one series."""

    exchange: str
    symbol: str
    interval: str
    status: ConnectionStatus
    cached_candles: int = Field(default=0, ge=0)
    last_candle_time: Optional[int] = Field(default=None, description="Newest cached candle (epoch seconds)")
    is_fresh: bool = False

    @field_validator("exchange")
    @classmethod
    def validate_exchange(cls, v: str) -> str:
        """Ensure exchange is lowercase"""
        return v.lower()


# ============================================
# Aggregated Series
# ============================================

class AggregatedCandles(BaseModel):
    """
    Volume-weighted series built from several exchange/quote sources.

    Attributes:
        base_asset: Base asset the series describes (e.g., "BTC")
        interval: Candle interval
        candles: Ascending, gap-filled candles
        is_aggregated: True iff at least two sources contributed
        sources: "<exchange>:<symbol>" labels of the contributing sources
    """

    base_asset: str
    interval: str
    candles: List[Candle] = Field(default_factory=list)
    is_aggregated: bool = False
    sources: List[str] = Field(default_factory=list)

    @field_validator("base_asset")
    @classmethod
    def validate_base_asset(cls, v: str) -> str:
        """Ensure base asset is uppercase"""
        return v.upper()
