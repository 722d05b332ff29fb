"""
Synthetic Exchange (test double)

A random-walk exchange for demos and tests. It is registered only when
ENABLE_SYNTHETIC_EXCHANGE is true and is never used as a fallback for a real
exchange. Every candle it produces is tagged source "mock", so real or
historical data always wins over it in the cache.

Live streams run over an in-process socket that speaks a tiny JSON protocol,
so the regular ConnectionMultiplexer code path is exercised end to end.
"""

import asyncio
import json
import random
from typing import Any, Dict, Iterable, List, Optional

from core.exchange_interface import ExchangeConnector, StreamProtocol, StreamUpdate
from core.normalizer import align_timestamp, candle_from_mapping
from core.schemas import Candle, CandleSource, SubscriptionKey
from core.utils.time import current_utc_timestamp, interval_to_seconds


BASE_PRICES = {"BTC": 65000.0, "ETH": 3500.0, "SOL": 150.0, "BNB": 450.0}
DEFAULT_BASE_PRICE = 100.0


def volatility_for(interval: str) -> float:
    seconds = interval_to_seconds(interval)
    if seconds <= 300:
        return 0.001
    if seconds <= 1800:
        return 0.002
    if seconds <= 3600:
        return 0.003
    return 0.005


def base_price_for(symbol: str) -> float:
    for asset, price in BASE_PRICES.items():
        if asset in symbol.upper():
            return price
    return DEFAULT_BASE_PRICE


class RandomWalkGenerator:
    """
    Produces continuous random-walk candles per (symbol, interval).

    Args:
        seed: Optional RNG seed for reproducible series
    """

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)
        self._last_close: Dict[tuple, float] = {}

    def next_candle(self, symbol: str, interval: str, time: int) -> Candle:
        key = (symbol.upper(), interval)
        base = self._last_close.get(key, base_price_for(symbol))
        vol = volatility_for(interval)

        open_ = base * (1 + (self._rng.random() - 0.5) * vol)
        close = open_ * (1 + (self._rng.random() - 0.5) * (vol / 2))
        high = max(open_, close) * (1 + self._rng.random() * (vol / 5))
        low = min(open_, close) * (1 - self._rng.random() * (vol / 5))
        volume = self._rng.random() * 100 + 10

        self._last_close[key] = close
        return Candle(
            time=align_timestamp(time, interval),
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=volume,
            source=CandleSource.MOCK
        )

    def history(self, symbol: str, interval: str, limit: int, end_time: Optional[int] = None) -> List[Candle]:
        """`limit` consecutive candles ending at the slot containing end_time (default now)."""
        step = interval_to_seconds(interval)
        last_slot = align_timestamp(end_time or current_utc_timestamp(), interval)
        first_slot = last_slot - (limit - 1) * step
        return [self.next_candle(symbol, interval, first_slot + i * step) for i in range(limit)]


# ============================================
# In-process Socket
# ============================================

class SyntheticSocket:
    """
    Minimal stand-in for a websockets connection: send(), close() and async
    iteration yielding one JSON kline frame per tick.
    """

    def __init__(self, url: str, generator: RandomWalkGenerator, tick_seconds: float):
        # url: synthetic://local/<SYMBOL>/<interval>
        parts = url.rstrip("/").split("/")
        self.symbol, self.interval = parts[-2], parts[-1]
        self._generator = generator
        self._tick = tick_seconds
        self._closed = False
        self.sent: List[str] = []

    async def send(self, frame: str) -> None:
        self.sent.append(frame)

    async def close(self) -> None:
        self._closed = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        await asyncio.sleep(self._tick)
        if self._closed:
            raise StopAsyncIteration
        candle = self._generator.next_candle(self.symbol, self.interval, current_utc_timestamp())
        return json.dumps({
            "symbol": self.symbol,
            "interval": self.interval,
            "k": {
                "t": candle.time,
                "o": candle.open,
                "h": candle.high,
                "l": candle.low,
                "c": candle.close,
                "v": candle.volume,
            },
        })


class SyntheticStreamProtocol(StreamProtocol):
    """One in-process socket per stream; frames carry symbol and interval."""

    exchange = "synthetic"
    shared_connection = False

    def connection_url(self, key: SubscriptionKey) -> str:
        return f"{self.ws_url}/{key.symbol}/{key.interval}"

    def subscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        return []

    def parse_message(self, raw: Any, keys: Iterable[SubscriptionKey] = ()) -> List[StreamUpdate]:
        data = self.loads(raw)
        if not isinstance(data, dict) or "k" not in data:
            return []
        interval = data.get("interval", "")
        candle = candle_from_mapping(data["k"], interval, CandleSource.MOCK)
        return [StreamUpdate(str(data.get("symbol", "")).upper(), interval, candle)]


# ============================================
# Connector
# ============================================

class SyntheticExchange(ExchangeConnector):
    """
    Random-walk exchange connector.

    Example:
        >>> exchange = SyntheticExchange(seed=42)
        >>> candles = await exchange.get_historical_candles("BTCUSDT", "1m", limit=10)
        >>> all(c.source == "mock" for c in candles)
        True
    """

    name = "synthetic"

    capabilities = {
        "historical_candles": True,
        "live_candles": True,
        "status": True
    }

    def __init__(self, seed: Optional[int] = None, tick_seconds: float = 1.0):
        self.generator = RandomWalkGenerator(seed)
        self.tick_seconds = tick_seconds
        super().__init__()

    def create_protocol(self) -> StreamProtocol:
        return SyntheticStreamProtocol("synthetic://local")

    async def connect(self, url: str) -> SyntheticSocket:
        """Socket factory handed to the ConnectionMultiplexer."""
        return SyntheticSocket(url, self.generator, self.tick_seconds)

    async def get_historical_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        candles = self.generator.history(self.format_symbol(symbol), interval, max(1, limit), end_time)
        if start_time is not None:
            candles = [c for c in candles if c.time >= start_time]
        return candles

    async def check_status(self) -> bool:
        return True
