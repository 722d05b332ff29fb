"""
Binance WebSocket Protocol

Binance selects the stream through the URL, so every (symbol, interval)
gets its own socket and no subscribe frame is sent.

Stream URL:
    wss://stream.binance.com:9443/ws/<symbol lower>@kline_<interval>

Push frame:
    {"e": "kline", "E": 1700000001000, "s": "BTCUSDT",
     "k": {"t": 1700000000000, "i": "1m", "o": "...", "h": "...", "l": "...",
           "c": "...", "v": "...", "x": false, ...}}

Combined-stream frames ({"stream": ..., "data": {...}}) are unwrapped too.
"""

from typing import Any, Iterable, List

from core.exchange_interface import StreamProtocol, StreamUpdate
from core.normalizer import candle_from_mapping
from core.schemas import CandleSource, SubscriptionKey


def create_kline_stream(symbol: str, interval: str) -> str:
    """
    Build a Binance kline stream name.

    Example:
        >>> create_kline_stream("BTCUSDT", "1m")
        'btcusdt@kline_1m'
    """
    return f"{symbol.lower()}@kline_{interval}"


class BinanceStreamProtocol(StreamProtocol):
    """One socket per kline stream; frames carry symbol and interval."""

    exchange = "binance"
    shared_connection = False

    def connection_url(self, key: SubscriptionKey) -> str:
        return f"{self.ws_url}/{create_kline_stream(key.symbol, key.interval)}"

    def subscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        return []

    def parse_message(self, raw: Any, keys: Iterable[SubscriptionKey] = ()) -> List[StreamUpdate]:
        data = self.loads(raw)
        if isinstance(data, dict) and "stream" in data and isinstance(data.get("data"), dict):
            data = data["data"]

        if not isinstance(data, dict) or "k" not in data:
            return []

        kline = data["k"]
        if not isinstance(kline, dict):
            return []

        bound = list(keys)
        symbol = kline.get("s") or data.get("s") or (bound[0].symbol if bound else "")
        interval = kline.get("i") or (bound[0].interval if bound else "")

        candle = candle_from_mapping(kline, interval, CandleSource.REAL)
        return [StreamUpdate(symbol.upper(), interval, candle)]
