"""
Bybit WebSocket Protocol

All Bybit spot streams share a single socket. Topics are added and removed
with op frames; after a reconnect every bound topic is resubscribed in one
batched frame.

WebSocket Documentation:
    https://bybit-exchange.github.io/docs/v5/websocket/public/kline

Subscribe:
    {"op": "subscribe", "args": ["kline.1.BTCUSDT", "kline.60.ETHUSDT"]}

Push frame:
    {"topic": "kline.1.BTCUSDT", "type": "snapshot", "ts": 1700000001000,
     "data": [{"start": 1700000000000, "end": ..., "interval": "1",
               "open": "...", "high": "...", "low": "...", "close": "...",
               "volume": "...", "confirm": false}]}
"""

from typing import Any, Iterable, List, Optional

from core.exchange_interface import StreamProtocol, StreamUpdate
from core.logging import get_logger
from core.normalizer import candle_from_mapping
from core.schemas import CandleSource, SubscriptionKey
from .api_client import BYBIT_INTERVALS_REVERSE, to_bybit_interval


BYBIT_KLINE_KEYS = {
    "time": "start",
    "open": "open",
    "high": "high",
    "low": "low",
    "close": "close",
    "volume": "volume",
}

CONTROL_OPS = {"subscribe", "unsubscribe", "ping", "pong"}

logger = get_logger(__name__)


def create_kline_topic(symbol: str, interval: str) -> str:
    """
    Build a Bybit kline topic.

    Example:
        >>> create_kline_topic("btcusdt", "1h")
        'kline.60.BTCUSDT'
    """
    return f"kline.{to_bybit_interval(interval)}.{symbol.upper()}"


class BybitStreamProtocol(StreamProtocol):
    """Single shared socket; topics multiplexed with op frames."""

    exchange = "bybit"
    shared_connection = True

    def connection_url(self, key: SubscriptionKey) -> str:
        return self.ws_url

    def native_interval(self, interval: str) -> str:
        return to_bybit_interval(interval)

    def subscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        topics = [create_kline_topic(k.symbol, k.interval) for k in keys]
        return [self.dumps({"op": "subscribe", "args": topics})] if topics else []

    def unsubscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        topics = [create_kline_topic(k.symbol, k.interval) for k in keys]
        return [self.dumps({"op": "unsubscribe", "args": topics})] if topics else []

    def heartbeat_frame(self) -> Optional[str]:
        return self.dumps({"op": "ping"})

    def parse_message(self, raw: Any, keys: Iterable[SubscriptionKey] = ()) -> List[StreamUpdate]:
        data = self.loads(raw)
        if not isinstance(data, dict):
            return []

        if data.get("op") in CONTROL_OPS:
            if data.get("success") is False:
                logger.warning(f"bybit: {data.get('op')} rejected: {data.get('ret_msg')}")
            return []

        topic = str(data.get("topic", ""))
        parts = topic.split(".")
        if len(parts) != 3 or parts[0] != "kline":
            return []

        interval = BYBIT_INTERVALS_REVERSE.get(parts[1])
        if interval is None:
            return []

        symbol = parts[2].upper()
        return [
            StreamUpdate(symbol, interval, candle_from_mapping(item, interval, CandleSource.REAL, BYBIT_KLINE_KEYS))
            for item in data.get("data") or []
        ]
