"""
OKX WebSocket Protocol

OKX public channels are selected with a subscribe frame after connecting.
Each (instrument, bar) stream gets its own socket, matching how streams are
reconnected individually.

Subscribe:
    {"op": "subscribe", "args": [{"channel": "candle1m", "instId": "BTC-USDT"}]}

Push frame:
    {"arg": {"channel": "candle1m", "instId": "BTC-USDT"},
     "data": [["1700000000000", "o", "h", "l", "c", "vol", ...]]}

Control frames: {"event": "subscribe" | "unsubscribe" | "error", ...} and the
literal "pong" reply to our "ping" heartbeat.
"""

from typing import Any, Iterable, List, Optional

from core.exchange_interface import StreamProtocol, StreamUpdate
from core.logging import get_logger
from core.normalizer import candle_from_row
from core.schemas import CandleSource, SubscriptionKey
from .api_client import OKX_BARS, to_okx_interval


CANDLE_CHANNEL_PREFIX = "candle"

logger = get_logger(__name__)


class OKXStreamProtocol(StreamProtocol):
    """One socket per candle channel, subscribed via JSON op frames."""

    exchange = "okx"
    shared_connection = False

    def connection_url(self, key: SubscriptionKey) -> str:
        return self.ws_url

    def native_interval(self, interval: str) -> str:
        return to_okx_interval(interval)

    def _args(self, keys: Iterable[SubscriptionKey]) -> List[dict]:
        return [
            {"channel": f"{CANDLE_CHANNEL_PREFIX}{to_okx_interval(k.interval)}", "instId": k.symbol}
            for k in keys
        ]

    def subscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        args = self._args(keys)
        return [self.dumps({"op": "subscribe", "args": args})] if args else []

    def unsubscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        args = self._args(keys)
        return [self.dumps({"op": "unsubscribe", "args": args})] if args else []

    def heartbeat_frame(self) -> Optional[str]:
        return "ping"

    def parse_message(self, raw: Any, keys: Iterable[SubscriptionKey] = ()) -> List[StreamUpdate]:
        if raw in ("pong", b"pong"):
            return []

        data = self.loads(raw)
        if not isinstance(data, dict):
            return []

        if "event" in data:
            if data["event"] == "error":
                logger.warning(f"okx: stream error {data.get('code')}: {data.get('msg')}")
            return []

        arg = data.get("arg") or {}
        channel = str(arg.get("channel", ""))
        if not channel.startswith(CANDLE_CHANNEL_PREFIX):
            return []

        interval = OKX_BARS.get(channel[len(CANDLE_CHANNEL_PREFIX):])
        if interval is None:
            return []

        symbol = str(arg.get("instId", "")).upper()
        return [
            StreamUpdate(symbol, interval, candle_from_row(row, interval, CandleSource.REAL))
            for row in data.get("data") or []
        ]
