"""
MEXC WebSocket Protocol

All MEXC spot streams share a single socket. Channels are added and removed
with SUBSCRIPTION / UNSUBSCRIPTION frames; after a reconnect every bound
channel is resubscribed in one batched frame.

Subscribe:
    {"method": "SUBSCRIPTION", "params": ["spot@public.kline.v3.api@BTCUSDT@Min1"]}

Push frame (both layouts are accepted):
    {"c": "spot@public.kline.v3.api@BTCUSDT@Min1", "s": "BTCUSDT", "t": ...,
     "d": {"k": {"t": 1700000000, "o": ..., "h": ..., "l": ..., "c": ..., "v": ..., "i": "Min1"}}}

    {"c": "spot@public.kline.v3.api", "s": "BTCUSDT@1m",
     "d": {"t": 1700000000000, "o": ..., "h": ..., "l": ..., "c": ..., "v": ...}}

Control frames: {"id": 0, "code": 0, "msg": "..."} acks and {"msg": "PONG"}.
"""

from typing import Any, Dict, Iterable, List, Optional

from core.errors import ValidationError
from core.exchange_interface import StreamProtocol, StreamUpdate
from core.normalizer import candle_from_mapping
from core.schemas import CandleSource, SubscriptionKey


KLINE_CHANNEL = "spot@public.kline.v3.api"

# Canonical interval -> MEXC stream token
MEXC_WS_INTERVALS: Dict[str, str] = {
    "1m": "Min1",
    "5m": "Min5",
    "15m": "Min15",
    "30m": "Min30",
    "1h": "Min60",
    "4h": "Hour4",
    "1d": "Day1",
}

# Stream token (or canonical token) -> canonical interval
MEXC_WS_INTERVALS_REVERSE: Dict[str, str] = {
    **{interval: interval for interval in MEXC_WS_INTERVALS},
    **{token: interval for interval, token in MEXC_WS_INTERVALS.items()},
}


def to_mexc_ws_interval(interval: str) -> str:
    """
    Convert a canonical interval to a MEXC stream token ("1h" -> "Min60").

    Raises:
        ValidationError: If MEXC has no such stream interval
    """
    try:
        return MEXC_WS_INTERVALS[interval]
    except KeyError:
        raise ValidationError(f"mexc: unsupported interval '{interval}'") from None


def create_kline_channel(symbol: str, interval: str) -> str:
    """
    Example:
        >>> create_kline_channel("btcusdt", "15m")
        'spot@public.kline.v3.api@BTCUSDT@Min15'
    """
    return f"{KLINE_CHANNEL}@{symbol.upper()}@{to_mexc_ws_interval(interval)}"


class MEXCStreamProtocol(StreamProtocol):
    """Single shared socket; channels multiplexed with SUBSCRIPTION frames."""

    exchange = "mexc"
    shared_connection = True

    def connection_url(self, key: SubscriptionKey) -> str:
        return self.ws_url

    def native_interval(self, interval: str) -> str:
        return to_mexc_ws_interval(interval)

    def subscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        params = [create_kline_channel(k.symbol, k.interval) for k in keys]
        return [self.dumps({"method": "SUBSCRIPTION", "params": params})] if params else []

    def unsubscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        params = [create_kline_channel(k.symbol, k.interval) for k in keys]
        return [self.dumps({"method": "UNSUBSCRIPTION", "params": params})] if params else []

    def heartbeat_frame(self) -> Optional[str]:
        return self.dumps({"method": "PING"})

    def parse_message(self, raw: Any, keys: Iterable[SubscriptionKey] = ()) -> List[StreamUpdate]:
        data = self.loads(raw)
        if not isinstance(data, dict):
            return []

        channel = str(data.get("c", ""))
        if not channel.startswith(KLINE_CHANNEL):
            return []

        payload = data.get("d")
        if not isinstance(payload, dict):
            raise ValidationError("mexc: kline frame without 'd' object")
        kline = payload.get("k") if isinstance(payload.get("k"), dict) else payload

        # Symbol and interval may sit in the channel, in "s" or in the kline itself
        channel_parts = channel.split("@")
        symbol_parts = str(data.get("s", "")).split("@")

        symbol = symbol_parts[0] or (channel_parts[2] if len(channel_parts) > 2 else "")
        token = (
            (channel_parts[3] if len(channel_parts) > 3 else None)
            or (symbol_parts[1] if len(symbol_parts) > 1 else None)
            or kline.get("i")
        )
        interval = MEXC_WS_INTERVALS_REVERSE.get(str(token))
        if not symbol or interval is None:
            raise ValidationError(f"mexc: cannot resolve symbol/interval from frame: {channel}")

        candle = candle_from_mapping(kline, interval, CandleSource.REAL)
        return [StreamUpdate(symbol.upper(), interval, candle)]
