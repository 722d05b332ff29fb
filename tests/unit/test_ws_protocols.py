"""
Unit Tests for the Exchange WebSocket Protocols

These tests verify, per exchange, that the stream protocol:
- Builds the right URLs and subscribe/unsubscribe frames
- Parses push frames into (symbol, interval, candle) updates tagged "real"
- Ignores control frames (acks, pongs) and rejects malformed payloads

Run with:
    pytest tests/unit/test_ws_protocols.py -v
"""

import json

import pytest

from core.errors import ValidationError
from core.schemas import CandleSource, SubscriptionKey
from exchanges.binance.ws_client import BinanceStreamProtocol, create_kline_stream
from exchanges.bybit.ws_client import BybitStreamProtocol, create_kline_topic
from exchanges.mexc.ws_client import MEXCStreamProtocol, create_kline_channel
from exchanges.okx.ws_client import OKXStreamProtocol


# ============================================
# Binance
# ============================================

class TestBinanceProtocol:
    """Tests for BinanceStreamProtocol"""

    protocol = BinanceStreamProtocol("wss://stream.binance.com:9443/ws/")
    key = SubscriptionKey("binance", "BTCUSDT", "1m")

    def test_stream_name(self):
        assert create_kline_stream("BTCUSDT", "1m") == "btcusdt@kline_1m"

    def test_one_socket_per_stream(self):
        assert self.protocol.connection_url(self.key) == "wss://stream.binance.com:9443/ws/btcusdt@kline_1m"
        assert self.protocol.connection_id(self.key) == "binance:BTCUSDT:1m:kline"
        assert self.protocol.subscribe_frames([self.key]) == []

    def test_parse_kline_push(self):
        frame = {
            "e": "kline", "E": 1700000001000, "s": "BTCUSDT",
            "k": {"t": 1700000040000, "T": 1700000099999, "s": "BTCUSDT", "i": "1m",
                  "o": "100.0", "h": "101.0", "l": "99.5", "c": "100.5", "v": "12.0", "x": False}
        }
        [update] = self.protocol.parse_message(json.dumps(frame), [self.key])

        assert update.symbol == "BTCUSDT"
        assert update.interval == "1m"
        assert update.candle.time == 1700000040
        assert update.candle.close == 100.5
        assert update.candle.source == CandleSource.REAL

    def test_parse_combined_stream_envelope(self):
        frame = {
            "stream": "ethusdt@kline_5m",
            "data": {"s": "ETHUSDT", "k": {"t": 1700000100000, "i": "5m", "o": "1", "h": "2",
                                           "l": "0.5", "c": "1.5", "v": "3"}}
        }
        [update] = self.protocol.parse_message(json.dumps(frame))
        assert update.symbol == "ETHUSDT"
        assert update.interval == "5m"

    def test_non_kline_frames_ignored(self):
        assert self.protocol.parse_message(json.dumps({"result": None, "id": 1})) == []

    def test_invalid_json_rejected(self):
        with pytest.raises(ValidationError):
            self.protocol.parse_message("{not json")


# ============================================
# OKX
# ============================================

class TestOKXProtocol:
    """Tests for OKXStreamProtocol"""

    protocol = OKXStreamProtocol("wss://ws.okx.com:8443/ws/v5/business")
    key = SubscriptionKey("okx", "BTC-USDT", "1h")

    def test_subscribe_frame(self):
        [frame] = self.protocol.subscribe_frames([self.key])
        assert json.loads(frame) == {"op": "subscribe", "args": [{"channel": "candle1H", "instId": "BTC-USDT"}]}

    def test_unsubscribe_frame(self):
        [frame] = self.protocol.unsubscribe_frames([self.key])
        assert json.loads(frame)["op"] == "unsubscribe"

    def test_parse_candle_push(self):
        frame = {
            "arg": {"channel": "candle1H", "instId": "BTC-USDT"},
            "data": [["1700000000000", "100", "102", "99", "101", "7", "700", "700", "0"]]
        }
        [update] = self.protocol.parse_message(json.dumps(frame))

        assert update.symbol == "BTC-USDT"
        assert update.interval == "1h"
        assert update.candle.time == 1699999200
        assert update.candle.volume == 7.0

    def test_pong_and_events_ignored(self):
        assert self.protocol.parse_message("pong") == []
        ack = {"event": "subscribe", "arg": {"channel": "candle1H", "instId": "BTC-USDT"}}
        assert self.protocol.parse_message(json.dumps(ack)) == []
        error = {"event": "error", "code": "60012", "msg": "Invalid request"}
        assert self.protocol.parse_message(json.dumps(error)) == []

    def test_heartbeat_is_plain_ping(self):
        assert self.protocol.heartbeat_frame() == "ping"

    def test_unsupported_interval_rejected(self):
        with pytest.raises(ValidationError):
            self.protocol.validate_key(SubscriptionKey("okx", "BTC-USDT", "7m"))


# ============================================
# Bybit
# ============================================

class TestBybitProtocol:
    """Tests for BybitStreamProtocol"""

    protocol = BybitStreamProtocol("wss://stream.bybit.com/v5/public/spot")

    def test_topic_name(self):
        assert create_kline_topic("btcusdt", "1h") == "kline.60.BTCUSDT"
        assert create_kline_topic("BTCUSDT", "1d") == "kline.D.BTCUSDT"

    def test_shared_connection_batches_subscriptions(self):
        keys = [SubscriptionKey("bybit", "BTCUSDT", "1m"), SubscriptionKey("bybit", "ETHUSDT", "15m")]
        assert self.protocol.connection_id(keys[0]) == "bybit:shared"

        [frame] = self.protocol.subscribe_frames(keys)
        assert json.loads(frame) == {"op": "subscribe", "args": ["kline.1.BTCUSDT", "kline.15.ETHUSDT"]}

    def test_parse_kline_push(self):
        frame = {
            "topic": "kline.15.ETHUSDT",
            "type": "snapshot",
            "data": [{"start": 1700000100000, "end": 1700000999999, "interval": "15",
                      "open": "2000", "high": "2010", "low": "1990", "close": "2005",
                      "volume": "55", "confirm": False}]
        }
        [update] = self.protocol.parse_message(json.dumps(frame))

        assert update.symbol == "ETHUSDT"
        assert update.interval == "15m"
        assert update.candle.time == 1700000100
        assert update.candle.close == 2005.0

    def test_control_ops_ignored(self):
        assert self.protocol.parse_message(json.dumps({"op": "subscribe", "success": True})) == []
        assert self.protocol.parse_message(json.dumps({"op": "pong", "success": True})) == []


# ============================================
# MEXC
# ============================================

class TestMEXCProtocol:
    """Tests for MEXCStreamProtocol"""

    protocol = MEXCStreamProtocol("wss://wbs.mexc.com/ws")
    key = SubscriptionKey("mexc", "BTCUSDT", "1h")

    def test_channel_name(self):
        assert create_kline_channel("btcusdt", "15m") == "spot@public.kline.v3.api@BTCUSDT@Min15"

    def test_subscribe_frame(self):
        [frame] = self.protocol.subscribe_frames([self.key])
        assert json.loads(frame) == {
            "method": "SUBSCRIPTION",
            "params": ["spot@public.kline.v3.api@BTCUSDT@Min60"]
        }

    def test_parse_nested_kline_layout(self):
        frame = {
            "c": "spot@public.kline.v3.api@BTCUSDT@Min60",
            "s": "BTCUSDT",
            "d": {"k": {"t": 1699999200, "o": "100", "h": "102", "l": "99", "c": "101", "v": "9", "i": "Min60"}},
            "t": 1700000000000
        }
        [update] = self.protocol.parse_message(json.dumps(frame))

        assert update.symbol == "BTCUSDT"
        assert update.interval == "1h"
        assert update.candle.time == 1699999200

    def test_parse_flat_layout(self):
        frame = {
            "c": "spot@public.kline.v3.api",
            "s": "ETHUSDT@1m",
            "d": {"t": 1700000040000, "o": "1", "h": "2", "l": "0.5", "c": "1.5", "v": "3"}
        }
        [update] = self.protocol.parse_message(json.dumps(frame))

        assert update.symbol == "ETHUSDT"
        assert update.interval == "1m"
        assert update.candle.time == 1700000040

    def test_unresolvable_frame_rejected(self):
        frame = {"c": "spot@public.kline.v3.api", "d": {"t": 1, "o": 1, "h": 1, "l": 1, "c": 1, "v": 1}}
        with pytest.raises(ValidationError):
            self.protocol.parse_message(json.dumps(frame))

    def test_acks_ignored(self):
        ack = {"id": 0, "code": 0, "msg": "spot@public.kline.v3.api@BTCUSDT@Min60"}
        assert self.protocol.parse_message(json.dumps(ack)) == []

    def test_unsupported_interval_rejected(self):
        with pytest.raises(ValidationError):
            self.protocol.validate_key(SubscriptionKey("mexc", "BTCUSDT", "3m"))
