"""
Exchange Interface - Abstract Contracts for All Exchanges

Two contracts live here:

ExchangeConnector
    What the rest of candlehub talks to. One instance per exchange exposes
    subscribe/unsubscribe for live candles, get_historical_candles for REST
    backfill and check_status for health probes.

StreamProtocol
    The exchange-specific half of live streaming: socket URLs, subscribe and
    unsubscribe frames, heartbeat frames and push-frame parsing. The
    exchange-agnostic half (sockets, fan-out, reconnects) is the
    ConnectionMultiplexer in core/multiplexer.py.

Example:
    class OKXExchange(ExchangeConnector):
        name = "okx"

        def create_protocol(self):
            return OKXStreamProtocol(settings.okx_ws_url)

        async def get_historical_candles(self, symbol, interval, limit=500, ...):
            return await self._require_client().get_candles(symbol, interval, limit)

    exchange = manager.get_exchange("okx")
    candles = await exchange.get_historical_candles("BTCUSDT", "1h", 100)
    callback_id = await exchange.subscribe("BTCUSDT", "1m", "kline", on_candle)

Capabilities System:
    Each exchange declares which features it supports via the `capabilities`
    dict so callers can degrade gracefully.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, TYPE_CHECKING

from core.errors import ValidationError
from core.schemas import Candle, SubscriptionKey
from core.utils.time import interval_to_seconds

if TYPE_CHECKING:
    from core.multiplexer import CandleCallback, ConnectionMultiplexer


class StreamUpdate(NamedTuple):
    """One candle decoded from a push frame, with the stream it belongs to."""

    symbol: str
    interval: str
    candle: Candle
    stream: str = "kline"


# ============================================
# Stream Protocol
# ============================================

class StreamProtocol(ABC):
    """
    Exchange-specific WebSocket wire protocol.

    Class Attributes:
        exchange: Exchange identifier (lowercase)
        shared_connection: True when every stream rides one socket (Bybit,
            MEXC); False for one socket per stream (Binance, OKX)

    Subclasses must implement connection_url, subscribe_frames and
    parse_message. Frames are returned as ready-to-send strings.
    """

    exchange: str
    shared_connection: bool = False

    def __init__(self, ws_url: str):
        self.ws_url = ws_url.rstrip("/")

    def connection_id(self, key: SubscriptionKey) -> str:
        """
        Identify the physical socket a key is bound to.

        Shared-socket protocols bind every key to one connection; the others
        get one connection per (symbol, interval, stream).
        """
        if self.shared_connection:
            return f"{self.exchange}:shared"
        return f"{self.exchange}:{key.symbol}:{key.interval}:{key.stream}"

    @abstractmethod
    def connection_url(self, key: SubscriptionKey) -> str:
        """URL to open for the connection that will carry `key`."""

    @abstractmethod
    def subscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        """
        Frames that subscribe `keys` once the socket is open.

        Shared-socket protocols batch every key into a single frame.
        Protocols whose URL already selects the stream return [].
        """

    def unsubscribe_frames(self, keys: Iterable[SubscriptionKey]) -> List[str]:
        """Frames that drop `keys` from an open socket. Default: none."""
        return []

    @abstractmethod
    def parse_message(self, raw: Any, keys: Iterable[SubscriptionKey] = ()) -> List[StreamUpdate]:
        """
        Decode one inbound frame.

        Args:
            raw: Frame as received (str or bytes)
            keys: Keys currently bound to the connection, for protocols whose
                frames do not carry the symbol or interval

        Returns:
            List[StreamUpdate]: Candles in the frame; [] for acks, pongs and
                other control frames

        Raises:
            ValidationError: If a kline frame is malformed
        """

    def validate_key(self, key: SubscriptionKey) -> None:
        """
        Reject keys this exchange cannot stream.

        Raises:
            ValidationError: If the interval or stream is unsupported
        """
        if key.stream != "kline":
            raise ValidationError(f"{self.exchange}: unsupported stream '{key.stream}'")
        self.native_interval(key.interval)

    def native_interval(self, interval: str) -> str:
        """Exchange-native token for a canonical interval. Default: unchanged."""
        interval_to_seconds(interval)
        return interval

    def heartbeat_frame(self) -> Optional[str]:
        """Application-level ping, or None when protocol pings suffice."""
        return None

    @staticmethod
    def dumps(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, separators=(",", ":"))

    @staticmethod
    def loads(raw: Any) -> Any:
        """
        Decode a JSON frame.

        Raises:
            ValidationError: If the frame is not valid JSON
        """
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid JSON frame: {e}") from None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(url={self.ws_url}, shared={self.shared_connection})>"


# ============================================
# Exchange Connector
# ============================================

class ExchangeConnector(ABC):
    """
    Abstract Base Class for Exchange Connectors

    Class Attributes:
        name: Unique identifier for the exchange (lowercase)
        capabilities: Dictionary indicating which features this exchange supports
        max_request_limit: Most candles one REST request returns (None when unbounded)

    Abstract Methods (MUST be implemented by all exchanges):
        - create_protocol: Build the exchange's StreamProtocol
        - get_historical_candles: Fetch REST klines as canonical candles
        - check_status: Lightweight reachability probe

    Optional Methods (can be overridden):
        - format_symbol: Canonical symbol -> exchange-native symbol
        - initialize / shutdown: Open and close the REST session

    Notes:
        Live subscriptions go through the ConnectionMultiplexer attached by
        the ExchangeManager; the connector never owns sockets itself.
    """

    name: str

    capabilities: Dict[str, bool] = {
        "historical_candles": True,
        "live_candles": True,
        "status": True
    }

    max_request_limit: Optional[int] = None

    def __init__(self) -> None:
        self.client = None
        self.protocol: StreamProtocol = self.create_protocol()
        self.multiplexer: Optional["ConnectionMultiplexer"] = None

    # ============================================
    # Symbols
    # ============================================

    def format_symbol(self, symbol: str) -> str:
        """
        Convert a canonical symbol ("BTCUSDT") to the exchange-native form.

        Default: upper-case, hyphens removed.
        """
        return symbol.replace("-", "").upper()

    def subscription_key(self, symbol: str, interval: str, stream: str = "kline") -> SubscriptionKey:
        return SubscriptionKey(self.name, self.format_symbol(symbol), interval, stream)

    # ============================================
    # Live Streaming
    # ============================================

    @abstractmethod
    def create_protocol(self) -> StreamProtocol:
        """Build the exchange's wire protocol."""

    def attach_multiplexer(self, multiplexer: "ConnectionMultiplexer") -> None:
        self.multiplexer = multiplexer

    async def subscribe(
        self,
        symbol: str,
        interval: str,
        stream: str,
        callback: "CandleCallback"
    ) -> str:
        """
        Register a callback for live candles.

        Args:
            symbol: Trading pair in canonical or native form
            interval: Canonical interval (e.g., "1m")
            stream: Stream name (currently "kline")
            callback: Called with (SubscriptionKey, Candle); may be a coroutine function

        Returns:
            str: Opaque callback id; pass it to unsubscribe()

        Raises:
            RuntimeError: If no multiplexer is attached
            ValidationError: If the interval is not supported by the exchange
        """
        key = self.subscription_key(symbol, interval, stream)
        self.protocol.validate_key(key)
        return await self._require_multiplexer().subscribe(key, callback)

    async def unsubscribe(
        self,
        symbol: str,
        interval: str,
        stream: str = "kline",
        callback_id: Optional[str] = None
    ) -> bool:
        """
        Remove one callback, or every callback for the key when callback_id is None.

        Returns:
            bool: True if anything was removed
        """
        key = self.subscription_key(symbol, interval, stream)
        return await self._require_multiplexer().unsubscribe(key, callback_id)

    # ============================================
    # REST Methods
    # ============================================

    @abstractmethod
    async def get_historical_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical candles, ascending, tagged as source "historical".

        Args:
            symbol: Trading pair in canonical or native form
            interval: Canonical interval
            limit: Number of candles requested (capped per exchange)
            start_time: Optional lower bound (epoch seconds)
            end_time: Optional upper bound (epoch seconds)

        Raises:
            TransportError: On network failure or an exchange error response
            ValidationError: On malformed payloads or unsupported intervals
        """

    @abstractmethod
    async def check_status(self) -> bool:
        """Return True if the exchange REST API is reachable."""

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        """Open the REST session. Called by ExchangeManager.initialize_all()."""
        if self.client is not None:
            await self.client.__aenter__()

    async def shutdown(self) -> None:
        """Close live sockets and the REST session."""
        if self.multiplexer is not None:
            await self.multiplexer.close()
        if self.client is not None:
            await self.client.__aexit__(None, None, None)

    # ============================================
    # Helpers
    # ============================================

    def supports(self, feature: str) -> bool:
        """
        Check if this exchange supports a specific feature.

        Example:
            >>> if exchange.supports("live_candles"):
            ...     await exchange.subscribe("BTCUSDT", "1m", "kline", handler)
        """
        return self.capabilities.get(feature, False)

    def _require_client(self):
        if self.client is None or getattr(self.client, "session", None) is None:
            raise RuntimeError(f"{self.name} connector not initialized. Call initialize() first.")
        return self.client

    def _require_multiplexer(self) -> "ConnectionMultiplexer":
        if self.multiplexer is None:
            raise RuntimeError(f"{self.name} connector has no multiplexer attached")
        return self.multiplexer

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
