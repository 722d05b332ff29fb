"""
OKX Exchange Connector

Implements ExchangeConnector for OKX spot.

OKX instruments are hyphenated ("BTC-USDT"); format_symbol converts the
canonical "BTCUSDT" form by inserting a hyphen before the quote asset.

Endpoints Used:
    REST:
        - GET /api/v5/market/candles - Historical candlestick data
        - GET /api/v5/public/time    - Status probe

    WebSocket:
        - wss://ws.okx.com:8443/ws/v5/public (one socket per candle channel)
"""

from typing import List, Optional

from core.config import settings
from core.exchange_interface import ExchangeConnector, StreamProtocol
from core.logging import logger
from core.schemas import Candle
from .api_client import OKXAPIClient
from .ws_client import OKXStreamProtocol


# Checked in order, so USDT/USDC are tried before USD
OKX_QUOTES = ("USDT", "USDC", "BTC", "ETH", "USD")


class OKXExchange(ExchangeConnector):
    """
    OKX Spot Exchange Connector

    Example:
        >>> exchange = OKXExchange()
        >>> exchange.format_symbol("BTCUSDT")
        'BTC-USDT'
    """

    name = "okx"
    max_request_limit = OKXAPIClient.MAX_LIMIT

    def __init__(self):
        super().__init__()
        self.client = OKXAPIClient(settings.okx_base_url)
        logger.debug(f"OKXExchange created (base_url={settings.okx_base_url})")

    def create_protocol(self) -> StreamProtocol:
        return OKXStreamProtocol(settings.okx_ws_url)

    def format_symbol(self, symbol: str) -> str:
        """
        Insert a hyphen before a known quote asset.

        Examples:
            >>> OKXExchange().format_symbol("ethusdc")
            'ETH-USDC'
            >>> OKXExchange().format_symbol("BTC-USDT")
            'BTC-USDT'
        """
        sym = symbol.upper()
        if "-" in sym:
            return sym
        for quote in OKX_QUOTES:
            if sym.endswith(quote) and len(sym) > len(quote):
                return f"{sym[:-len(quote)]}-{quote}"
        return sym

    async def get_historical_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 300,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical candles from OKX (at most 300 per request).

        OKX Endpoint:
            GET /api/v5/market/candles?instId={instId}&bar={bar}&limit={limit}
        """
        return await self._require_client().get_candles(
            self.format_symbol(symbol), interval, limit, start_time, end_time
        )

    async def check_status(self) -> bool:
        """Probe GET /api/v5/public/time."""
        return await self._require_client().ping()
