"""
Binance Exchange Connector

Implements ExchangeConnector for Binance spot.

Endpoints Used:
    REST:
        - GET /api/v3/klines - Historical candlestick data
        - GET /api/v3/ping   - Status probe

    WebSocket:
        - wss://stream.binance.com:9443/ws/<symbol>@kline_<interval>
          (one socket per stream)

Structure:
    exchanges/binance/
    ├── __init__.py          # This file (BinanceExchange class)
    ├── api_client.py        # REST API client with aiohttp
    └── ws_client.py         # WebSocket wire protocol
"""

from typing import List, Optional

from core.config import settings
from core.exchange_interface import ExchangeConnector, StreamProtocol
from core.logging import logger
from core.schemas import Candle
from .api_client import BinanceAPIClient
from .ws_client import BinanceStreamProtocol


class BinanceExchange(ExchangeConnector):
    """
    Binance Spot Exchange Connector

    Example:
        >>> exchange = BinanceExchange()
        >>> await exchange.initialize()
        >>> candles = await exchange.get_historical_candles("BTCUSDT", "1h", limit=100)
        >>> await exchange.shutdown()
    """

    name = "binance"
    max_request_limit = BinanceAPIClient.MAX_LIMIT

    def __init__(self):
        super().__init__()
        self.client = BinanceAPIClient(settings.binance_base_url)
        logger.debug(f"BinanceExchange created (base_url={settings.binance_base_url})")

    def create_protocol(self) -> StreamProtocol:
        return BinanceStreamProtocol(settings.binance_ws_url)

    async def get_historical_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical candles from Binance.

        Binance Endpoint:
            GET /api/v3/klines?symbol={symbol}&interval={interval}&limit={limit}
        """
        return await self._require_client().get_candles(
            self.format_symbol(symbol), interval, limit, start_time, end_time
        )

    async def check_status(self) -> bool:
        """Ping GET /api/v3/ping."""
        return await self._require_client().ping()
