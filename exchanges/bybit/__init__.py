"""
Bybit Exchange Connector

Implements ExchangeConnector for Bybit v5 spot.

Endpoints Used:
    REST:
        - GET /v5/market/kline - Historical candlestick data (category=spot)
        - GET /v5/market/time  - Status probe

    WebSocket:
        - wss://stream.bybit.com/v5/public/spot (one shared socket)
"""

from typing import List, Optional

from core.config import settings
from core.exchange_interface import ExchangeConnector, StreamProtocol
from core.logging import logger
from core.schemas import Candle
from .api_client import BybitAPIClient
from .ws_client import BybitStreamProtocol


class BybitExchange(ExchangeConnector):
    """
    Bybit Spot Exchange Connector

    Example:
        >>> exchange = BybitExchange()
        >>> await exchange.initialize()
        >>> candles = await exchange.get_historical_candles("BTCUSDT", "4h", limit=50)
    """

    name = "bybit"
    max_request_limit = BybitAPIClient.MAX_LIMIT

    def __init__(self):
        super().__init__()
        self.client = BybitAPIClient(settings.bybit_base_url)
        logger.debug(f"BybitExchange created (base_url={settings.bybit_base_url})")

    def create_protocol(self) -> StreamProtocol:
        return BybitStreamProtocol(settings.bybit_ws_url)

    async def get_historical_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical candles from Bybit.

        Bybit Endpoint:
            GET /v5/market/kline?category=spot&symbol={symbol}&interval={interval}&limit={limit}
        """
        return await self._require_client().get_candles(
            self.format_symbol(symbol), interval, limit, start_time, end_time
        )

    async def check_status(self) -> bool:
        """Probe GET /v5/market/time."""
        return await self._require_client().ping()
