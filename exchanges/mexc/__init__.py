"""
MEXC Exchange Connector

Implements ExchangeConnector for MEXC spot.

Endpoints Used:
    REST:
        - GET /api/v3/klines - Historical candlestick data
        - GET /api/v3/ping   - Status probe

    WebSocket:
        - wss://wbs.mexc.com/ws (one shared socket)

Notes:
    MEXC offers fewer intervals than the other venues (no 3m, 2h, 6h, 12h);
    requesting one raises ValidationError.
"""

from typing import List, Optional

from core.config import settings
from core.exchange_interface import ExchangeConnector, StreamProtocol
from core.logging import logger
from core.schemas import Candle
from .api_client import MEXCAPIClient
from .ws_client import MEXCStreamProtocol


class MEXCExchange(ExchangeConnector):
    """
    MEXC Spot Exchange Connector

    Example:
        >>> exchange = MEXCExchange()
        >>> await exchange.initialize()
        >>> ok = await exchange.check_status()
    """

    name = "mexc"
    max_request_limit = MEXCAPIClient.MAX_LIMIT

    def __init__(self):
        super().__init__()
        self.client = MEXCAPIClient(settings.mexc_base_url)
        logger.debug(f"MEXCExchange created (base_url={settings.mexc_base_url})")

    def create_protocol(self) -> StreamProtocol:
        return MEXCStreamProtocol(settings.mexc_ws_url)

    async def get_historical_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical candles from MEXC.

        MEXC Endpoint:
            GET /api/v3/klines?symbol={symbol}&interval={interval}&limit={limit}
        """
        return await self._require_client().get_candles(
            self.format_symbol(symbol), interval, limit, start_time, end_time
        )

    async def check_status(self) -> bool:
        """Ping GET /api/v3/ping."""
        return await self._require_client().ping()
