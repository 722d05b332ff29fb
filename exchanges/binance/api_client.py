"""
Binance REST API Client

Async client for the Binance spot klines endpoint.

API Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/rest-api

Endpoints Used:
    - GET /api/v3/klines - Historical candlestick data (max 1000 per request)
    - GET /api/v3/ping   - Connectivity probe

Usage:
    async with BinanceAPIClient() as client:
        candles = await client.get_candles("BTCUSDT", "1h", limit=100)
"""

from typing import List, Optional

from core.config import settings
from core.errors import ValidationError
from core.normalizer import candle_from_row, normalize_candles
from core.schemas import Candle, CandleSource
from core.utils.time import interval_to_seconds
from exchanges.base_client import RestAPIClient


class BinanceAPIClient(RestAPIClient):
    """
    Async HTTP client for Binance spot REST API.

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     candles = await client.get_candles("BTCUSDT", "1h", limit=100)
        ...     print(f"Fetched {len(candles)} candles")
    """

    exchange = "binance"
    STATUS_PATH = "/api/v3/ping"
    KLINES_PATH = "/api/v3/klines"
    MAX_LIMIT = 1000

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.binance_base_url, **kwargs)

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical klines as canonical candles (ascending).

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            interval: Canonical interval; Binance uses the same tokens
            limit: Number of candles (capped at 1000)
            start_time: Optional lower bound, epoch seconds
            end_time: Optional upper bound, epoch seconds

        Binance Response:
            [[openTimeMs, "open", "high", "low", "close", "volume", closeTimeMs, ...], ...]
        """
        interval_to_seconds(interval)

        params = {
            "symbol": symbol.replace("-", "").upper(),
            "interval": interval,
            "limit": max(1, min(limit, self.MAX_LIMIT))
        }
        if start_time is not None:
            params["startTime"] = int(start_time) * 1000
        if end_time is not None:
            params["endTime"] = int(end_time) * 1000

        data = await self._get(self.KLINES_PATH, params)
        if not isinstance(data, list):
            raise ValidationError(f"binance: unexpected klines payload: {str(data)[:200]}")

        candles = [candle_from_row(row, interval, CandleSource.HISTORICAL) for row in data]
        self.logger.debug(f"Fetched {len(candles)} candles for {params['symbol']} {interval}")
        return normalize_candles(candles, interval)
