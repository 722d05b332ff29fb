"""
MEXC REST API Client

Async client for MEXC spot v3 market data. The klines endpoint mirrors
Binance's array layout but uses its own interval tokens ("60m" for one hour).

API Documentation:
    https://mexcdevelop.github.io/apidocs/spot_v3_en/#kline-candlestick-data

Endpoints Used:
    - GET /api/v3/klines - Historical candles, oldest first (max 1000)
    - GET /api/v3/ping   - Status probe
"""

from typing import Any, Dict, List, Optional

from core.config import settings
from core.errors import ValidationError
from core.normalizer import candle_from_row, normalize_candles
from core.schemas import Candle, CandleSource
from exchanges.base_client import RestAPIClient


# Canonical interval -> MEXC REST interval
MEXC_REST_INTERVALS: Dict[str, str] = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "30m": "30m",
    "1h": "60m",
    "4h": "4h",
    "1d": "1d",
}


def to_mexc_rest_interval(interval: str) -> str:
    """
    Convert a canonical interval to MEXC REST format.

    Raises:
        ValidationError: If MEXC has no such interval
    """
    try:
        return MEXC_REST_INTERVALS[interval]
    except KeyError:
        raise ValidationError(f"mexc: unsupported interval '{interval}'") from None


class MEXCAPIClient(RestAPIClient):
    """
    Async HTTP client for MEXC spot REST API.

    Example:
        >>> async with MEXCAPIClient() as client:
        ...     candles = await client.get_candles("BTCUSDT", "1h", limit=100)
    """

    exchange = "mexc"
    STATUS_PATH = "/api/v3/ping"
    KLINES_PATH = "/api/v3/klines"
    MAX_LIMIT = 1000

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.mexc_base_url, **kwargs)

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch historical candles, ascending.

        MEXC Response:
            [[openTimeMs, "open", "high", "low", "close", "volume", closeTimeMs, "quoteVolume"], ...]
        """
        params: Dict[str, Any] = {
            "symbol": symbol.upper(),
            "interval": to_mexc_rest_interval(interval),
            "limit": max(1, min(limit, self.MAX_LIMIT))
        }
        if start_time is not None:
            params["startTime"] = int(start_time) * 1000
        if end_time is not None:
            params["endTime"] = int(end_time) * 1000

        data = await self._get(self.KLINES_PATH, params)
        if not isinstance(data, list):
            raise ValidationError(f"mexc: unexpected klines payload: {str(data)[:200]}")

        candles = [candle_from_row(row, interval, CandleSource.HISTORICAL) for row in data]
        self.logger.debug(f"Fetched {len(candles)} candles for {params['symbol']} {interval}")
        return normalize_candles(candles, interval)
