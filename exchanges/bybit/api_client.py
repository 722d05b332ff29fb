"""
Bybit REST API Client

Async client for Bybit v5 spot market data.

API Documentation:
    https://bybit-exchange.github.io/docs/v5/market/kline

Endpoints Used:
    - GET /v5/market/kline - Historical candles, newest first (max 1000)
    - GET /v5/market/time  - Server time (status probe)

Responses are wrapped as {"retCode": 0, "retMsg": "OK", "result": {...}};
a non-zero retCode is an exchange error.
"""

from typing import Any, Dict, List, Optional

from core.config import settings
from core.errors import TransportError, ValidationError
from core.normalizer import candle_from_row, normalize_candles
from core.schemas import Candle, CandleSource
from exchanges.base_client import RestAPIClient


# Canonical interval -> Bybit interval
BYBIT_INTERVALS: Dict[str, str] = {
    "1m": "1",
    "3m": "3",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "1h": "60",
    "2h": "120",
    "4h": "240",
    "6h": "360",
    "12h": "720",
    "1d": "D",
}

BYBIT_INTERVALS_REVERSE: Dict[str, str] = {v: k for k, v in BYBIT_INTERVALS.items()}


def to_bybit_interval(interval: str) -> str:
    """
    Convert a canonical interval to Bybit format ("1h" -> "60", "1d" -> "D").

    Raises:
        ValidationError: If Bybit has no such interval
    """
    try:
        return BYBIT_INTERVALS[interval]
    except KeyError:
        raise ValidationError(f"bybit: unsupported interval '{interval}'") from None


class BybitAPIClient(RestAPIClient):
    """
    Async HTTP client for Bybit v5 REST API.

    Example:
        >>> async with BybitAPIClient() as client:
        ...     candles = await client.get_candles("BTCUSDT", "15m", limit=200)
    """

    exchange = "bybit"
    STATUS_PATH = "/v5/market/time"
    KLINE_PATH = "/v5/market/kline"
    MAX_LIMIT = 1000
    CATEGORY = "spot"

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.bybit_base_url, **kwargs)

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

        Bybit Response:
            {"retCode": 0, "result": {"list": [["startMs", "o", "h", "l", "c", "volume", "turnover"], ...]}}
        """
        params: Dict[str, Any] = {
            "category": self.CATEGORY,
            "symbol": symbol.upper(),
            "interval": to_bybit_interval(interval),
            "limit": max(1, min(limit, self.MAX_LIMIT))
        }
        if start_time is not None:
            params["start"] = int(start_time) * 1000
        if end_time is not None:
            params["end"] = int(end_time) * 1000

        payload = await self._get(self.KLINE_PATH, params)
        rows = self._unwrap(payload).get("list")
        if not isinstance(rows, list):
            raise ValidationError("bybit: response has no result.list array")

        # Newest first on the wire
        candles = [candle_from_row(row, interval, CandleSource.HISTORICAL) for row in reversed(rows)]
        self.logger.debug(f"Fetched {len(candles)} candles for {params['symbol']} {interval}")
        return normalize_candles(candles, interval)

    def _unwrap(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError(f"bybit: unexpected payload: {str(payload)[:200]}")
        if payload.get("retCode", 0) != 0:
            raise TransportError(
                f"bybit: error {payload.get('retCode')}: {payload.get('retMsg', 'unknown error')}",
                exchange=self.exchange
            )
        result = payload.get("result")
        if not isinstance(result, dict):
            raise ValidationError("bybit: response has no result object")
        return result
