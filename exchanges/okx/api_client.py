"""
OKX REST API Client

Async client for OKX v5 public market data.

API Documentation:
    https://www.okx.com/docs-v5/en/#public-data-rest-api

Endpoints Used:
    - GET /api/v5/market/candles - Recent candles, newest first (max 300)
    - GET /api/v5/public/time    - Server time (status probe)

Every response is wrapped as {"code": "0", "msg": "", "data": [...]};
a non-zero code is an exchange error.
"""

from typing import Any, Dict, List, Optional

from core.config import settings
from core.errors import TransportError, ValidationError
from core.normalizer import candle_from_row, normalize_candles
from core.schemas import Candle, CandleSource
from exchanges.base_client import RestAPIClient


# Canonical interval -> OKX bar
OKX_INTERVALS: Dict[str, str] = {
    "1m": "1m",
    "3m": "3m",
    "5m": "5m",
    "15m": "15m",
    "30m": "30m",
    "1h": "1H",
    "2h": "2H",
    "4h": "4H",
    "6h": "6H",
    "12h": "12H",
    "1d": "1D",
}

# OKX bar -> canonical interval
OKX_BARS: Dict[str, str] = {bar: interval for interval, bar in OKX_INTERVALS.items()}


def to_okx_interval(interval: str) -> str:
    """
    Convert a canonical interval to an OKX bar.

    Raises:
        ValidationError: If OKX has no such bar
    """
    try:
        return OKX_INTERVALS[interval]
    except KeyError:
        raise ValidationError(f"okx: unsupported interval '{interval}'") from None


class OKXAPIClient(RestAPIClient):
    """
    Async HTTP client for OKX REST API.

    Example:
        >>> async with OKXAPIClient() as client:
        ...     candles = await client.get_candles("BTC-USDT", "1h", limit=100)
    """

    exchange = "okx"
    STATUS_PATH = "/api/v5/public/time"
    CANDLES_PATH = "/api/v5/market/candles"
    MAX_LIMIT = 300

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.okx_base_url, **kwargs)

    async def get_candles(
        self,
        inst_id: str,
        interval: str,
        limit: int = 300,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Candle]:
        """
        Fetch candles for an instrument (e.g., "BTC-USDT"), ascending.

        OKX pagination is inverted: `after` returns records older than the
        given ms timestamp and `before` returns records newer than it.

        OKX Response:
            {"code": "0", "data": [["1700000000000", "o", "h", "l", "c", "vol", ...], ...]}
        """
        params: Dict[str, Any] = {
            "instId": inst_id.upper(),
            "bar": to_okx_interval(interval),
            "limit": max(1, min(limit, self.MAX_LIMIT))
        }
        if end_time is not None:
            params["after"] = int(end_time) * 1000
        if start_time is not None:
            params["before"] = int(start_time) * 1000

        rows = self._unwrap(await self._get(self.CANDLES_PATH, params))
        # Newest first on the wire
        candles = [candle_from_row(row, interval, CandleSource.HISTORICAL) for row in reversed(rows)]
        self.logger.debug(f"Fetched {len(candles)} candles for {params['instId']} {interval}")
        return normalize_candles(candles, interval)

    def _unwrap(self, payload: Any) -> List[Any]:
        if not isinstance(payload, dict):
            raise ValidationError(f"okx: unexpected payload: {str(payload)[:200]}")
        if str(payload.get("code", "0")) != "0":
            raise TransportError(
                f"okx: error {payload.get('code')}: {payload.get('msg', 'unknown error')}",
                exchange=self.exchange
            )
        data = payload.get("data")
        if not isinstance(data, list):
            raise ValidationError("okx: response has no data array")
        return data
