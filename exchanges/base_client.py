"""
Shared REST Client

Base class for the per-exchange aiohttp clients. It handles:
- Session lifecycle through `async with`
- GET requests with retry logic
- Rate limit handling (429, 418, 503) with linear backoff
- Conversion of every final failure into TransportError

Subclasses set `exchange`, `STATUS_PATH` and implement the candle endpoint.

Usage:
    async with OKXAPIClient() as client:
        candles = await client.get_candles("BTC-USDT", "1h", limit=100)
"""

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp

from core.config import settings
from core.errors import TransportError
from core.logging import get_logger, log_api_request, log_api_response


RETRYABLE_STATUSES = (429, 418, 503)


class RestAPIClient:
    """
    Async HTTP client with retries.

    Attributes:
        exchange: Exchange identifier used in logs and errors
        base_url: REST base URL
        session: aiohttp ClientSession (created by __aenter__)
        max_attempts: Attempts before giving up
        timeout: Per-request timeout in seconds
    """

    exchange = "exchange"
    STATUS_PATH = "/"

    def __init__(
        self,
        base_url: str,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts or settings.rest_max_attempts
        self.timeout = timeout or settings.request_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(f"exchanges.{self.exchange}.api_client")

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.logger.debug(f"{self.__class__.__name__} session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug(f"{self.__class__.__name__} session closed")

    # ============================================
    # HTTP Request Handler with Retry Logic
    # ============================================

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET `path` and return the decoded JSON body.

        Retry policy:
            - 429 / 418 / 503: wait 1.5s * (attempt + 1) and retry
            - timeout or client error: wait 1.0s * (attempt + 1) and retry
            - any other HTTP status: stop retrying

        Raises:
            RuntimeError: If called outside `async with`
            TransportError: If every attempt failed
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        url = f"{self.base_url}{path}"
        log_api_request(self.exchange, path, params)
        last_error = "no attempt made"

        for attempt in range(self.max_attempts):
            started = time.monotonic()
            try:
                async with self.session.get(
                    url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as resp:
                    log_api_response(self.exchange, path, resp.status, time.monotonic() - started)

                    if resp.status == 200:
                        return await resp.json(content_type=None)

                    if resp.status in RETRYABLE_STATUSES:
                        delay = 1.5 * (attempt + 1)
                        last_error = f"HTTP {resp.status}"
                        self.logger.warning(
                            f"Rate limited (HTTP {resp.status}) on {path}. "
                            f"Retrying in {delay:.1f}s... (attempt {attempt + 1}/{self.max_attempts})"
                        )
                        await asyncio.sleep(delay)
                        continue

                    text = await resp.text()
                    last_error = f"HTTP {resp.status}: {text[:200]}"
                    self.logger.error(f"HTTP {resp.status} on {path}: {text[:200]}")
                    break

            except asyncio.TimeoutError:
                last_error = "timeout"
                self.logger.error(f"Timeout on {path} (attempt {attempt + 1}/{self.max_attempts})")
                await asyncio.sleep(1.0 * (attempt + 1))

            except aiohttp.ClientError as e:
                last_error = str(e)
                self.logger.error(f"Request failed on {path}: {e} (attempt {attempt + 1}/{self.max_attempts})")
                await asyncio.sleep(1.0 * (attempt + 1))

        raise TransportError(f"{self.exchange}: GET {path} failed ({last_error})", exchange=self.exchange)

    # ============================================
    # Status
    # ============================================

    async def ping(self) -> bool:
        """
        Lightweight reachability probe against STATUS_PATH.

        Returns:
            bool: True if the endpoint answered, False otherwise
        """
        try:
            await self._get(self.STATUS_PATH)
            return True
        except TransportError as e:
            self.logger.warning(f"{self.exchange} status check failed: {e}")
            return False
