"""
Market Data Context

Owns every long-lived component of the service: the candle cache, the event
bus, the exchange registry (with one multiplexer per exchange), the historical
fetcher and the refresh scheduler. There are no module-level singletons; the
FastAPI app creates one context in its lifespan.

Example Usage:
    async with MarketDataContext() as ctx:
        candles = await ctx.fetcher.fetch_candles("binance", "BTCUSDT", "1h", limit=100)
        status = ctx.get_series_status("binance", "BTCUSDT", "1h")
"""

from typing import Dict, Optional

from core.cache import CandleCache
from core.config import Settings, settings as default_settings, validate_configuration
from core.exchange_interface import ExchangeConnector
from core.exchange_manager import ExchangeManager
from core.logging import get_logger
from core.schemas import ConnectionStatus, SeriesKey, SeriesStatus
from services.aggregation import AggregationEngine
from services.event_bus import EventBus
from services.historical_fetcher import HistoricalCandleFetcher
from services.refresh_scheduler import RefreshScheduler


class MarketDataContext:
    """
    Composition root for the candle pipeline.

    Args:
        config: Settings to build from (defaults to the global settings)
        exchanges: Explicit name -> connector map replacing the default
            registry (tests pass fake connectors)
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        exchanges: Optional[Dict[str, ExchangeConnector]] = None
    ) -> None:
        self.settings = config or default_settings
        self._logger = get_logger(__name__)

        self.cache = CandleCache(
            expiry_seconds=self.settings.cache_expiry_seconds,
            max_candles=self.settings.cache_max_candles
        )
        self.bus = EventBus()
        self.manager = ExchangeManager(
            cache=self.cache,
            event_bus=self.bus,
            enable_synthetic=self.settings.enable_synthetic_exchange,
            exchanges=exchanges
        )
        self.engine = AggregationEngine()
        self.fetcher = HistoricalCandleFetcher(
            self.manager, self.cache, engine=self.engine, timeout=self.settings.request_timeout
        )
        self.scheduler = RefreshScheduler(
            self.fetcher,
            self.cache,
            tick_seconds=self.settings.scheduler_tick_seconds,
            purge_probability=self.settings.purge_probability,
            purge_max_age_days=self.settings.purge_max_age_days
        )
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        validate_configuration(self.settings)
        await self.manager.initialize_all()
        if self.settings.scheduler_enabled:
            self.scheduler.schedule_popular_symbols(self.settings.refresh_interval_minutes)
            await self.scheduler.start()
        self._started = True
        self._logger.info("✓ Market data context started")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.scheduler.stop()
        await self.manager.shutdown_all()
        self._started = False
        self._logger.info("✓ Market data context stopped")

    async def __aenter__(self) -> "MarketDataContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def get_series_status(self, exchange: str, symbol: str, interval: str) -> SeriesStatus:
        """
        Connection and cache state of one series.

        live / connecting / reconnecting come from the multiplexer while the series is
        subscribed; otherwise the status is cached or no_data.
        """
        connector = self.manager.get_exchange(exchange)
        key = connector.subscription_key(symbol, interval)
        series = SeriesKey(connector.name, key.symbol, interval)

        status = None
        if connector.multiplexer is not None:
            state = connector.multiplexer.connection_state(key)
            if state is not None and state != ConnectionStatus.NO_DATA:
                status = state

        cached = self.cache.get_candles(series)
        if status is None:
            status = ConnectionStatus.CACHED if cached else ConnectionStatus.NO_DATA

        return SeriesStatus(
            exchange=connector.name,
            symbol=key.symbol,
            interval=interval,
            status=status,
            cached_candles=len(cached),
            last_candle_time=cached[-1].time if cached else None,
            is_fresh=self.cache.is_fresh(series)
        )
