"""
Exchange Manager - Central Registry for Exchange Connectors

Maintains the explicit name -> connector map used by every other component
and wires each connector to its ConnectionMultiplexer.

Architecture Pattern:
    Registry/Factory:
    - ExchangeManager builds one connector per supported exchange
    - each connector gets a ConnectionMultiplexer bound to the shared cache
      (live candles are written there) and event bus (status events)
    - callers look exchanges up by name; unknown names raise
      UnsupportedExchangeError

Example Usage:
    manager = ExchangeManager(cache=cache, event_bus=bus)
    await manager.initialize_all()

    okx = manager.get_exchange("okx")
    candles = await okx.get_historical_candles("BTCUSDT", "1h", 100)

    await manager.shutdown_all()
"""

from typing import Any, Dict, List, Optional

from core.config import settings
from core.errors import UnsupportedExchangeError
from core.exchange_interface import ExchangeConnector
from core.logging import logger
from core.multiplexer import ConnectionMultiplexer


class ExchangeManager:
    """
    Central Manager for Exchange Connectors

    Args:
        cache: Candle sink for live candles (CandleCache)
        event_bus: Status event publisher (EventBus)
        enable_synthetic: Register the random-walk test exchange; defaults to
            settings.enable_synthetic_exchange
        exchanges: Explicit connector map, replacing the default registry
            (used by tests)

    Example:
        >>> manager = ExchangeManager()
        >>> manager.list_exchanges()
        ['binance', 'okx', 'bybit', 'mexc']
    """

    def __init__(
        self,
        cache: Any = None,
        event_bus: Any = None,
        enable_synthetic: Optional[bool] = None,
        exchanges: Optional[Dict[str, ExchangeConnector]] = None
    ):
        self.cache = cache
        self.event_bus = event_bus

        if exchanges is None:
            exchanges = self._default_exchanges(
                settings.enable_synthetic_exchange if enable_synthetic is None else enable_synthetic
            )

        self.exchanges: Dict[str, ExchangeConnector] = {}
        for name, connector in exchanges.items():
            self.register(connector, name=name)

        logger.info(
            f"ExchangeManager initialized with {len(self.exchanges)} exchange(s): "
            f"{', '.join(self.exchanges.keys())}"
        )

    @staticmethod
    def _default_exchanges(enable_synthetic: bool) -> Dict[str, ExchangeConnector]:
        # Exchange modules import from core, so they are imported lazily
        from exchanges.binance import BinanceExchange
        from exchanges.okx import OKXExchange
        from exchanges.bybit import BybitExchange
        from exchanges.mexc import MEXCExchange

        registry: Dict[str, ExchangeConnector] = {
            "binance": BinanceExchange(),
            "okx": OKXExchange(),
            "bybit": BybitExchange(),
            "mexc": MEXCExchange(),
        }

        if enable_synthetic:
            from services.synthetic import SyntheticExchange
            registry["synthetic"] = SyntheticExchange()

        return registry

    def register(self, connector: ExchangeConnector, name: Optional[str] = None) -> None:
        """
        Add a connector and attach a multiplexer to it.

        Connectors exposing a `connect(url)` coroutine (the synthetic
        exchange) use it as their socket factory.
        """
        name = (name or connector.name).lower()
        if connector.multiplexer is None:
            connector.attach_multiplexer(
                ConnectionMultiplexer(
                    name,
                    connector.protocol,
                    sink=self.cache,
                    event_bus=self.event_bus,
                    connect=getattr(connector, "connect", None)
                )
            )
        self.exchanges[name] = connector

    # ============================================
    # Exchange Retrieval Methods
    # ============================================

    def get_exchange(self, name: str) -> ExchangeConnector:
        """
        Get an exchange connector by name (case-insensitive).

        Raises:
            UnsupportedExchangeError: If the exchange is not registered
        """
        key = name.lower()
        if key not in self.exchanges:
            logger.error(f"Exchange '{name}' not found. Available: {', '.join(self.exchanges)}")
            raise UnsupportedExchangeError(name, list(self.exchanges))
        return self.exchanges[key]

    def has_exchange(self, name: str) -> bool:
        return name.lower() in self.exchanges

    def list_exchanges(self) -> List[str]:
        return list(self.exchanges.keys())

    def get_exchange_capabilities(self, name: str) -> Dict[str, bool]:
        return dict(self.get_exchange(name).capabilities)

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """
        Initialize every registered exchange.

        A failing exchange is logged and skipped; the others still start.
        """
        logger.info("Initializing all exchanges...")

        for name, exchange in self.exchanges.items():
            try:
                await exchange.initialize()
                logger.info(f"✓ {name.capitalize()} initialized successfully")
            except Exception as e:
                logger.error(f"✗ Failed to initialize {name}: {e}")

        logger.info("All exchanges initialized")

    async def shutdown_all(self) -> None:
        """Close every exchange's sockets and REST session."""
        logger.info("Shutting down all exchanges...")

        for name, exchange in self.exchanges.items():
            try:
                await exchange.shutdown()
                logger.info(f"✓ {name.capitalize()} shut down successfully")
            except Exception as e:
                logger.error(f"✗ Error shutting down {name}: {e}")

        logger.info("All exchanges shut down")

    # ============================================
    # Health Check Methods
    # ============================================

    async def health_check_all(self) -> Dict[str, bool]:
        """
        Run check_status on every exchange.

        Returns:
            Dict[str, bool]: exchange name -> reachable
        """
        health_status = {}
        for name, exchange in self.exchanges.items():
            try:
                health_status[name] = await exchange.check_status()
            except Exception as e:
                logger.error(f"Health check failed for {name}: {e}")
                health_status[name] = False
        return health_status

    # ============================================
    # Utility Methods
    # ============================================

    def __repr__(self) -> str:
        return f"<ExchangeManager(exchanges={list(self.exchanges.keys())})>"

    def __len__(self) -> int:
        return len(self.exchanges)
