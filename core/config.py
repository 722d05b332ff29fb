"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Per-exchange REST and WebSocket endpoints
- Cache, networking and scheduler tuning knobs
- Converts comma-separated strings to lists (symbols, intervals, quote assets)

Usage:
    from core.config import settings

    print(settings.okx_base_url)
    print(settings.intervals_list)  # Returns a list of strings
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


# Canonical candle intervals understood by the normalizer and every connector
VALID_INTERVALS = ["1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "12h", "1d"]


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.
    Comma-separated settings are exposed as lists through the *_list properties.
    """

    # ============================================
    # Exchange Endpoints
    # ============================================

    binance_base_url: str = Field(
        default="https://api.binance.com",
        description="Binance spot REST base URL"
    )

    binance_ws_url: str = Field(
        default="wss://stream.binance.com:9443/ws",
        description="Binance spot WebSocket base URL (one socket per stream)"
    )

    okx_base_url: str = Field(
        default="https://www.okx.com",
        description="OKX REST base URL"
    )

    okx_ws_url: str = Field(
        default="wss://ws.okx.com:8443/ws/v5/public",
        description="OKX public WebSocket URL"
    )

    bybit_base_url: str = Field(
        default="https://api.bybit.com",
        description="Bybit v5 REST base URL"
    )

    bybit_ws_url: str = Field(
        default="wss://stream.bybit.com/v5/public/spot",
        description="Bybit v5 public spot WebSocket URL"
    )

    mexc_base_url: str = Field(
        default="https://api.mexc.com",
        description="MEXC spot REST base URL"
    )

    mexc_ws_url: str = Field(
        default="wss://wbs.mexc.com/ws",
        description="MEXC spot WebSocket URL"
    )

    # ============================================
    # Supported Markets Configuration
    # ============================================

    supported_symbols: str = Field(
        default="BTCUSDT,ETHUSDT,SOLUSDT",
        description="Comma-separated list of trading pairs"
    )

    supported_intervals: str = Field(
        default="1m,5m,15m,30m,1h,4h,1d",
        description="Comma-separated list of candlestick intervals"
    )

    aggregation_quote_assets: str = Field(
        default="USDT,USDC,USD",
        description="Quote assets merged by default when aggregating a base asset"
    )

    popular_exchanges: str = Field(
        default="binance,okx,bybit,mexc",
        description="Exchanges queried by default for aggregated candles"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Networking
    # ============================================

    request_timeout: float = Field(
        default=10.0,
        description="Upper bound for a single historical fetch (seconds)"
    )

    rest_max_attempts: int = Field(
        default=3,
        description="REST attempts before a TransportError is raised"
    )

    ws_reconnect_delay: float = Field(
        default=5.0,
        description="Fixed backoff before reopening a dropped socket (seconds)"
    )

    ws_heartbeat_interval: float = Field(
        default=20.0,
        description="Ping interval for exchanges that need application-level heartbeats (seconds)"
    )

    ws_subscriber_queue_size: int = Field(
        default=256,
        description="Live candles buffered per subscriber before the oldest is dropped"
    )

    # ============================================
    # Candle Cache
    # ============================================

    cache_expiry_seconds: int = Field(
        default=1800,
        description="Newest candle older than this makes a cache entry stale"
    )

    cache_max_candles: int = Field(
        default=5000,
        description="Per-series cap; oldest candles are trimmed beyond it"
    )

    default_candle_limit: int = Field(
        default=500,
        description="Candles returned when the caller gives no limit"
    )

    # ============================================
    # Refresh Scheduler
    # ============================================

    scheduler_enabled: bool = Field(
        default=False,
        description="Start the background refresh scheduler with the app"
    )

    scheduler_tick_seconds: float = Field(
        default=60.0,
        description="Scheduler tick; due jobs are run once per tick"
    )

    refresh_interval_minutes: int = Field(
        default=60,
        description="Base refresh period for the popular-symbol jobs"
    )

    purge_probability: float = Field(
        default=0.05,
        description="Chance that a refresh job also purges old candles"
    )

    purge_max_age_days: int = Field(
        default=7,
        description="Candles older than this are dropped by a purge"
    )

    # ============================================
    # Test Doubles
    # ============================================

    enable_synthetic_exchange: bool = Field(
        default=False,
        description="Register the random-walk 'synthetic' exchange (never a silent fallback)"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Derived Properties
    # ============================================

    @property
    def symbols_list(self) -> List[str]:
        """
        Convert comma-separated symbols string to a list.

        Example:
            >>> settings.symbols_list
            ['BTCUSDT', 'ETHUSDT', 'SOLUSDT']
        """
        return [s.strip().upper() for s in self.supported_symbols.split(",") if s.strip()]

    @property
    def intervals_list(self) -> List[str]:
        """
        Convert comma-separated intervals string to a list.

        Example:
            >>> settings.intervals_list
            ['1m', '5m', '15m', '30m', '1h', '4h', '1d']
        """
        return [i.strip().lower() for i in self.supported_intervals.split(",") if i.strip()]

    @property
    def quote_assets_list(self) -> List[str]:
        """Default quote assets for aggregation, upper-cased."""
        return [q.strip().upper() for q in self.aggregation_quote_assets.split(",") if q.strip()]

    @property
    def popular_exchanges_list(self) -> List[str]:
        """Default exchanges for aggregation, lower-cased."""
        return [e.strip().lower() for e in self.popular_exchanges.split(",") if e.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['http://localhost:3000', 'http://localhost:5173']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings to validate (defaults to the global instance)

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # logging.py imports config.py, so the logger is imported lazily
    from core.logging import logger

    config = config or settings

    if not config.symbols_list:
        raise ValueError("SUPPORTED_SYMBOLS must contain at least one symbol")

    for symbol in config.symbols_list:
        if not symbol.isupper():
            raise ValueError(
                f"Symbol '{symbol}' must be uppercase. "
                f"Please update SUPPORTED_SYMBOLS in .env"
            )

    for interval in config.intervals_list:
        if interval not in VALID_INTERVALS:
            raise ValueError(
                f"Invalid interval: '{interval}'. "
                f"Must be one of: {', '.join(VALID_INTERVALS)}"
            )

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if not (0.0 <= config.purge_probability <= 1.0):
        raise ValueError(f"Invalid PURGE_PROBABILITY: {config.purge_probability}. Must be between 0 and 1")

    if config.request_timeout <= 0:
        raise ValueError(f"Invalid REQUEST_TIMEOUT: {config.request_timeout}. Must be positive")

    if config.rest_max_attempts < 1:
        raise ValueError(f"Invalid REST_MAX_ATTEMPTS: {config.rest_max_attempts}. Must be at least 1")

    if config.ws_subscriber_queue_size < 1:
        raise ValueError(f"Invalid WS_SUBSCRIBER_QUEUE_SIZE: {config.ws_subscriber_queue_size}. Must be at least 1")

    logger.info("Configuration validated successfully")
    logger.info(f"Tracking symbols: {', '.join(config.symbols_list)}")
    logger.info(f"Using intervals: {', '.join(config.intervals_list)}")
    logger.info(f"Aggregation: {', '.join(config.popular_exchanges_list)} x {', '.join(config.quote_assets_list)}")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Log level: {config.log_level.upper()}")
    logger.info(f"Cache: in-memory (expiry={config.cache_expiry_seconds}s, max={config.cache_max_candles})")
