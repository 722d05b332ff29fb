"""
Unified Logging Configuration

Every module logs through this package instead of print(). Component loggers
are children of the "candlehub" root logger, so a single level change applies
everywhere.

Usage:
    from core.logging import get_logger

    logger = get_logger(__name__)   # "candlehub.core.cache"
    logger.info("Stored 500 candles")

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional

from core.config import settings


ROOT_LOGGER_NAME = "candlehub"


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured root application logger

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] candlehub Application started
    """
    if log_format is None:
        format_parts = []
        if include_timestamp:
            format_parts.append("%(asctime)s")
        format_parts.append("[%(levelname)s]")
        if include_module:
            format_parts.append("%(name)s")
        format_parts.append("%(message)s")
        log_format = " ".join(format_parts)

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(level)
    return app_logger


# ============================================
# Global Logger
# ============================================

logger = setup_logging(log_level=settings.log_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a module or component.

    Args:
        name: Name for the logger (typically __name__)

    Example:
        >>> get_logger("services.aggregation").name
        'candlehub.services.aggregation'
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """Change the log level at runtime for the app logger and the root logger."""
    resolved = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(resolved)
    logging.getLogger().setLevel(resolved)


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(exchange: str, endpoint: str, params: dict = None) -> None:
    """
    Log an outgoing REST request.

    Example:
        >>> log_api_request("okx", "/api/v5/market/candles", {"instId": "BTC-USDT"})
        [DEBUG] API Request: okx /api/v5/market/candles | Params: {'instId': 'BTC-USDT'}
    """
    if params:
        logger.debug(f"API Request: {exchange} {endpoint} | Params: {params}")
    else:
        logger.debug(f"API Request: {exchange} {endpoint}")


def log_api_response(exchange: str, endpoint: str, status: int, response_time: float = None) -> None:
    """Log a REST response with status and optional timing."""
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {exchange} {endpoint} | Status: {status}{time_str}")


def log_websocket_event(exchange: str, event: str, symbol: str = None, details: str = None) -> None:
    """
    Log a WebSocket lifecycle event. "error" events are logged at ERROR level.

    Example:
        >>> log_websocket_event("bybit", "connected", details="shared")
        [INFO] WebSocket: bybit connected | shared
    """
    symbol_str = f" | Symbol: {symbol}" if symbol else ""
    details_str = f" | {details}" if details else ""

    level = logging.ERROR if event == "error" else logging.INFO
    logger.log(level, f"WebSocket: {exchange} {event}{symbol_str}{details_str}")
