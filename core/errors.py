"""
Error Taxonomy

All failures raised by candlehub components derive from CandleHubError so the
HTTP layer can map them to status codes in one place.

    CandleHubError
    ├── TransportError            socket/REST failure, timeout, exchange error code
    ├── ValidationError           malformed payload, unknown interval, bad field
    ├── UnsupportedExchangeError  unknown exchange key (also a ValueError)
    └── AggregationError          no source produced usable data

Note:
    ValidationError here is unrelated to pydantic.ValidationError. Modules that
    need both import pydantic's as PydanticValidationError.
"""

from typing import Optional


class CandleHubError(Exception):
    """Base class for all candlehub errors."""


class TransportError(CandleHubError):
    """
    Network-level failure talking to an exchange.

    Attributes:
        exchange: Exchange the request was sent to (if known)
    """

    def __init__(self, message: str, exchange: Optional[str] = None):
        super().__init__(message)
        self.exchange = exchange


class ValidationError(CandleHubError):
    """Payload or parameter could not be turned into a canonical candle."""


class UnsupportedExchangeError(CandleHubError, ValueError):
    """Requested exchange is not registered."""

    def __init__(self, name: str, available: Optional[list] = None):
        self.name = name
        self.available = list(available or [])
        message = f"Exchange '{name}' is not supported."
        if self.available:
            message += f" Available exchanges: {', '.join(self.available)}"
        super().__init__(message)


class AggregationError(CandleHubError):
    """No exchange/quote source produced usable candles."""
