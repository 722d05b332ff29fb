"""
Core Utilities Package

Modules:
    - time: Timestamp conversion and interval arithmetic
    - symbols: Base/quote splitting and per-exchange symbol formatting
"""

from core.utils.time import interval_to_seconds, to_epoch_seconds, to_utc_datetime
from core.utils.symbols import split_symbol, symbol_for_exchange

__all__ = [
    "interval_to_seconds",
    "to_epoch_seconds",
    "to_utc_datetime",
    "split_symbol",
    "symbol_for_exchange",
]
