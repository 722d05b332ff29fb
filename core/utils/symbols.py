"""
Symbol Utilities

Canonical symbols inside candlehub are upper-case concatenations of base and
quote ("BTCUSDT"). OKX is the only supported venue that separates the two with
a hyphen ("BTC-USDT").
"""

from typing import Tuple

from core.errors import ValidationError


# Longest suffix first so "USDT" wins over "USD"
KNOWN_QUOTES = ("USDT", "USDC", "BUSD", "USD", "BTC", "ETH")

HYPHENATED_EXCHANGES = {"okx"}


def split_symbol(symbol: str) -> Tuple[str, str]:
    """
    Split a trading pair into (base, quote).

    Examples:
        >>> split_symbol("BTCUSDT")
        ('BTC', 'USDT')
        >>> split_symbol("eth-usdc")
        ('ETH', 'USDC')

    Raises:
        ValidationError: If no known quote asset can be found
    """
    sym = symbol.strip().upper()
    if "-" in sym:
        base, _, quote = sym.partition("-")
        if base and quote:
            return base, quote
        raise ValidationError(f"Malformed symbol: '{symbol}'")

    for quote in KNOWN_QUOTES:
        if sym.endswith(quote) and len(sym) > len(quote):
            return sym[: -len(quote)], quote

    raise ValidationError(f"Cannot determine quote asset of '{symbol}'")


def symbol_for_exchange(exchange: str, base: str, quote: str) -> str:
    """
    Build the exchange-native pair for a base/quote combination.

    Example:
        >>> symbol_for_exchange("okx", "btc", "usdt")
        'BTC-USDT'
        >>> symbol_for_exchange("bybit", "BTC", "USDT")
        'BTCUSDT'
    """
    base, quote = base.upper(), quote.upper()
    if exchange.lower() in HYPHENATED_EXCHANGES:
        return f"{base}-{quote}"
    return f"{base}{quote}"
