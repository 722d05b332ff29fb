"""
Exchange Connectors Package

This package contains individual exchange connector modules.
Each exchange (Binance, OKX, Bybit, MEXC) has its own subfolder with:
- api_client.py: REST API logic (historical candles, status probe)
- ws_client.py: WebSocket wire protocol (URLs, subscribe frames, push parsing)
- __init__.py: Exchange class implementing ExchangeConnector

The modular design allows adding new exchanges without modifying existing code.
"""
