"""
Core Package

Contains the exchange-agnostic core logic including:
- ExchangeConnector / StreamProtocol: Contracts every exchange implements
- ExchangeManager: Central registry mapping exchange names to connectors
- ConnectionMultiplexer: Shares exchange sockets between live subscribers
- Normalizer and Schemas: Canonical Candle model and the conversions into it
- CandleCache: In-memory time-series store with dedup and freshness checks

This layer ensures all exchanges follow the same interface, making the system modular and scalable.
"""
