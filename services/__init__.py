"""
Services Package

Long-running and orchestration components built on top of core/ and exchanges/:
- HistoricalCandleFetcher: cache-first REST fetching with stale fallback
- AggregationEngine: VWAP merge across exchanges and quote assets
- RefreshScheduler: periodic cache warm-up jobs
- EventBus: topic pub/sub for connection status events
- MarketDataContext: owns all of the above for the app's lifetime
"""
