"""
In-Memory Candle Cache

Time-series store keyed by SeriesKey (exchange, symbol, interval).

Each entry keeps:
    - a time -> Candle map used for merging
    - an immutable, ascending tuple snapshot served to readers
    - the wall-clock time of the last write

Writes to one key are serialized by a per-key asyncio.Lock; reads never take
the lock and always see a complete snapshot.

Dedup on timestamp collision:
    higher CandleSource priority wins (real > historical > mock); at equal
    priority the candle with strictly higher volume wins; on an exact tie the
    stored candle is kept.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from core.config import settings
from core.logging import get_logger
from core.schemas import Candle, SeriesKey


KeyLike = Union[SeriesKey, Tuple[str, str, str]]


@dataclass
class CacheEntry:
    """Candles of one series plus bookkeeping."""

    candles: Dict[int, Candle] = field(default_factory=dict)
    snapshot: Tuple[Candle, ...] = ()
    last_updated: float = 0.0

    @property
    def last_candle(self) -> Optional[Candle]:
        return self.snapshot[-1] if self.snapshot else None


def should_replace(existing: Candle, incoming: Candle) -> bool:
    """Apply the collision policy for two candles sharing a timestamp."""
    if incoming.source.priority != existing.source.priority:
        return incoming.source.priority > existing.source.priority
    return incoming.volume > existing.volume


def series_key(key: KeyLike) -> SeriesKey:
    """Normalize a key: exchange lower-case, symbol upper-case."""
    exchange, symbol, interval = key
    return SeriesKey(exchange.lower(), symbol.upper(), interval)


class CandleCache:
    """
    Memory-resident candle store.

    Args:
        expiry_seconds: Newest candle older than this makes an entry stale
        max_candles: Per-series cap; the oldest candles are trimmed beyond it
        clock: Time source returning epoch seconds (injectable for tests)

    Example:
        >>> cache = CandleCache()
        >>> key = SeriesKey("binance", "BTCUSDT", "1m")
        >>> await cache.store_candles(key, candles)
        >>> cache.get_candles(key, limit=100)
    """

    def __init__(
        self,
        expiry_seconds: Optional[int] = None,
        max_candles: Optional[int] = None,
        clock: Callable[[], float] = time.time
    ) -> None:
        self.expiry_seconds = expiry_seconds if expiry_seconds is not None else settings.cache_expiry_seconds
        self.max_candles = max_candles if max_candles is not None else settings.cache_max_candles
        self._clock = clock
        self._entries: Dict[SeriesKey, CacheEntry] = {}
        self._locks: Dict[SeriesKey, asyncio.Lock] = {}
        self._logger = get_logger(__name__)

    # ============================================
    # Writes
    # ============================================

    async def store_candles(self, key: KeyLike, candles: Iterable[Candle]) -> Tuple[Candle, ...]:
        """
        Merge candles into a series and return the new snapshot.

        Storing the same candles twice leaves the series unchanged.
        """
        key = series_key(key)
        incoming = list(candles)

        async with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None:
                entry = CacheEntry()
                self._entries[key] = entry

            replaced = 0
            for candle in incoming:
                existing = entry.candles.get(candle.time)
                if existing is None:
                    entry.candles[candle.time] = candle
                elif should_replace(existing, candle):
                    entry.candles[candle.time] = candle
                    replaced += 1

            ordered = sorted(entry.candles)
            if len(ordered) > self.max_candles:
                for stale_time in ordered[: len(ordered) - self.max_candles]:
                    del entry.candles[stale_time]
                ordered = ordered[-self.max_candles:]

            entry.snapshot = tuple(entry.candles[t] for t in ordered)
            entry.last_updated = self._clock()

        self._logger.debug(
            f"Stored {len(incoming)} candle(s) for {key.exchange}/{key.symbol}/{key.interval} "
            f"(replaced={replaced}, total={len(entry.snapshot)})"
        )
        return entry.snapshot

    async def purge_old_candles(self, cutoff: Optional[int] = None, max_age_days: Optional[int] = None) -> int:
        """
        Drop candles with time < cutoff across every series.

        Args:
            cutoff: Epoch seconds; defaults to now - max_age_days
            max_age_days: Used when no cutoff is given (defaults to settings.purge_max_age_days)

        Returns:
            int: Number of candles removed. Emptied series are forgotten.
        """
        if cutoff is None:
            days = max_age_days if max_age_days is not None else settings.purge_max_age_days
            cutoff = int(self._clock()) - days * 86400

        removed = 0
        for key in list(self._entries):
            async with self._lock_for(key):
                entry = self._entries.get(key)
                if entry is None:
                    continue
                keep = tuple(c for c in entry.snapshot if c.time >= cutoff)
                dropped = len(entry.snapshot) - len(keep)
                if not dropped:
                    continue
                removed += dropped
                if keep:
                    entry.snapshot = keep
                    entry.candles = {c.time: c for c in keep}
                else:
                    del self._entries[key]
                    self._locks.pop(key, None)

        if removed:
            self._logger.info(f"Purged {removed} candle(s) older than {cutoff}")
        return removed

    def clear(self) -> None:
        """Forget every series."""
        self._entries.clear()
        self._locks.clear()

    # ============================================
    # Reads
    # ============================================

    def get_candles(self, key: KeyLike, limit: Optional[int] = None) -> List[Candle]:
        """Return the last `limit` candles (all when None), ascending."""
        entry = self._entries.get(series_key(key))
        if entry is None:
            return []
        if limit is None:
            return list(entry.snapshot)
        if limit <= 0:
            return []
        return list(entry.snapshot[-limit:])

    def has_candles(self, key: KeyLike) -> bool:
        entry = self._entries.get(series_key(key))
        return bool(entry and entry.snapshot)

    def is_fresh(self, key: KeyLike, limit: Optional[int] = None, now: Optional[float] = None) -> bool:
        """
        True when the newest candle is younger than the expiry and the series
        holds at least `limit` candles.
        """
        entry = self._entries.get(series_key(key))
        if entry is None or entry.last_candle is None:
            return False

        now = self._clock() if now is None else now
        if now - entry.last_candle.time >= self.expiry_seconds:
            return False
        if limit is not None and len(entry.snapshot) < limit:
            return False
        return True

    def last_updated(self, key: KeyLike) -> Optional[float]:
        entry = self._entries.get(series_key(key))
        return entry.last_updated if entry else None

    def keys(self) -> List[SeriesKey]:
        return list(self._entries)

    def _lock_for(self, key: SeriesKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __contains__(self, key: KeyLike) -> bool:
        return self.has_candles(key)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"<CandleCache(series={len(self._entries)}, expiry={self.expiry_seconds}s)>"
