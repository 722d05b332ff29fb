"""
Refresh Scheduler

Periodically refreshes cached series so popular charts open from a warm cache.

A single background loop ticks every `scheduler_tick_seconds` (default 60s).
On each tick every job whose interval has elapsed and which is not already
running is started; the first tick happens as soon as the scheduler starts.
A failing job is logged and retried on a later tick.
"""

import asyncio
import contextlib
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.cache import CandleCache
from core.config import settings
from core.logging import get_logger
from services.historical_fetcher import HistoricalCandleFetcher


JobFn = Callable[[], Awaitable[object]]

UPDATE_LIMIT = 100

# Watchlist refreshed by schedule_popular_symbols
POPULAR_SYMBOLS: Dict[str, List[str]] = {
    "binance": ["BTCUSDT", "ETHUSDT", "BNBUSDT"],
    "okx": ["BTC-USDT", "ETH-USDT"],
    "bybit": ["BTCUSDT"],
    "mexc": ["BTCUSDT"],
}
POPULAR_INTERVALS = ["1m", "5m", "15m", "1h", "4h", "1d"]


@dataclass
class ScheduledJob:
    """A named periodic job. interval is in seconds; last_run is epoch seconds."""

    id: str
    interval: float
    fn: JobFn
    last_run: float = 0.0
    is_running: bool = False

    def is_due(self, now: float) -> bool:
        return not self.is_running and now - self.last_run >= self.interval


class RefreshScheduler:
    """
    Tick-driven job runner.

    Args:
        fetcher: Used by symbol update jobs
        cache: Purged now and then by symbol update jobs
        tick_seconds: Loop period
        purge_probability: Chance that an update run also purges old candles
        purge_max_age_days: Age limit applied by the purge
        rng: Random source for jitter and purge draws
        clock: Time source returning epoch seconds

    Example:
        >>> scheduler = RefreshScheduler(fetcher, cache)
        >>> scheduler.schedule_symbol_update("binance", "BTCUSDT", "1m", every_minutes=5)
        >>> await scheduler.start()
    """

    def __init__(
        self,
        fetcher: HistoricalCandleFetcher,
        cache: CandleCache,
        tick_seconds: Optional[float] = None,
        purge_probability: Optional[float] = None,
        purge_max_age_days: Optional[int] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time
    ) -> None:
        self.fetcher = fetcher
        self.cache = cache
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.scheduler_tick_seconds
        self.purge_probability = (
            purge_probability if purge_probability is not None else settings.purge_probability
        )
        self.purge_max_age_days = (
            purge_max_age_days if purge_max_age_days is not None else settings.purge_max_age_days
        )
        self._rng = rng or random.Random()
        self._clock = clock
        self.jobs: Dict[str, ScheduledJob] = {}
        self._running = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._logger = get_logger(__name__)

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        if self._running.is_set():
            return
        self._running.set()
        self._logger.info(f"Starting refresh scheduler ({len(self.jobs)} job(s), tick={self.tick_seconds}s)...")
        self._task = asyncio.create_task(self._run(), name="refresh_scheduler")

    async def stop(self) -> None:
        if not self._running.is_set():
            return
        self._logger.info("Stopping refresh scheduler...")
        self._running.clear()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    async def _run(self) -> None:
        while self._running.is_set():
            await self.run_due_jobs()
            await asyncio.sleep(self.tick_seconds)

    # ============================================
    # Jobs
    # ============================================

    def schedule(self, job_id: str, interval: float, fn: JobFn) -> ScheduledJob:
        """Register (or replace) a job running every `interval` seconds."""
        job = ScheduledJob(id=job_id, interval=interval, fn=fn)
        self.jobs[job_id] = job
        self._logger.debug(f"Scheduled job '{job_id}' every {interval:.0f}s")
        return job

    def unschedule(self, job_id: str) -> bool:
        removed = self.jobs.pop(job_id, None) is not None
        if removed:
            self._logger.debug(f"Unscheduled job '{job_id}'")
        return removed

    async def run_due_jobs(self, now: Optional[float] = None) -> List[str]:
        """
        Run every due job concurrently.

        Returns:
            List[str]: Ids of the jobs started on this tick
        """
        now = self._clock() if now is None else now
        due = [job for job in self.jobs.values() if job.is_due(now)]
        if due:
            await asyncio.gather(*(self._run_job(job) for job in due))
        return [job.id for job in due]

    async def _run_job(self, job: ScheduledJob) -> None:
        job.is_running = True
        try:
            await job.fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(f"Job '{job.id}' failed: {e}")
        finally:
            job.is_running = False
            job.last_run = self._clock()

    def schedule_symbol_update(
        self,
        exchange: str,
        symbol: str,
        interval: str,
        every_minutes: Optional[float] = None,
        jitter_seconds: float = 0.0
    ) -> ScheduledJob:
        """
        Refresh one series with force_fresh every `every_minutes`.

        Each run also purges candles older than purge_max_age_days with
        probability purge_probability.
        """
        every_minutes = every_minutes if every_minutes is not None else settings.refresh_interval_minutes

        async def update() -> None:
            candles = await self.fetcher.fetch_candles(
                exchange, symbol, interval, limit=UPDATE_LIMIT, force_fresh=True
            )
            self._logger.debug(f"Refreshed {exchange}/{symbol}/{interval}: {len(candles)} candle(s)")
            if self._rng.random() < self.purge_probability:
                await self.cache.purge_old_candles(max_age_days=self.purge_max_age_days)

        job_id = f"update-{exchange}-{symbol}-{interval}"
        return self.schedule(job_id, every_minutes * 60 + jitter_seconds, update)

    def schedule_popular_symbols(self, every_minutes: Optional[float] = None) -> List[ScheduledJob]:
        """
        Schedule updates for the watchlist x interval matrix.

        Each job gets jitter in [0, every/2) so refreshes do not fire together.
        """
        every_minutes = every_minutes if every_minutes is not None else settings.refresh_interval_minutes
        every_seconds = every_minutes * 60

        matrix: List[Tuple[str, str, str]] = [
            (exchange, symbol, interval)
            for exchange, symbols in POPULAR_SYMBOLS.items()
            for symbol in symbols
            for interval in POPULAR_INTERVALS
        ]

        jobs = [
            self.schedule_symbol_update(
                exchange, symbol, interval, every_minutes,
                jitter_seconds=self._rng.random() * every_seconds / 2
            )
            for exchange, symbol, interval in matrix
        ]
        self._logger.info(f"Scheduled {len(jobs)} popular series update(s) every ~{every_minutes} min")
        return jobs

    def __repr__(self) -> str:
        return f"<RefreshScheduler(jobs={len(self.jobs)}, running={self.is_running})>"
