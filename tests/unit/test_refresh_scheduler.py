"""
Unit Tests for the Refresh Scheduler

These tests verify that:
- Only due, idle jobs run on a tick
- A failing job is logged and retried on a later tick
- Symbol updates refetch with force_fresh and purge with the configured probability
- The popular-symbol matrix is scheduled with bounded jitter

Run with:
    pytest tests/unit/test_refresh_scheduler.py -v
"""

import asyncio
import random

import pytest
from unittest.mock import AsyncMock, MagicMock

from services.refresh_scheduler import (
    POPULAR_INTERVALS,
    POPULAR_SYMBOLS,
    UPDATE_LIMIT,
    RefreshScheduler,
    ScheduledJob,
)


class FixedRandom(random.Random):
    """random() always returns the same value"""

    def __init__(self, value):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


def build_scheduler(now=1000.0, rng_value=0.5, purge_probability=0.1):
    fetcher = MagicMock()
    fetcher.fetch_candles = AsyncMock(return_value=[])
    cache = MagicMock()
    cache.purge_old_candles = AsyncMock(return_value=0)
    clock = MagicMock(return_value=now)
    scheduler = RefreshScheduler(
        fetcher,
        cache,
        tick_seconds=0.01,
        purge_probability=purge_probability,
        purge_max_age_days=7,
        rng=FixedRandom(rng_value),
        clock=clock
    )
    return scheduler, fetcher, cache, clock


# ============================================
# Jobs
# ============================================

class TestScheduledJob:
    """Tests for ScheduledJob.is_due"""

    def test_due_after_interval(self):
        job = ScheduledJob(id="j", interval=60, fn=AsyncMock(), last_run=1000)
        assert job.is_due(1059) is False
        assert job.is_due(1060) is True

    def test_never_due_while_running(self):
        job = ScheduledJob(id="j", interval=60, fn=AsyncMock(), is_running=True)
        assert job.is_due(10_000) is False


class TestRunDueJobs:
    """Tests for RefreshScheduler.run_due_jobs"""

    @pytest.mark.asyncio
    async def test_new_jobs_run_on_first_tick(self):
        scheduler, _, _, _ = build_scheduler(now=1000.0)
        fn = AsyncMock()
        scheduler.schedule("a", 60, fn)

        assert await scheduler.run_due_jobs() == ["a"]
        fn.assert_awaited_once()
        assert scheduler.jobs["a"].last_run == 1000.0

    @pytest.mark.asyncio
    async def test_job_waits_for_its_interval(self):
        scheduler, _, _, clock = build_scheduler(now=1000.0)
        fn = AsyncMock()
        scheduler.schedule("a", 60, fn)
        await scheduler.run_due_jobs()

        assert await scheduler.run_due_jobs(now=1030.0) == []
        assert await scheduler.run_due_jobs(now=1060.0) == ["a"]
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_running_job_is_not_restarted(self):
        scheduler, _, _, _ = build_scheduler()
        release = asyncio.Event()
        started = []

        async def slow():
            started.append(1)
            await release.wait()

        scheduler.schedule("slow", 0, slow)
        first = asyncio.create_task(scheduler.run_due_jobs())
        while not started:
            await asyncio.sleep(0)

        assert scheduler.jobs["slow"].is_running is True
        assert await scheduler.run_due_jobs() == []

        release.set()
        await first
        assert started == [1]
        assert scheduler.jobs["slow"].is_running is False

    @pytest.mark.asyncio
    async def test_failing_job_is_logged_and_retried(self, caplog):
        scheduler, _, _, _ = build_scheduler(now=1000.0)
        fn = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler.schedule("bad", 60, fn)

        await scheduler.run_due_jobs()
        assert "Job 'bad' failed: boom" in caplog.text
        assert scheduler.jobs["bad"].is_running is False

        assert await scheduler.run_due_jobs(now=1060.0) == ["bad"]

    @pytest.mark.asyncio
    async def test_failure_does_not_block_other_jobs(self):
        scheduler, _, _, _ = build_scheduler()
        good = AsyncMock()
        scheduler.schedule("bad", 60, AsyncMock(side_effect=RuntimeError("boom")))
        scheduler.schedule("good", 60, good)

        assert sorted(await scheduler.run_due_jobs()) == ["bad", "good"]
        good.assert_awaited_once()

    def test_unschedule(self):
        scheduler, _, _, _ = build_scheduler()
        scheduler.schedule("a", 60, AsyncMock())
        assert scheduler.unschedule("a") is True
        assert scheduler.unschedule("a") is False


# ============================================
# Symbol Updates
# ============================================

class TestSymbolUpdates:
    """Tests for schedule_symbol_update and schedule_popular_symbols"""

    @pytest.mark.asyncio
    async def test_update_refetches_with_force_fresh(self):
        scheduler, fetcher, cache, _ = build_scheduler(rng_value=0.5, purge_probability=0.1)
        job = scheduler.schedule_symbol_update("binance", "BTCUSDT", "1m", every_minutes=5)

        assert job.id == "update-binance-BTCUSDT-1m"
        assert job.interval == 300

        await scheduler.run_due_jobs()
        fetcher.fetch_candles.assert_awaited_once_with(
            "binance", "BTCUSDT", "1m", limit=UPDATE_LIMIT, force_fresh=True
        )
        cache.purge_old_candles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_purges_when_draw_is_below_probability(self):
        scheduler, _, cache, _ = build_scheduler(rng_value=0.01, purge_probability=0.05)
        scheduler.schedule_symbol_update("okx", "BTC-USDT", "1h", every_minutes=60)

        await scheduler.run_due_jobs()
        cache.purge_old_candles.assert_awaited_once_with(max_age_days=7)

    def test_jitter_extends_interval(self):
        scheduler, _, _, _ = build_scheduler()
        job = scheduler.schedule_symbol_update("bybit", "BTCUSDT", "5m", every_minutes=1, jitter_seconds=12.5)
        assert job.interval == 72.5

    def test_popular_matrix(self):
        scheduler, _, _, _ = build_scheduler(rng_value=0.999)
        jobs = scheduler.schedule_popular_symbols(every_minutes=60)

        expected = sum(len(symbols) for symbols in POPULAR_SYMBOLS.values()) * len(POPULAR_INTERVALS)
        assert len(jobs) == expected == 42
        assert "update-okx-ETH-USDT-4h" in scheduler.jobs
        for job in jobs:
            assert 3600 <= job.interval < 3600 + 1800


# ============================================
# Lifecycle
# ============================================

class TestLifecycle:
    """Tests for start/stop"""

    @pytest.mark.asyncio
    async def test_start_runs_jobs_and_stop_cancels(self):
        scheduler, _, _, _ = build_scheduler()
        ran = asyncio.Event()

        async def job():
            ran.set()

        scheduler.schedule("a", 60, job)
        await scheduler.start()
        assert scheduler.is_running is True

        await asyncio.wait_for(ran.wait(), timeout=1.0)

        await scheduler.stop()
        assert scheduler.is_running is False
        assert scheduler._task is None

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self):
        scheduler, _, _, _ = build_scheduler()
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task

        await scheduler.stop()
        await scheduler.stop()
        assert scheduler.is_running is False
