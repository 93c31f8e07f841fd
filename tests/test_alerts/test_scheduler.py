"""Tests for the interval scheduler."""

import asyncio
from contextlib import asynccontextmanager

import pytest

from alert_engine.alerts.scheduler import IntervalScheduler


class _Counter:
    """Coroutine task that counts runs and can be held open."""

    def __init__(self, block: bool = False, fail: bool = False):
        self.calls = 0
        self.completed = 0
        self.release = asyncio.Event()
        if not block:
            self.release.set()
        self._fail = fail

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self._fail:
            raise RuntimeError("boom")
        self.completed += 1


@asynccontextmanager
async def running_scheduler():
    scheduler = IntervalScheduler()
    try:
        yield scheduler
    finally:
        scheduler.cancel_all()
        await asyncio.wait_for(scheduler.wait_idle(), timeout=1.0)


class TestScheduling:
    @pytest.mark.asyncio
    async def test_first_tick_is_immediate(self):
        async with running_scheduler() as scheduler:
            task = _Counter()
            scheduler.schedule("evaluate", 60_000, task)

            await asyncio.sleep(0.02)

            assert task.calls == 1
            assert scheduler.scheduled_tasks() == ["evaluate"]

    @pytest.mark.asyncio
    async def test_ticks_repeat(self):
        async with running_scheduler() as scheduler:
            task = _Counter()
            scheduler.schedule("evaluate", 20, task)

            await asyncio.sleep(0.11)

            assert task.calls >= 3

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self):
        async with running_scheduler() as scheduler:
            with pytest.raises(ValueError):
                scheduler.schedule("evaluate", 0, _Counter())
            assert scheduler.scheduled_tasks() == []


class TestOverlap:
    @pytest.mark.asyncio
    async def test_skips_tick_while_run_in_flight(self):
        async with running_scheduler() as scheduler:
            task = _Counter(block=True)
            scheduler.schedule("flush:CRITICAL", 20, task)

            await asyncio.sleep(0.1)

            assert task.calls == 1
            assert scheduler.is_running("flush:CRITICAL")
            assert scheduler.skipped_ticks("flush:CRITICAL") >= 2

            task.release.set()
            await asyncio.sleep(0.05)
            assert task.calls >= 2

    @pytest.mark.asyncio
    async def test_names_are_independent(self):
        async with running_scheduler() as scheduler:
            slow = _Counter(block=True)
            fast = _Counter()
            scheduler.schedule("flush:LOW", 20, slow)
            scheduler.schedule("flush:CRITICAL", 20, fast)

            await asyncio.sleep(0.1)

            assert slow.calls == 1
            assert fast.calls >= 3
            slow.release.set()

    @pytest.mark.asyncio
    async def test_reschedule_keeps_overlap_guard(self):
        async with running_scheduler() as scheduler:
            first = _Counter(block=True)
            scheduler.schedule("evaluate", 20, first)
            await asyncio.sleep(0.01)

            second = _Counter()
            scheduler.schedule("evaluate", 20, second)
            await asyncio.sleep(0.05)

            assert second.calls == 0
            first.release.set()
            await asyncio.sleep(0.05)
            assert second.calls >= 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_exception_does_not_stop_schedule(self):
        async with running_scheduler() as scheduler:
            task = _Counter(fail=True)
            scheduler.schedule("evaluate", 20, task)

            await asyncio.sleep(0.1)

            assert task.calls >= 3
            assert task.completed == 0


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_lets_in_flight_run_finish(self):
        async with running_scheduler() as scheduler:
            task = _Counter(block=True)
            scheduler.schedule("evaluate", 20, task)
            await asyncio.sleep(0.01)

            scheduler.cancel("evaluate")
            assert scheduler.scheduled_tasks() == []

            task.release.set()
            await scheduler.wait_idle()
            assert task.completed == 1

            await asyncio.sleep(0.05)
            assert task.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self):
        async with running_scheduler() as scheduler:
            scheduler.cancel("nope")
            assert scheduler.skipped_ticks("nope") == 0
            assert not scheduler.is_running("nope")


class TestUpdateInterval:
    @pytest.mark.asyncio
    async def test_new_interval_applies(self):
        async with running_scheduler() as scheduler:
            task = _Counter()
            scheduler.schedule("evaluate", 60_000, task)
            await asyncio.sleep(0.01)
            assert task.calls == 1

            scheduler.update_interval("evaluate", 20)
            await asyncio.sleep(0.1)

            assert task.calls >= 3

    @pytest.mark.asyncio
    async def test_does_not_tick_immediately(self):
        async with running_scheduler() as scheduler:
            task = _Counter()
            scheduler.schedule("evaluate", 60_000, task)
            await asyncio.sleep(0.01)

            scheduler.update_interval("evaluate", 30_000)
            await asyncio.sleep(0.02)

            assert task.calls == 1

    @pytest.mark.asyncio
    async def test_unknown_task_is_ignored(self):
        async with running_scheduler() as scheduler:
            scheduler.update_interval("nope", 1_000)
            assert scheduler.scheduled_tasks() == []

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self):
        async with running_scheduler() as scheduler:
            scheduler.schedule("evaluate", 60_000, _Counter())
            with pytest.raises(ValueError):
                scheduler.update_interval("evaluate", -5)
