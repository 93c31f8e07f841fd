"""
Interval scheduler for recurring async tasks.

Each named task gets a driver coroutine that ticks every ``interval_ms``
(first tick immediately). A tick starts a run only if the previous run
of the same name has finished; otherwise the tick is skipped, never
queued. Different names tick independently.

Cancelling stops future ticks at once but leaves in-flight runs alone, so
a dispatch that has already started is allowed to finish. ``wait_idle()``
waits for those runs.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from alert_engine.observability.logging import bind_context
from alert_engine.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

TaskFn = Callable[[], Awaitable[object]]


@dataclass
class _Registration:
    name: str
    interval_ms: int
    task: TaskFn
    driver: asyncio.Task | None = None
    current: asyncio.Task | None = None
    skipped: int = 0


class IntervalScheduler:
    """
    Runs named async tasks on fixed intervals without overlap.

    Usage:
        scheduler = IntervalScheduler()
        scheduler.schedule("evaluate", 60_000, evaluator.evaluate_all)
        ...
        scheduler.cancel_all()
        await scheduler.wait_idle()
    """

    def __init__(self) -> None:
        self._tasks: dict[str, _Registration] = {}
        self._inflight: set[asyncio.Task] = set()

    def schedule(self, name: str, interval_ms: int, task: TaskFn) -> None:
        """
        Register a recurring task, replacing any task with the same name.

        Must be called with a running event loop.

        Args:
            name: Unique task name
            interval_ms: Milliseconds between ticks
            task: Zero-argument coroutine function
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        previous = self._tasks.get(name)
        if previous is not None:
            self.cancel(name)

        reg = _Registration(name=name, interval_ms=interval_ms, task=task)
        if previous is not None:
            # Keep the overlap guard across re-registration
            reg.current = previous.current
        reg.driver = asyncio.create_task(
            self._drive(reg, run_immediately=True), name=f"scheduler:{name}",
        )
        self._tasks[name] = reg
        logger.info("Scheduled task", task=name, interval_ms=interval_ms)

    def update_interval(self, name: str, interval_ms: int) -> None:
        """Change a task's interval. The next tick comes one new interval from now."""
        reg = self._tasks.get(name)
        if reg is None:
            logger.warning("Cannot update interval: task not found", task=name)
            return
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        if reg.driver is not None:
            reg.driver.cancel()
        reg.interval_ms = interval_ms
        reg.driver = asyncio.create_task(
            self._drive(reg, run_immediately=False), name=f"scheduler:{name}",
        )
        logger.info("Updated task interval", task=name, interval_ms=interval_ms)

    def cancel(self, name: str) -> None:
        """Stop future ticks of a task. An in-flight run is not interrupted."""
        reg = self._tasks.pop(name, None)
        if reg is None:
            return
        if reg.driver is not None:
            reg.driver.cancel()
        logger.info("Cancelled task", task=name)

    def cancel_all(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)
        logger.info("Cancelled all scheduled tasks")

    async def wait_idle(self) -> None:
        """Wait until every in-flight run has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def scheduled_tasks(self) -> list[str]:
        return list(self._tasks)

    def is_running(self, name: str) -> bool:
        """True while a run of ``name`` is in flight."""
        reg = self._tasks.get(name)
        return reg is not None and reg.current is not None and not reg.current.done()

    def skipped_ticks(self, name: str) -> int:
        reg = self._tasks.get(name)
        return reg.skipped if reg is not None else 0

    async def _drive(self, reg: _Registration, run_immediately: bool) -> None:
        loop = asyncio.get_running_loop()
        interval = reg.interval_ms / 1000
        next_tick = loop.time()
        if not run_immediately:
            next_tick += interval

        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            self._tick(reg)

            next_tick += interval
            now = loop.time()
            # Coalesce ticks missed while the loop was busy
            while next_tick < now:
                next_tick += interval

    def _tick(self, reg: _Registration) -> None:
        if reg.current is not None and not reg.current.done():
            reg.skipped += 1
            get_metrics().record_tick_skipped(reg.name)
            logger.debug("Skipping tick, previous run still in flight", task=reg.name)
            return

        run = asyncio.create_task(self._run(reg), name=f"run:{reg.name}")
        reg.current = run
        self._inflight.add(run)
        run.add_done_callback(self._inflight.discard)

    async def _run(self, reg: _Registration) -> None:
        bind_context(task=reg.name)
        start = time.perf_counter()
        try:
            await reg.task()
        except Exception as e:
            get_metrics().record_tick_error(reg.name)
            logger.exception("Scheduled task failed", task=reg.name, error=str(e))
        finally:
            get_metrics().record_tick(reg.name, time.perf_counter() - start)
