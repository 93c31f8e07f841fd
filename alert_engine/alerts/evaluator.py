"""
Alert evaluator.

Drives the alert state machine on a schedule and flushes the trigger
queue through the dispatcher:

    evaluate (every evaluation_interval_ms)
        store.get_eligible_alerts → for each alert: metric → next state
        → enqueue on entry to FIRING / cooldown re-notify → persist
        → history for significant transitions that do not notify
    flush:<SEVERITY> (per-severity interval)
        queue.dequeue → dispatcher.dispatch → history with notified_via
        → store.mark_triggered

Collaborators are injected; nothing here reaches for global state except
the metrics collector.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from functools import partial

import structlog

from alert_engine.alerts.config import AlertConfig
from alert_engine.alerts.dispatcher import Dispatcher, batch_failure
from alert_engine.alerts.scheduler import IntervalScheduler
from alert_engine.alerts.schemas import (
    SEVERITY_ORDER,
    Alert,
    AlertHistoryEntry,
    AlertSeverity,
    AlertState,
    DispatchResult,
    StateMetadata,
    TriggerQueueItem,
)
from alert_engine.alerts.state_machine import (
    check_threshold,
    cooldown_elapsed,
    elapsed_ms,
    enters_firing,
    is_significant,
    next_state,
)
from alert_engine.alerts.store import AlertStore
from alert_engine.alerts.trigger_queue import TriggerQueue
from alert_engine.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

EVALUATE_TASK = "evaluate"
FLUSH_TASK_PREFIX = "flush:"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def flush_task_name(severity: AlertSeverity) -> str:
    return f"{FLUSH_TASK_PREFIX}{AlertSeverity(severity).value}"


@dataclass
class EvaluationOutcome:
    """Result of evaluating one alert."""

    alert_id: str
    previous_state: AlertState
    new_state: AlertState
    value: float | None = None
    sample_count: int = 0
    skipped: bool = False
    enqueued: bool = False
    renotified: bool = False
    history_recorded: bool = False

    @property
    def transitioned(self) -> bool:
        return self.previous_state != self.new_state


@dataclass
class EvaluationSummary:
    """Counters for one evaluation tick."""

    evaluated: int = 0
    skipped: int = 0
    transitions: int = 0
    enqueued: int = 0
    errors: int = 0
    duration_ms: int = 0

    def add(self, outcome: EvaluationOutcome) -> None:
        if outcome.skipped:
            self.skipped += 1
            return
        self.evaluated += 1
        if outcome.transitioned:
            self.transitions += 1
        if outcome.enqueued:
            self.enqueued += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class AlertEvaluator:
    """
    Orchestrates alert evaluation and per-severity flushing.

    Usage:
        evaluator = AlertEvaluator(store, queue, dispatcher, IntervalScheduler())
        evaluator.start()        # inside a running event loop
        ...
        await evaluator.stop()
    """

    def __init__(
        self,
        store: AlertStore,
        queue: TriggerQueue,
        dispatcher: Dispatcher,
        scheduler: IntervalScheduler,
        config: AlertConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._config = config or AlertConfig()
        self._clock = clock or _utc_now
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _task_names(self) -> list[str]:
        return [EVALUATE_TASK] + [flush_task_name(sev) for sev in SEVERITY_ORDER]

    def start(self) -> None:
        """Register the evaluation task and one flush task per severity.

        Calling start() while running logs a warning and does nothing.
        """
        if self._running:
            logger.warning("Alert evaluator already running")
            return

        self._running = True
        self._scheduler.schedule(
            EVALUATE_TASK, self._config.evaluation_interval_ms, self.evaluate_all,
        )
        for severity in SEVERITY_ORDER:
            self._scheduler.schedule(
                flush_task_name(severity),
                self._config.flush_interval_ms(severity),
                partial(self.flush, severity),
            )
        logger.info(
            "Alert evaluator started",
            evaluation_interval_ms=self._config.evaluation_interval_ms,
            flush_intervals_ms={
                sev.value: self._config.flush_interval_ms(sev) for sev in SEVERITY_ORDER
            },
        )

    async def stop(self) -> None:
        """Stop scheduling immediately, then wait for in-flight ticks."""
        if not self._running:
            return
        self._running = False
        for name in self._task_names():
            self._scheduler.cancel(name)
        await self._scheduler.wait_idle()
        logger.info("Alert evaluator stopped")

    # ── Evaluation ──────────────────────────────────────────

    async def evaluate_all(self) -> EvaluationSummary:
        """
        Run one evaluation tick.

        A failure listing eligible alerts propagates (the tick is aborted
        and retried on the next interval). Per-alert failures are logged
        and counted, never raised.
        """
        start = time.perf_counter()
        alerts = await self._store.get_eligible_alerts()
        summary = EvaluationSummary()

        concurrency = self._config.evaluation_concurrency
        if concurrency <= 1:
            for alert in alerts:
                await self._evaluate_contained(alert, summary)
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def guarded(alert: Alert) -> None:
                async with semaphore:
                    await self._evaluate_contained(alert, summary)

            await asyncio.gather(*(guarded(alert) for alert in alerts))

        summary.duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info("Evaluation tick complete", eligible=len(alerts), **summary.to_dict())
        return summary

    async def _evaluate_contained(self, alert: Alert, summary: EvaluationSummary) -> None:
        try:
            outcome = await self.evaluate_alert(alert)
        except Exception as e:
            summary.errors += 1
            get_metrics().record_evaluation("error")
            logger.exception(
                "Alert evaluation failed", alert_id=alert.alert_id, error=str(e),
            )
            return
        summary.add(outcome)

    async def evaluate_alert(self, alert: Alert) -> EvaluationOutcome:
        """
        Evaluate one alert and apply the resulting transition.

        Args:
            alert: Alert as currently stored

        Returns:
            EvaluationOutcome describing what happened
        """
        metrics = get_metrics()
        start = time.perf_counter()

        snapshot = await self._store.get_metric(
            alert.project_id, alert.type, alert.window_minutes,
        )
        if snapshot.sample_count <= 0:
            # No data: leave every field untouched
            metrics.record_evaluation("no_data")
            logger.debug("No samples, skipping alert", alert_id=alert.alert_id)
            return EvaluationOutcome(
                alert_id=alert.alert_id,
                previous_state=alert.state,
                new_state=alert.state,
                skipped=True,
            )

        now = self._clock()
        previous = alert.state
        condition_met = check_threshold(snapshot.value, alert.threshold, alert.operator)
        new = next_state(
            previous,
            condition_met,
            elapsed_ms(alert.state_changed_at, now),
            self._config.pending_ms(alert),
        )
        changed = new != previous

        fire = changed and enters_firing(previous, new)
        renotify = (
            not changed
            and new == AlertState.FIRING
            and condition_met
            and cooldown_elapsed(alert.last_triggered_at, now, self._config.cooldown_ms(alert))
        )
        notify_resolve = (
            changed and new == AlertState.RESOLVED and self._config.notify_on_resolve
        )
        enqueue = fire or renotify or notify_resolve

        if enqueue:
            # Queue before persisting so a failed enqueue leaves the alert untouched
            await self._queue.enqueue(
                TriggerQueueItem.from_alert(
                    alert,
                    actual_value=snapshot.value,
                    previous_state=previous,
                    new_state=new,
                    queued_at=now,
                    sample_count=snapshot.sample_count,
                )
            )

        evaluation_ms = int((time.perf_counter() - start) * 1000)
        await self._store.update_alert_state(
            alert.alert_id,
            new,
            StateMetadata(
                value=snapshot.value,
                sample_count=snapshot.sample_count,
                evaluated_at=now,
                evaluation_ms=evaluation_ms,
                state_changed=changed,
                triggered=fire or renotify,
            ),
        )

        outcome = EvaluationOutcome(
            alert_id=alert.alert_id,
            previous_state=previous,
            new_state=new,
            value=snapshot.value,
            sample_count=snapshot.sample_count,
            renotified=renotify,
        )

        if changed:
            metrics.record_transition(previous.value, new.value)
            logger.info(
                "Alert state changed",
                alert_id=alert.alert_id,
                previous_state=previous.value,
                new_state=new.value,
                value=snapshot.value,
                threshold=alert.threshold,
            )

        if enqueue:
            metrics.record_enqueued(alert.severity.value, renotify=renotify)
            outcome.enqueued = True
            if renotify:
                logger.info("Re-notifying sustained alert", alert_id=alert.alert_id)
        elif changed and is_significant(previous, new):
            # Notifying transitions get their history record at flush time
            outcome.history_recorded = await self._record_history(
                AlertHistoryEntry(
                    alert_id=alert.alert_id,
                    value=snapshot.value,
                    threshold=alert.threshold,
                    state=new,
                    previous_state=previous,
                    triggered_at=now,
                    resolved=new == AlertState.RESOLVED,
                    resolved_at=now if new == AlertState.RESOLVED else None,
                    notified_via=[],
                    sample_count=snapshot.sample_count,
                    evaluation_ms=evaluation_ms,
                )
            )

        metrics.record_evaluation("evaluated", time.perf_counter() - start)
        return outcome

    # ── Flush ───────────────────────────────────────────────

    async def flush(
        self,
        severity: AlertSeverity,
        max_count: int | None = None,
    ) -> DispatchResult:
        """
        Dequeue and dispatch one batch for a severity.

        Dequeued items are not re-queued if dispatch fails; the loss is
        logged as an error.

        Args:
            severity: Partition to drain
            max_count: Batch size (default ``flush_batch_size``)

        Returns:
            DispatchResult for the batch
        """
        severity = AlertSeverity(severity)
        batch_size = max_count if max_count is not None else self._config.flush_batch_size
        items = await self._queue.dequeue(severity, batch_size)
        if not items:
            return DispatchResult.empty()

        start = time.perf_counter()
        try:
            result = await self._dispatcher.dispatch(items)
        except Exception as e:
            # Items are already dequeued; history below must still be written
            result = batch_failure(items, f"Dispatch failed: {str(e) or type(e).__name__}")
        get_metrics().record_dispatch(
            severity.value, result.sent, result.failed, time.perf_counter() - start,
        )

        if result.failed:
            logger.error(
                "Notifications not delivered, dropping",
                severity=severity.value,
                failed=result.failed,
                errors=result.errors,
            )
        else:
            logger.info("Flushed trigger queue", severity=severity.value, sent=result.sent)

        delivered_at = self._clock()
        for index, item in enumerate(items):
            item_result = result.results[index] if index < len(result.results) else None
            notified_via = list(item_result.notified_via) if item_result else []
            resolved = item.new_state == AlertState.RESOLVED

            await self._record_history(
                AlertHistoryEntry(
                    alert_id=item.alert_id,
                    value=item.actual_value,
                    threshold=item.threshold,
                    state=item.new_state,
                    previous_state=item.previous_state,
                    triggered_at=item.queued_at,
                    resolved=resolved,
                    resolved_at=item.queued_at if resolved else None,
                    notified_via=notified_via,
                    sample_count=item.sample_count,
                )
            )

            if notified_via and item.new_state == AlertState.FIRING:
                try:
                    await self._store.mark_triggered(item.alert_id, delivered_at)
                except Exception as e:
                    logger.error(
                        "Failed to mark alert triggered",
                        alert_id=item.alert_id,
                        error=str(e),
                    )

        return result

    async def _record_history(self, entry: AlertHistoryEntry) -> bool:
        """Append history; failures are logged and do not roll anything back."""
        try:
            await self._store.record_history(entry)
            return True
        except Exception as e:
            get_metrics().record_history_error()
            logger.error(
                "Failed to record alert history",
                alert_id=entry.alert_id,
                state=entry.state.value,
                error=str(e),
            )
            return False
