"""
Prometheus metrics for monitoring the alert engine.

Defines and exposes metrics for:
- Alert evaluation throughput and latency
- State transitions
- Trigger queue depth per severity
- Notification delivery by provider
- Scheduler tick errors and skips

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from alert_engine.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsCollector:
    """
    Prometheus metrics collector for the alert engine.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_evaluation("evaluated", latency=0.02)
        metrics.record_transition("PENDING", "FIRING")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Evaluation
        self.evaluations = Counter(
            "alert_engine_evaluations_total",
            "Total alert evaluations",
            ["result"],  # result: evaluated, no_data, error
        )

        self.evaluation_latency = Histogram(
            "alert_engine_evaluation_latency_seconds",
            "Time to evaluate a single alert",
            buckets=LATENCY_BUCKETS,
        )

        self.tick_latency = Histogram(
            "alert_engine_tick_latency_seconds",
            "Duration of a scheduled tick",
            ["task"],
            buckets=LATENCY_BUCKETS,
        )

        self.state_transitions = Counter(
            "alert_engine_state_transitions_total",
            "Total alert state transitions",
            ["from_state", "to_state"],
        )

        # Trigger queue
        self.items_enqueued = Counter(
            "alert_engine_trigger_items_enqueued_total",
            "Total trigger queue items enqueued",
            ["severity", "kind"],  # kind: fire, renotify
        )

        self.queue_depth = Gauge(
            "alert_engine_trigger_queue_depth",
            "Number of items waiting in the trigger queue",
            ["severity"],
        )

        # Dispatch
        self.notifications = Counter(
            "alert_engine_notifications_total",
            "Total per-channel notification attempts",
            ["provider", "status"],  # status: success, failed
        )

        self.dispatch_items = Counter(
            "alert_engine_dispatch_items_total",
            "Total dispatched items by outcome",
            ["severity", "outcome"],  # outcome: sent, failed
        )

        self.dispatch_latency = Histogram(
            "alert_engine_dispatch_latency_seconds",
            "Time to dispatch one flush batch",
            ["severity"],
            buckets=LATENCY_BUCKETS,
        )

        self.circuit_state = Gauge(
            "alert_engine_channel_circuit_state",
            "Circuit breaker state per channel (0=closed, 1=half_open, 2=open)",
            ["channel"],
        )

        # Scheduler
        self.tick_errors = Counter(
            "alert_engine_tick_errors_total",
            "Total scheduled tick failures",
            ["task"],
        )

        self.ticks_skipped = Counter(
            "alert_engine_ticks_skipped_total",
            "Ticks skipped because the previous run was still in flight",
            ["task"],
        )

        self.history_errors = Counter(
            "alert_engine_history_errors_total",
            "Failures writing alert history records",
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_evaluation(self, result: str, latency: float | None = None) -> None:
        """
        Record one alert evaluation.

        Args:
            result: evaluated, no_data, or error
            latency: Optional evaluation latency in seconds
        """
        self.evaluations.labels(result=result).inc()
        if latency is not None:
            self.evaluation_latency.observe(latency)

    def record_transition(self, from_state: str, to_state: str) -> None:
        """Record an alert state transition."""
        self.state_transitions.labels(from_state=from_state, to_state=to_state).inc()

    def record_enqueued(self, severity: str, renotify: bool = False) -> None:
        """Record a trigger queue insertion."""
        kind = "renotify" if renotify else "fire"
        self.items_enqueued.labels(severity=severity, kind=kind).inc()

    def set_queue_depth(self, severity: str, depth: int) -> None:
        """
        Set trigger queue depth metric.

        Args:
            severity: Severity partition
            depth: Number of waiting items
        """
        self.queue_depth.labels(severity=severity).set(depth)

    def record_notification(self, provider: str, success: bool) -> None:
        """Record one per-channel delivery attempt."""
        status = "success" if success else "failed"
        self.notifications.labels(provider=provider, status=status).inc()

    def record_dispatch(
        self,
        severity: str,
        sent: int,
        failed: int,
        latency: float,
    ) -> None:
        """
        Record the outcome of one flush batch.

        Args:
            severity: Severity partition flushed
            sent: Items delivered to at least one channel
            failed: Items not delivered
            latency: Batch dispatch latency in seconds
        """
        if sent:
            self.dispatch_items.labels(severity=severity, outcome="sent").inc(sent)
        if failed:
            self.dispatch_items.labels(severity=severity, outcome="failed").inc(failed)
        self.dispatch_latency.labels(severity=severity).observe(latency)

    def set_circuit_state(self, channel: str, state: str) -> None:
        """Set circuit breaker state gauge for a channel."""
        self.circuit_state.labels(channel=channel).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def record_tick(self, task: str, latency: float) -> None:
        """Record a completed scheduler tick."""
        self.tick_latency.labels(task=task).observe(latency)

    def record_tick_error(self, task: str) -> None:
        """Record a failed scheduler tick."""
        self.tick_errors.labels(task=task).inc()

    def record_tick_skipped(self, task: str) -> None:
        """Record a tick skipped due to overlap."""
        self.ticks_skipped.labels(task=task).inc()

    def record_history_error(self) -> None:
        """Record a failed history write."""
        self.history_errors.inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
