"""Observability layer - logging and metrics."""

from alert_engine.observability.logging import setup_logging
from alert_engine.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
