"""Retry helpers shared by delivery and queue code."""

from alert_engine.queues.backoff import ExponentialBackoff

__all__ = ["ExponentialBackoff"]
