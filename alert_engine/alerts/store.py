"""Alert store interface and in-memory implementation.

The store is the only component that persists alert state. The evaluator
reads eligible alerts and metrics through it and writes transitions and
history back; the direct dispatcher resolves channels through it.
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from alert_engine.alerts.schemas import (
    Alert,
    AlertHistoryEntry,
    AlertSeverity,
    AlertState,
    AlertType,
    MetricSnapshot,
    NotificationChannel,
    StateMetadata,
)

logger = logging.getLogger(__name__)

MetricSource = Callable[[str, AlertType, int], MetricSnapshot]


class AlertStore(ABC):
    """Data access for alerts, metrics, channels and history."""

    @abstractmethod
    async def get_eligible_alerts(
        self,
        severity: AlertSeverity | None = None,
    ) -> list[Alert]:
        """Return enabled alerts, optionally for one severity only."""

    @abstractmethod
    async def get_metric(
        self,
        project_id: str,
        alert_type: AlertType,
        window_minutes: int,
    ) -> MetricSnapshot:
        """Return the metric value and sample count for a trailing window."""

    @abstractmethod
    async def update_alert_state(
        self,
        alert_id: str,
        state: AlertState,
        meta: StateMetadata,
    ) -> None:
        """Persist an evaluation result.

        Always sets ``last_evaluated_at``; sets ``state_changed_at`` only when
        ``meta.state_changed`` and ``last_triggered_at`` only when
        ``meta.triggered``.
        """

    @abstractmethod
    async def record_history(self, entry: AlertHistoryEntry) -> None:
        """Append an audit record."""

    @abstractmethod
    async def get_channels(self, channel_ids: list[str]) -> list[NotificationChannel]:
        """Resolve channels by id. Unknown ids are omitted."""

    @abstractmethod
    async def mark_triggered(self, alert_id: str, at: datetime) -> None:
        """Record that a notification for the alert was delivered."""

    async def health_check(self) -> bool:
        return True


class InMemoryAlertStore(AlertStore):
    """Process-local store for development runs and tests.

    Metric values come from ``metric_source`` when given, otherwise from
    values registered with ``set_metric``. Alerts are copied on the way
    in and out so callers cannot mutate stored state.
    """

    def __init__(
        self,
        alerts: list[Alert] | None = None,
        channels: list[NotificationChannel] | None = None,
        metric_source: MetricSource | None = None,
    ) -> None:
        self._alerts: dict[str, Alert] = {}
        self._channels: dict[str, NotificationChannel] = {}
        self._metrics: dict[tuple[str, AlertType], MetricSnapshot] = {}
        self._metric_source = metric_source
        self.history: list[AlertHistoryEntry] = []

        for alert in alerts or []:
            self.add_alert(alert)
        for channel in channels or []:
            self.add_channel(channel)

    def add_alert(self, alert: Alert) -> None:
        self._alerts[alert.alert_id] = copy.deepcopy(alert)

    def add_channel(self, channel: NotificationChannel) -> None:
        self._channels[channel.channel_id] = channel

    def set_metric(
        self,
        project_id: str,
        alert_type: AlertType | str,
        value: float,
        sample_count: int = 1,
    ) -> None:
        self._metrics[(project_id, AlertType(alert_type))] = MetricSnapshot(
            value=value, sample_count=sample_count,
        )

    def get_alert(self, alert_id: str) -> Alert:
        """Copy of a stored alert, for inspection."""
        return copy.deepcopy(self._alerts[alert_id])

    async def get_eligible_alerts(
        self,
        severity: AlertSeverity | None = None,
    ) -> list[Alert]:
        return [
            copy.deepcopy(alert)
            for alert in self._alerts.values()
            if alert.enabled and (severity is None or alert.severity == severity)
        ]

    async def get_metric(
        self,
        project_id: str,
        alert_type: AlertType,
        window_minutes: int,
    ) -> MetricSnapshot:
        if self._metric_source is not None:
            return self._metric_source(project_id, alert_type, window_minutes)
        return self._metrics.get(
            (project_id, AlertType(alert_type)),
            MetricSnapshot(value=0.0, sample_count=0),
        )

    async def update_alert_state(
        self,
        alert_id: str,
        state: AlertState,
        meta: StateMetadata,
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise KeyError(f"Alert {alert_id} not found")

        alert.state = AlertState(state)
        alert.last_evaluated_at = meta.evaluated_at
        alert.last_value = meta.value
        if meta.state_changed:
            alert.state_changed_at = meta.evaluated_at
        if meta.triggered:
            alert.last_triggered_at = meta.evaluated_at

    async def record_history(self, entry: AlertHistoryEntry) -> None:
        self.history.append(entry)

    async def get_channels(self, channel_ids: list[str]) -> list[NotificationChannel]:
        return [
            self._channels[cid] for cid in dict.fromkeys(channel_ids)
            if cid in self._channels
        ]

    async def mark_triggered(self, alert_id: str, at: datetime) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            logger.warning("mark_triggered for unknown alert %s", alert_id)
            return
        alert.last_triggered_at = at
