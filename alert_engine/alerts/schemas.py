"""Schema definitions for alert rules, queue items and delivery results.

``Alert`` maps 1:1 to the ``alerts`` table. ``TriggerQueueItem`` is the
record that travels through the trigger queue and across the delivery
boundary; its wire format uses camelCase keys because that is what the
batch trigger endpoint accepts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class AlertState(str, Enum):
    """Evaluation state of an alert rule."""

    INACTIVE = "INACTIVE"
    PENDING = "PENDING"
    FIRING = "FIRING"
    RESOLVED = "RESOLVED"


class AlertSeverity(str, Enum):
    """Urgency tier. Drives pending, cooldown and flush defaults."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AlertOperator(str, Enum):
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"


class AlertType(str, Enum):
    """Measured signal an alert compares against its threshold."""

    ERROR_RATE = "ERROR_RATE"
    LATENCY_P50 = "LATENCY_P50"
    LATENCY_P95 = "LATENCY_P95"
    LATENCY_P99 = "LATENCY_P99"


class ChannelProvider(str, Enum):
    """Supported notification providers."""

    GMAIL = "GMAIL"
    DISCORD = "DISCORD"
    SLACK = "SLACK"
    PAGERDUTY = "PAGERDUTY"
    WEBHOOK = "WEBHOOK"


# Flush order when every tier is due at once
SEVERITY_ORDER: tuple[AlertSeverity, ...] = (
    AlertSeverity.CRITICAL,
    AlertSeverity.HIGH,
    AlertSeverity.MEDIUM,
    AlertSeverity.LOW,
)

ALERT_TYPE_LABELS: dict[AlertType, str] = {
    AlertType.ERROR_RATE: "Error Rate",
    AlertType.LATENCY_P50: "Latency (P50)",
    AlertType.LATENCY_P95: "Latency (P95)",
    AlertType.LATENCY_P99: "Latency (P99)",
}


def format_alert_value(alert_type: AlertType | str, value: float) -> str:
    """Format a metric value for display ("7.50%" or "250ms")."""
    if AlertType(alert_type) == AlertType.ERROR_RATE:
        return f"{value:.2f}%"
    return f"{value:.0f}ms"


def operator_symbol(operator: AlertOperator | str) -> str:
    return ">" if AlertOperator(operator) == AlertOperator.GREATER_THAN else "<"


@dataclass
class Alert:
    """An alert rule from the alerts table.

    Attributes:
        alert_id: Rule identifier.
        project_id: Owning project.
        project_name: Display name of the owning project.
        name: Human-readable rule name.
        type: Measured signal.
        threshold: Value the signal is compared against.
        operator: Comparison direction.
        severity: Urgency tier.
        window_minutes: Metric aggregation window.
        pending_minutes: Debounce override (None = severity default).
        cooldown_minutes: Re-notify override (None = severity default).
        state: Current evaluation state.
        state_changed_at: Last time ``state`` changed.
        last_evaluated_at: Last evaluation with data.
        last_triggered_at: Last time a notification was queued or sent.
        last_value: Last observed metric value.
        channel_ids: Linked notification channels.
        enabled: Disabled rules are never evaluated.
    """

    alert_id: str
    project_id: str
    name: str
    type: AlertType
    threshold: float
    project_name: str = ""
    operator: AlertOperator = AlertOperator.GREATER_THAN
    severity: AlertSeverity = AlertSeverity.MEDIUM
    window_minutes: int = 5
    pending_minutes: int | None = None
    cooldown_minutes: int | None = None
    state: AlertState = AlertState.INACTIVE
    state_changed_at: datetime | None = None
    last_evaluated_at: datetime | None = None
    last_triggered_at: datetime | None = None
    last_value: float | None = None
    channel_ids: list[str] = field(default_factory=list)
    enabled: bool = True

    def __post_init__(self) -> None:
        # Enum constructors raise ValueError with the offending value
        self.type = AlertType(self.type)
        self.operator = AlertOperator(self.operator)
        self.severity = AlertSeverity(self.severity)
        self.state = AlertState(self.state)
        if self.window_minutes < 1:
            raise ValueError(
                f"window_minutes must be >= 1, got {self.window_minutes}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "alert_id": self.alert_id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "name": self.name,
            "type": self.type.value,
            "threshold": self.threshold,
            "operator": self.operator.value,
            "severity": self.severity.value,
            "window_minutes": self.window_minutes,
            "pending_minutes": self.pending_minutes,
            "cooldown_minutes": self.cooldown_minutes,
            "state": self.state.value,
            "state_changed_at": _isoformat(self.state_changed_at),
            "last_evaluated_at": _isoformat(self.last_evaluated_at),
            "last_triggered_at": _isoformat(self.last_triggered_at),
            "last_value": self.last_value,
            "channel_ids": list(self.channel_ids),
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        """Create an Alert from a dictionary.

        Args:
            data: Dictionary with alert fields.

        Returns:
            Alert instance.
        """
        return cls(
            alert_id=data["alert_id"],
            project_id=data["project_id"],
            project_name=data.get("project_name", ""),
            name=data["name"],
            type=data["type"],
            threshold=float(data["threshold"]),
            operator=data.get("operator", AlertOperator.GREATER_THAN),
            severity=data.get("severity", AlertSeverity.MEDIUM),
            window_minutes=data.get("window_minutes", 5),
            pending_minutes=data.get("pending_minutes"),
            cooldown_minutes=data.get("cooldown_minutes"),
            state=data.get("state", AlertState.INACTIVE),
            state_changed_at=_parse_datetime(data.get("state_changed_at")),
            last_evaluated_at=_parse_datetime(data.get("last_evaluated_at")),
            last_triggered_at=_parse_datetime(data.get("last_triggered_at")),
            last_value=data.get("last_value"),
            channel_ids=list(data.get("channel_ids") or []),
            enabled=data.get("enabled", True),
        )


@dataclass
class MetricSnapshot:
    """Metric value for one alert window at evaluation time. Not persisted."""

    value: float
    sample_count: int
    window_start: datetime | None = None
    window_end: datetime | None = None


@dataclass
class StateMetadata:
    """Bookkeeping written alongside an alert state update.

    Attributes:
        value: Observed metric value.
        sample_count: Number of samples behind the value.
        evaluated_at: Evaluation timestamp (becomes ``last_evaluated_at``).
        evaluation_ms: Wall time spent evaluating the alert.
        state_changed: Set ``state_changed_at`` to ``evaluated_at``.
        triggered: Set ``last_triggered_at`` to ``evaluated_at``.
    """

    value: float
    sample_count: int
    evaluated_at: datetime = field(default_factory=_utc_now)
    evaluation_ms: int = 0
    state_changed: bool = False
    triggered: bool = False


@dataclass
class TriggerQueueItem:
    """A pending notification waiting in the trigger queue."""

    alert_id: str
    alert_name: str
    project_id: str
    project_name: str
    severity: AlertSeverity
    metric_type: AlertType
    threshold: float
    actual_value: float
    operator: AlertOperator
    previous_state: AlertState
    new_state: AlertState
    queued_at: datetime = field(default_factory=_utc_now)
    channel_ids: list[str] = field(default_factory=list)
    sample_count: int | None = None

    def __post_init__(self) -> None:
        self.severity = AlertSeverity(self.severity)
        self.metric_type = AlertType(self.metric_type)
        self.operator = AlertOperator(self.operator)
        self.previous_state = AlertState(self.previous_state)
        self.new_state = AlertState(self.new_state)

    @property
    def is_renotification(self) -> bool:
        """True for repeat notifications of a sustained FIRING alert."""
        return (
            self.previous_state == AlertState.FIRING
            and self.new_state == AlertState.FIRING
        )

    @classmethod
    def from_alert(
        cls,
        alert: Alert,
        actual_value: float,
        previous_state: AlertState,
        new_state: AlertState,
        queued_at: datetime,
        sample_count: int | None = None,
    ) -> "TriggerQueueItem":
        return cls(
            alert_id=alert.alert_id,
            alert_name=alert.name,
            project_id=alert.project_id,
            project_name=alert.project_name,
            severity=alert.severity,
            metric_type=alert.type,
            threshold=alert.threshold,
            actual_value=actual_value,
            operator=alert.operator,
            previous_state=previous_state,
            new_state=new_state,
            queued_at=queued_at,
            channel_ids=list(alert.channel_ids),
            sample_count=sample_count,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire format."""
        data: dict[str, Any] = {
            "alertId": self.alert_id,
            "alertName": self.alert_name,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "severity": self.severity.value,
            "metricType": self.metric_type.value,
            "threshold": self.threshold,
            "actualValue": self.actual_value,
            "operator": self.operator.value,
            "previousState": self.previous_state.value,
            "newState": self.new_state.value,
            "queuedAt": self.queued_at.isoformat(),
            "channelIds": list(self.channel_ids),
        }
        if self.sample_count is not None:
            data["sampleCount"] = self.sample_count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriggerQueueItem":
        """Parse the camelCase wire format."""
        return cls(
            alert_id=data["alertId"],
            alert_name=data["alertName"],
            project_id=data["projectId"],
            project_name=data["projectName"],
            severity=data["severity"],
            metric_type=data["metricType"],
            threshold=float(data["threshold"]),
            actual_value=float(data["actualValue"]),
            operator=data["operator"],
            previous_state=data["previousState"],
            new_state=data["newState"],
            queued_at=_parse_datetime(data["queuedAt"]),
            channel_ids=list(data.get("channelIds") or []),
            sample_count=data.get("sampleCount"),
        )


@dataclass
class AlertHistoryEntry:
    """Append-only audit record for a significant transition."""

    alert_id: str
    value: float
    threshold: float
    state: AlertState
    previous_state: AlertState
    triggered_at: datetime = field(default_factory=_utc_now)
    resolved: bool = False
    resolved_at: datetime | None = None
    notified_via: list[str] = field(default_factory=list)
    sample_count: int | None = None
    evaluation_ms: int | None = None

    def __post_init__(self) -> None:
        self.state = AlertState(self.state)
        self.previous_state = AlertState(self.previous_state)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "value": self.value,
            "threshold": self.threshold,
            "state": self.state.value,
            "previous_state": self.previous_state.value,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved": self.resolved,
            "resolved_at": _isoformat(self.resolved_at),
            "notified_via": list(self.notified_via),
            "sample_count": self.sample_count,
            "evaluation_ms": self.evaluation_ms,
        }


@dataclass
class NotificationChannel:
    """A configured notification destination."""

    channel_id: str
    name: str
    provider: ChannelProvider
    config: dict[str, Any] = field(default_factory=dict)
    verified: bool = False

    def __post_init__(self) -> None:
        self.provider = ChannelProvider(self.provider)

    @property
    def label(self) -> str:
        """``PROVIDER:name`` as recorded in ``notified_via``."""
        return f"{self.provider.value}:{self.name}"


@dataclass
class AlertPayload:
    """Provider-neutral notification content handed to adapters."""

    alert_id: str
    alert_name: str
    project_id: str
    project_name: str
    type: AlertType
    threshold: float
    actual_value: float
    operator: AlertOperator
    triggered_at: datetime
    severity: AlertSeverity | None = None
    state: AlertState | None = None
    dashboard_url: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.state == AlertState.RESOLVED

    @classmethod
    def from_item(
        cls,
        item: TriggerQueueItem,
        dashboard_base_url: str | None = None,
    ) -> "AlertPayload":
        dashboard_url = None
        if dashboard_base_url:
            dashboard_url = (
                f"{dashboard_base_url.rstrip('/')}/projects/{item.project_id}/alerts"
            )
        return cls(
            alert_id=item.alert_id,
            alert_name=item.alert_name,
            project_id=item.project_id,
            project_name=item.project_name,
            type=item.metric_type,
            threshold=item.threshold,
            actual_value=item.actual_value,
            operator=item.operator,
            triggered_at=item.queued_at,
            severity=item.severity,
            state=item.new_state,
            dashboard_url=dashboard_url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "alertName": self.alert_name,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "type": self.type.value,
            "threshold": self.threshold,
            "actualValue": self.actual_value,
            "operator": self.operator.value,
            "triggeredAt": self.triggered_at.isoformat(),
            "severity": self.severity.value if self.severity else None,
            "state": self.state.value if self.state else None,
            "dashboardUrl": self.dashboard_url,
        }


@dataclass
class SendResult:
    """Outcome of one adapter send."""

    success: bool
    provider: ChannelProvider
    error: str | None = None
    message_id: str | None = None


@dataclass
class ItemDeliveryResult:
    """Per-item delivery outcome within a dispatched batch."""

    alert_id: str
    notified_via: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.notified_via) or not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "success": self.success,
            "notifiedVia": list(self.notified_via),
            "errors": list(self.errors),
        }


@dataclass
class DispatchResult:
    """Aggregate outcome of dispatching one batch.

    ``results`` holds one entry per input item, in input order.
    """

    success: bool
    sent: int
    failed: int
    errors: list[str] = field(default_factory=list)
    results: list[ItemDeliveryResult] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "DispatchResult":
        return cls(success=True, sent=0, failed=0)

    @classmethod
    def from_results(cls, results: list[ItemDeliveryResult]) -> "DispatchResult":
        sent = sum(1 for r in results if r.success)
        errors = [f"{r.alert_id}: {e}" for r in results for e in r.errors]
        return cls(
            success=sent == len(results),
            sent=sent,
            failed=len(results) - sent,
            errors=errors,
            results=results,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "sent": self.sent,
            "failed": self.failed,
            "errors": list(self.errors),
        }
