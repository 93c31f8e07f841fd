"""Alert engine configuration.

Controls evaluation cadence, flush batching, and the per-severity
pending/cooldown/flush defaults. All settings can be overridden via
``ALERTS_*`` environment variables. Notification delivery settings live
in ``NotificationConfig`` (``NOTIFICATIONS_*``).
"""

from dataclasses import dataclass

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from alert_engine.alerts.schemas import Alert, AlertSeverity

MS_PER_MINUTE = 60_000


@dataclass(frozen=True)
class SeverityDefaults:
    """Fallback timings for one severity tier."""

    pending_minutes: int
    cooldown_minutes: int
    flush_interval_ms: int


SEVERITY_DEFAULTS: dict[AlertSeverity, SeverityDefaults] = {
    AlertSeverity.CRITICAL: SeverityDefaults(
        pending_minutes=1, cooldown_minutes=5, flush_interval_ms=10_000,
    ),
    AlertSeverity.HIGH: SeverityDefaults(
        pending_minutes=2, cooldown_minutes=15, flush_interval_ms=30_000,
    ),
    AlertSeverity.MEDIUM: SeverityDefaults(
        pending_minutes=3, cooldown_minutes=30, flush_interval_ms=60_000,
    ),
    AlertSeverity.LOW: SeverityDefaults(
        pending_minutes=5, cooldown_minutes=60, flush_interval_ms=300_000,
    ),
}


class AlertConfig(BaseSettings):
    """Configuration for alert evaluation and flushing."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    evaluation_interval_ms: int = Field(
        default=60_000,
        ge=1_000,
        description="Milliseconds between evaluation ticks",
    )
    evaluation_concurrency: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Alerts evaluated in parallel per tick (1 = sequential)",
    )
    notify_on_resolve: bool = Field(
        default=False,
        description="Also queue a notification when a FIRING alert resolves",
    )
    flush_batch_size: int = Field(
        default=50,
        ge=1,
        le=1_000,
        description="Maximum items dequeued per flush",
    )

    # Per-severity flush interval overrides (None = severity default)
    flush_interval_critical_ms: int | None = Field(default=None, ge=100)
    flush_interval_high_ms: int | None = Field(default=None, ge=100)
    flush_interval_medium_ms: int | None = Field(default=None, ge=100)
    flush_interval_low_ms: int | None = Field(default=None, ge=100)

    def pending_ms(self, alert: Alert) -> int:
        """Debounce duration for an alert in milliseconds."""
        minutes = alert.pending_minutes
        if minutes is None:
            minutes = SEVERITY_DEFAULTS[alert.severity].pending_minutes
        return minutes * MS_PER_MINUTE

    def cooldown_ms(self, alert: Alert) -> int:
        """Minimum gap between notifications for a sustained FIRING alert."""
        minutes = alert.cooldown_minutes
        if minutes is None:
            minutes = SEVERITY_DEFAULTS[alert.severity].cooldown_minutes
        return minutes * MS_PER_MINUTE

    def flush_interval_ms(self, severity: AlertSeverity | str) -> int:
        severity = AlertSeverity(severity)
        override = getattr(self, f"flush_interval_{severity.value.lower()}_ms")
        if override is not None:
            return override
        return SEVERITY_DEFAULTS[severity].flush_interval_ms


class NotificationConfig(BaseSettings):
    """Configuration for notification dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for adapter and delivery-boundary HTTP calls",
    )
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum send attempts per channel per item (rate-limited strategy)",
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="First retry delay",
    )
    backoff_max_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound on a single retry delay",
    )
    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before a channel's circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=1.0,
        description="Seconds before an open circuit allows a probe",
    )
    min_send_interval_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum spacing between sends to the same channel",
    )
