"""Alert evaluation and notification dispatch.

Components:
- Alert / TriggerQueueItem / AlertPayload: Dataclasses for alerts and their notifications
- AlertState / AlertSeverity / AlertOperator / AlertType / ChannelProvider: String enums
- AlertConfig / NotificationConfig: Pydantic settings for timing and delivery
- state_machine: Pure transition rules (threshold, pending debounce, cooldown)
- AlertStore / InMemoryAlertStore / PostgresAlertStore: Persistence of alert state and history
- TriggerQueue / MemoryTriggerQueue / RedisTriggerQueue: Severity-partitioned FIFO
- ChannelAdapter and its Discord/Slack/Webhook/PagerDuty/Email implementations
- AdapterRegistry: Provider → adapter lookup
- Dispatcher / DirectDispatcher / RateLimitedDispatcher / HttpBatchDispatcher: Batch delivery
- CircuitBreaker: Per-channel resilience for rate-limited dispatch
- IntervalScheduler: Non-overlapping recurring tasks
- AlertEvaluator: Orchestrates evaluation ticks and per-severity flushes
"""

from alert_engine.alerts.channels import (
    ChannelAdapter,
    CircuitBreaker,
    CircuitState,
    DiscordAdapter,
    EmailAdapter,
    HttpChannelAdapter,
    PagerDutyAdapter,
    SlackAdapter,
    WebhookAdapter,
)
from alert_engine.alerts.config import AlertConfig, NotificationConfig
from alert_engine.alerts.dispatcher import (
    DirectDispatcher,
    Dispatcher,
    HttpBatchDispatcher,
    RateLimitedDispatcher,
    create_dispatcher,
)
from alert_engine.alerts.evaluator import (
    AlertEvaluator,
    EvaluationOutcome,
    EvaluationSummary,
)
from alert_engine.alerts.exceptions import (
    AdapterNotRegisteredError,
    AlertingError,
    ChannelConfigError,
    DispatchTransportError,
    UnknownSeverityError,
)
from alert_engine.alerts.registry import AdapterRegistry, create_default_registry
from alert_engine.alerts.repository import PostgresAlertStore
from alert_engine.alerts.scheduler import IntervalScheduler
from alert_engine.alerts.schemas import (
    SEVERITY_ORDER,
    Alert,
    AlertHistoryEntry,
    AlertOperator,
    AlertPayload,
    AlertSeverity,
    AlertState,
    AlertType,
    ChannelProvider,
    DispatchResult,
    ItemDeliveryResult,
    MetricSnapshot,
    NotificationChannel,
    SendResult,
    StateMetadata,
    TriggerQueueItem,
)
from alert_engine.alerts.store import AlertStore, InMemoryAlertStore
from alert_engine.alerts.trigger_queue import (
    MemoryTriggerQueue,
    RedisTriggerQueue,
    TriggerQueue,
)

__all__ = [
    "AdapterNotRegisteredError",
    "AdapterRegistry",
    "Alert",
    "AlertConfig",
    "AlertEvaluator",
    "AlertHistoryEntry",
    "AlertOperator",
    "AlertPayload",
    "AlertSeverity",
    "AlertState",
    "AlertStore",
    "AlertType",
    "AlertingError",
    "ChannelAdapter",
    "ChannelConfigError",
    "ChannelProvider",
    "CircuitBreaker",
    "CircuitState",
    "DirectDispatcher",
    "DiscordAdapter",
    "DispatchResult",
    "DispatchTransportError",
    "Dispatcher",
    "EmailAdapter",
    "EvaluationOutcome",
    "EvaluationSummary",
    "HttpBatchDispatcher",
    "HttpChannelAdapter",
    "InMemoryAlertStore",
    "IntervalScheduler",
    "ItemDeliveryResult",
    "MemoryTriggerQueue",
    "MetricSnapshot",
    "NotificationChannel",
    "NotificationConfig",
    "PagerDutyAdapter",
    "PostgresAlertStore",
    "RateLimitedDispatcher",
    "RedisTriggerQueue",
    "SEVERITY_ORDER",
    "SendResult",
    "SlackAdapter",
    "StateMetadata",
    "TriggerQueue",
    "TriggerQueueItem",
    "UnknownSeverityError",
    "WebhookAdapter",
    "create_default_registry",
    "create_dispatcher",
]
