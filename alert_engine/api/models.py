"""
Request and response models for the delivery API.

Wire format is camelCase, matching the trigger queue items the
HTTP dispatcher posts.
"""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from alert_engine.alerts.schemas import (
    AlertOperator,
    AlertSeverity,
    AlertState,
    AlertType,
    TriggerQueueItem,
)

API_VERSION = "0.1.0"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TriggerItemModel(_CamelModel):
    """One queued notification in a trigger batch."""

    alert_id: str = Field(..., alias="alertId", min_length=1)
    alert_name: str = Field(..., alias="alertName")
    project_id: str = Field(..., alias="projectId", min_length=1)
    project_name: str = Field(default="", alias="projectName")
    severity: AlertSeverity
    metric_type: AlertType = Field(..., alias="metricType")
    threshold: float
    actual_value: float = Field(..., alias="actualValue")
    operator: AlertOperator
    previous_state: AlertState = Field(..., alias="previousState")
    new_state: AlertState = Field(..., alias="newState")
    queued_at: dt.datetime = Field(..., alias="queuedAt")
    channel_ids: list[str] = Field(default_factory=list, alias="channelIds")
    sample_count: int | None = Field(default=None, alias="sampleCount", ge=0)

    def to_item(self) -> TriggerQueueItem:
        return TriggerQueueItem(
            alert_id=self.alert_id,
            alert_name=self.alert_name,
            project_id=self.project_id,
            project_name=self.project_name,
            severity=self.severity,
            metric_type=self.metric_type,
            threshold=self.threshold,
            actual_value=self.actual_value,
            operator=self.operator,
            previous_state=self.previous_state,
            new_state=self.new_state,
            queued_at=self.queued_at,
            channel_ids=list(self.channel_ids),
            sample_count=self.sample_count,
        )


class TriggerBatchRequest(BaseModel):
    """Request model for batch delivery."""

    alerts: list[TriggerItemModel] = Field(
        ...,
        description="Trigger queue items to deliver",
    )


class TriggerItemResult(_CamelModel):
    """Delivery outcome for one item."""

    alert_id: str = Field(..., alias="alertId")
    success: bool
    notified_via: list[str] = Field(default_factory=list, alias="notifiedVia")
    errors: list[str] = Field(default_factory=list)


class TriggerBatchResponse(BaseModel):
    """Response model for batch delivery."""

    success: bool = Field(..., description="Whether the batch was processed")
    processed: int | None = Field(default=None, description="Items processed")
    successful: int | None = Field(default=None, description="Items delivered to at least one channel")
    failed: int | None = Field(default=None, description="Items not delivered")
    results: list[TriggerItemResult] = Field(
        default_factory=list,
        description="Per-item results in request order",
    )


class ComponentHealth(BaseModel):
    """Health of one dependency."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict | None = Field(default=None, description="Error details")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, ComponentHealth] = Field(
        default_factory=dict,
        description="Per-dependency health",
    )
    providers: list[str] = Field(
        default_factory=list,
        description="Registered channel providers",
    )
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error type",
    )
