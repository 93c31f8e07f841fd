"""Internal batch delivery endpoint called by the HTTP dispatcher."""

import time

import structlog
from fastapi import APIRouter, Depends

from alert_engine.alerts.dispatcher import Dispatcher
from alert_engine.api.auth import verify_internal_secret
from alert_engine.api.dependencies import get_dispatcher
from alert_engine.api.models import (
    ErrorResponse,
    TriggerBatchRequest,
    TriggerBatchResponse,
    TriggerItemResult,
)

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/internal/alerts/trigger-batch",
    response_model=TriggerBatchResponse,
    response_model_exclude_none=True,
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid internal secret"},
        422: {"model": ErrorResponse, "description": "Invalid batch"},
    },
    summary="Deliver a batch of alert notifications",
    description=(
        "Fan each queued notification out to its linked channels. Channel "
        "failures are reported per item; the batch itself succeeds."
    ),
)
async def trigger_batch(
    request: TriggerBatchRequest,
    _secret: str = Depends(verify_internal_secret),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> TriggerBatchResponse:
    if not request.alerts:
        return TriggerBatchResponse(success=True, results=[])

    start_time = time.perf_counter()
    items = [alert.to_item() for alert in request.alerts]
    result = await dispatcher.dispatch(items)

    logger.info(
        "Trigger batch delivered",
        processed=len(items),
        successful=result.sent,
        failed=result.failed,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )

    return TriggerBatchResponse(
        success=True,
        processed=len(items),
        successful=result.sent,
        failed=result.failed,
        results=[
            TriggerItemResult(
                alert_id=r.alert_id,
                success=r.success,
                notified_via=r.notified_via,
                errors=r.errors,
            )
            for r in result.results
        ],
    )
