"""
Health check endpoint covering the alert store and trigger queue.
"""

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends

from alert_engine.alerts.registry import AdapterRegistry
from alert_engine.alerts.store import AlertStore
from alert_engine.alerts.trigger_queue import TriggerQueue
from alert_engine.api.dependencies import get_queue, get_registry, get_store
from alert_engine.api.models import API_VERSION, ComponentHealth, HealthResponse

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check(probe: Callable[[], Awaitable[bool]]) -> ComponentHealth:
    """Run a health probe and measure latency."""
    start = time.perf_counter()
    try:
        healthy = await probe()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.warning("Health probe failed", error=str(e))
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


@router.get(
    "/health",
    response_model=HealthResponse,
    response_model_exclude_none=True,
    summary="Service health check",
    description="Check the health of the service and its dependencies.",
)
async def health_check(
    store: AlertStore = Depends(get_store),
    queue: TriggerQueue = Depends(get_queue),
    registry: AdapterRegistry = Depends(get_registry),
) -> HealthResponse:
    """
    Check service health.

    Status logic:
    - unhealthy: alert store is down
    - degraded: trigger queue is down
    - healthy: all components operational
    """
    components = {
        "store": await _check(store.health_check),
        "queue": await _check(queue.health_check),
    }

    if components["store"].status == "unhealthy":
        status = "unhealthy"
    elif components["queue"].status == "unhealthy":
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        components=components,
        providers=[p.value for p in registry.providers],
        version=API_VERSION,
    )
