"""Notification dispatchers.

A dispatcher takes a batch of trigger queue items and delivers each one
to its linked channels, reporting a per-item partial-success result.
Failures are contained: one channel failing never blocks its sibling
channels or the other items in the batch.

Strategies:
- DirectDispatcher: resolve channels from the store and call adapters
  concurrently (default)
- HttpBatchDispatcher: POST the whole batch to the delivery boundary
- RateLimitedDispatcher: direct fan-out guarded by per-channel circuit
  breakers, send spacing and retries with exponential backoff
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from alert_engine.alerts.channels import CircuitBreaker, CircuitState
from alert_engine.alerts.config import NotificationConfig
from alert_engine.alerts.exceptions import DispatchTransportError
from alert_engine.alerts.registry import AdapterRegistry
from alert_engine.alerts.schemas import (
    AlertPayload,
    DispatchResult,
    ItemDeliveryResult,
    NotificationChannel,
    SendResult,
    TriggerQueueItem,
)
from alert_engine.alerts.store import AlertStore
from alert_engine.config.settings import Settings
from alert_engine.observability.metrics import get_metrics
from alert_engine.queues.backoff import ExponentialBackoff

logger = logging.getLogger(__name__)

INTERNAL_SECRET_HEADER = "X-Internal-Secret"


class Dispatcher(ABC):
    """Delivers batches of trigger queue items."""

    @abstractmethod
    async def dispatch(self, items: list[TriggerQueueItem]) -> DispatchResult:
        """Deliver a batch.

        An empty batch returns ``DispatchResult.empty()`` without any I/O.
        """


def _record_delivery(result: DispatchResult) -> None:
    """Log batch results."""
    if result.failed and not result.sent:
        logger.error(
            "Dispatch failed for all %d items: %s", result.failed, result.errors,
        )
    elif result.failed:
        logger.warning(
            "Partial dispatch: sent=%d failed=%d errors=%s",
            result.sent, result.failed, result.errors,
        )
    else:
        logger.debug("Dispatched %d items", result.sent)


class DirectDispatcher(Dispatcher):
    """Fans a batch out to channel adapters in-process.

    All channels referenced by the batch are resolved with a single store
    call, then every (item, channel) pair is sent concurrently.
    """

    def __init__(
        self,
        store: AlertStore,
        registry: AdapterRegistry,
        dashboard_base_url: str | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._dashboard_base_url = dashboard_base_url

    async def dispatch(self, items: list[TriggerQueueItem]) -> DispatchResult:
        if not items:
            return DispatchResult.empty()

        channel_ids = list(dict.fromkeys(cid for item in items for cid in item.channel_ids))
        try:
            found = await self._store.get_channels(channel_ids)
        except Exception as e:
            result = batch_failure(
                items, f"Channel lookup failed: {str(e) or type(e).__name__}",
            )
            _record_delivery(result)
            return result
        channels = {ch.channel_id: ch for ch in found}

        results = await asyncio.gather(
            *(self._deliver_item(item, channels) for item in items)
        )
        result = DispatchResult.from_results(list(results))
        _record_delivery(result)
        return result

    async def _deliver_item(
        self,
        item: TriggerQueueItem,
        channels: dict[str, NotificationChannel],
    ) -> ItemDeliveryResult:
        payload = AlertPayload.from_item(item, self._dashboard_base_url)
        outcome = ItemDeliveryResult(alert_id=item.alert_id)

        targets = [(cid, channels.get(cid)) for cid in item.channel_ids]
        sends = await asyncio.gather(
            *(self._send(ch, payload) for _, ch in targets if ch is not None)
        )
        send_results = iter(sends)

        metrics = get_metrics()
        for channel_id, channel in targets:
            if channel is None:
                outcome.errors.append(f"Channel {channel_id} not found")
                continue
            sent = next(send_results)
            metrics.record_notification(channel.provider.value, sent.success)
            if sent.success:
                outcome.notified_via.append(channel.label)
            else:
                outcome.errors.append(f"{channel.label}: {sent.error}")

        return outcome

    async def _send(self, channel: NotificationChannel, payload: AlertPayload) -> SendResult:
        """Send to one channel, converting any exception into a failed result."""
        try:
            adapter = self._registry.get(channel.provider)
            return await adapter.send(channel.config, payload)
        except Exception as e:
            logger.warning(
                "Channel %s raised for alert %s: %s",
                channel.label, payload.alert_id, e,
            )
            return SendResult(
                success=False,
                provider=channel.provider,
                error=str(e) or type(e).__name__,
            )


class RateLimitedDispatcher(DirectDispatcher):
    """Direct fan-out with per-channel protection.

    Each channel gets a ``CircuitBreaker``, a minimum spacing between
    sends, and up to ``retry_max_attempts`` attempts with exponential
    backoff between them. Sends to the same channel are serialized.
    """

    def __init__(
        self,
        store: AlertStore,
        registry: AdapterRegistry,
        config: NotificationConfig | None = None,
        dashboard_base_url: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(store, registry, dashboard_base_url)
        self._config = config or NotificationConfig()
        self._sleep = sleep
        self._breakers: dict[str, CircuitBreaker] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_sent: dict[str, float] = {}

    def _breaker(self, channel_id: str) -> CircuitBreaker:
        if channel_id not in self._breakers:
            self._breakers[channel_id] = CircuitBreaker(
                name=channel_id,
                failure_threshold=self._config.circuit_breaker_threshold,
                recovery_timeout=self._config.circuit_breaker_recovery_seconds,
            )
        return self._breakers[channel_id]

    def is_circuit_open(self, channel_id: str) -> bool:
        breaker = self._breakers.get(channel_id)
        return breaker is not None and breaker.state == CircuitState.OPEN

    def get_rate_limit_status(self, channel_id: str) -> dict[str, Any]:
        """Report whether a channel can be sent to now, and when it can next.

        Returns:
            Dict with ``remaining`` (0 or 1 sends available now),
            ``reset_at`` and ``circuit_state``.
        """
        breaker = self._breakers.get(channel_id)
        wait = self._spacing_wait(channel_id)
        if breaker is not None:
            wait = max(wait, breaker.seconds_until_probe())
        state = breaker.state if breaker else CircuitState.CLOSED
        return {
            "remaining": 0 if wait > 0 else 1,
            "reset_at": datetime.now(timezone.utc) + timedelta(seconds=wait),
            "circuit_state": state.value,
        }

    def _spacing_wait(self, channel_id: str) -> float:
        last = self._last_sent.get(channel_id)
        if last is None:
            return 0.0
        return max(0.0, self._config.min_send_interval_seconds - (time.monotonic() - last))

    async def _send(self, channel: NotificationChannel, payload: AlertPayload) -> SendResult:
        breaker = self._breaker(channel.channel_id)
        lock = self._locks.setdefault(channel.channel_id, asyncio.Lock())
        backoff = ExponentialBackoff(
            base_delay=self._config.backoff_base_seconds,
            max_delay=self._config.backoff_max_seconds,
            max_attempts=self._config.retry_max_attempts - 1,
        )

        async with lock:
            while True:
                if not breaker.allow_request():
                    result = SendResult(
                        success=False,
                        provider=channel.provider,
                        error="circuit open",
                    )
                    break

                wait = self._spacing_wait(channel.channel_id)
                if wait > 0:
                    await self._sleep(wait)

                result = await super()._send(channel, payload)
                self._last_sent[channel.channel_id] = time.monotonic()

                if result.success:
                    breaker.record_success()
                    break
                breaker.record_failure()

                if backoff.exhausted or breaker.state == CircuitState.OPEN:
                    break
                delay = backoff.next_delay()
                logger.info(
                    "Retrying %s for alert %s in %.1fs (attempt %d)",
                    channel.label, payload.alert_id, delay, backoff.attempt + 1,
                )
                await self._sleep(delay)

        get_metrics().set_circuit_state(channel.channel_id, breaker.state.value)
        return result


def batch_failure(items: list[TriggerQueueItem], error: str) -> DispatchResult:
    """Every item failed for one batch-level reason."""
    return DispatchResult(
        success=False,
        sent=0,
        failed=len(items),
        errors=[error],
        results=[ItemDeliveryResult(alert_id=item.alert_id, errors=[error]) for item in items],
    )


class _BatchResultItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notified_via: list[str] = Field(alias="notifiedVia")
    errors: list[str] = Field(default_factory=list)
    success: bool | None = None


class _BatchTriggerResponse(BaseModel):
    results: list[_BatchResultItem]


class HttpBatchDispatcher(Dispatcher):
    """Sends the whole batch to the delivery boundary in one POST.

    Request: ``{"alerts": [<item wire format>, ...]}`` with the shared
    secret in ``X-Internal-Secret``. Response: ``{"results": [{"notifiedVia":
    [...]}, ...]}`` in item order. A transport error or non-2xx status
    fails the whole batch, as does a 2xx body that does not parse.
    """

    def __init__(
        self,
        trigger_url: str,
        secret: str,
        timeout: float = 10.0,
    ) -> None:
        self._trigger_url = trigger_url
        self._secret = secret
        self._timeout = timeout

    async def dispatch(self, items: list[TriggerQueueItem]) -> DispatchResult:
        if not items:
            return DispatchResult.empty()

        try:
            body = await self._post({"alerts": [item.to_dict() for item in items]})
        except DispatchTransportError as e:
            logger.error("Dispatch of %d items failed: %s", len(items), e)
            return batch_failure(items, str(e))

        try:
            parsed = _BatchTriggerResponse.model_validate(body)
        except ValidationError as e:
            error = f"Malformed delivery response: {e.error_count()} validation error(s)"
            logger.error("Dispatch of %d items failed: %s", len(items), e)
            return batch_failure(items, error)

        results: list[ItemDeliveryResult] = []
        for index, item in enumerate(items):
            if index >= len(parsed.results):
                results.append(
                    ItemDeliveryResult(alert_id=item.alert_id, errors=["No result returned"])
                )
                continue
            remote = parsed.results[index]
            accepted = remote.success if remote.success is not None else bool(remote.notified_via)
            errors = list(remote.errors)
            if not accepted and not errors:
                errors.append("No channel accepted the notification")
            results.append(
                ItemDeliveryResult(
                    alert_id=item.alert_id,
                    notified_via=list(remote.notified_via),
                    errors=errors,
                )
            )

        result = DispatchResult.from_results(results)
        _record_delivery(result)
        return result

    async def _post(self, body: dict) -> Any:
        """POST to the delivery boundary.

        Raises:
            DispatchTransportError: On connection errors or non-2xx status.
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._trigger_url,
                    json=body,
                    headers={INTERNAL_SECRET_HEADER: self._secret},
                )
        except httpx.HTTPError as e:
            raise DispatchTransportError(str(e) or type(e).__name__) from e

        if not resp.is_success:
            raise DispatchTransportError(
                f"HTTP {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError:
            return None


def create_dispatcher(
    settings: Settings,
    store: AlertStore,
    registry: AdapterRegistry,
    config: NotificationConfig | None = None,
) -> Dispatcher:
    """Build the dispatcher selected by ``settings.dispatcher_strategy``."""
    config = config or NotificationConfig()

    if settings.dispatcher_strategy == "http":
        if not settings.internal_api_secret:
            raise ValueError("INTERNAL_API_SECRET is required for the http dispatcher")
        return HttpBatchDispatcher(
            trigger_url=settings.trigger_batch_url,
            secret=settings.internal_api_secret,
            timeout=config.http_timeout_seconds,
        )

    if settings.dispatcher_strategy == "rate_limited":
        return RateLimitedDispatcher(
            store, registry, config, dashboard_base_url=settings.dashboard_base_url,
        )

    return DirectDispatcher(store, registry, dashboard_base_url=settings.dashboard_base_url)
