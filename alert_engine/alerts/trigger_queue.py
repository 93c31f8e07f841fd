"""Severity-partitioned trigger queue.

Holds pending notifications between evaluation and flush. Each severity
has its own FIFO partition; flushes drain one partition at a time. A
dequeued item is gone: if its dispatch fails it is logged, not re-queued.

Two backends:
- MemoryTriggerQueue: process-local deques, lost on restart
- RedisTriggerQueue: one Redis list per severity, survives restarts
"""

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from types import TracebackType

import redis.asyncio as redis

from alert_engine.alerts.exceptions import UnknownSeverityError
from alert_engine.alerts.schemas import SEVERITY_ORDER, AlertSeverity, TriggerQueueItem
from alert_engine.config.settings import Settings
from alert_engine.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


def _partition(severity: AlertSeverity | str) -> AlertSeverity:
    try:
        return AlertSeverity(severity)
    except ValueError:
        raise UnknownSeverityError(severity) from None


class TriggerQueue(ABC):
    """Interface shared by trigger queue backends."""

    @abstractmethod
    async def enqueue(self, item: TriggerQueueItem) -> None:
        """Append an item to the partition for ``item.severity``."""

    @abstractmethod
    async def dequeue(
        self,
        severity: AlertSeverity,
        max_count: int,
    ) -> list[TriggerQueueItem]:
        """Remove and return up to ``max_count`` oldest items for a severity."""

    @abstractmethod
    async def size(self, severity: AlertSeverity) -> int:
        """Number of items waiting in one partition."""

    async def stats(self) -> dict[str, int]:
        """Waiting items per severity."""
        return {sev.value: await self.size(sev) for sev in SEVERITY_ORDER}

    async def connect(self) -> None:
        """Open backend resources. No-op for in-process queues."""

    async def close(self) -> None:
        """Release backend resources. No-op for in-process queues."""

    async def health_check(self) -> bool:
        return True


class MemoryTriggerQueue(TriggerQueue):
    """In-process queue with one deque per severity."""

    def __init__(self) -> None:
        self._partitions: dict[AlertSeverity, deque[TriggerQueueItem]] = {
            sev: deque() for sev in SEVERITY_ORDER
        }

    async def enqueue(self, item: TriggerQueueItem) -> None:
        partition = self._partitions[_partition(item.severity)]
        partition.append(item)
        get_metrics().set_queue_depth(item.severity.value, len(partition))
        logger.debug(
            "Enqueued alert %s (%s), depth=%d",
            item.alert_id, item.severity.value, len(partition),
        )

    async def dequeue(
        self,
        severity: AlertSeverity,
        max_count: int,
    ) -> list[TriggerQueueItem]:
        severity = _partition(severity)
        partition = self._partitions[severity]
        count = min(max(max_count, 0), len(partition))
        items = [partition.popleft() for _ in range(count)]
        get_metrics().set_queue_depth(severity.value, len(partition))
        return items

    async def size(self, severity: AlertSeverity) -> int:
        return len(self._partitions[_partition(severity)])

    def clear(self) -> None:
        """Drop every waiting item."""
        for partition in self._partitions.values():
            partition.clear()


class RedisTriggerQueue(TriggerQueue):
    """
    Trigger queue backed by Redis lists.

    Items are stored as JSON in ``{prefix}:{SEVERITY}``; RPUSH appends and
    LPOP with a count drains from the head, so order is FIFO per severity.
    LPOP with a count requires Redis 6.2+.

    Usage:
        async with RedisTriggerQueue("redis://localhost:6379/0") as queue:
            await queue.enqueue(item)
            batch = await queue.dequeue(AlertSeverity.CRITICAL, 50)
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "alerts:trigger",
    ) -> None:
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Trigger queue connected to Redis, prefix=%s", self._key_prefix)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Trigger queue Redis connection closed")

    async def __aenter__(self) -> "RedisTriggerQueue":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    def key_for(self, severity: AlertSeverity | str) -> str:
        return f"{self._key_prefix}:{_partition(severity).value}"

    async def enqueue(self, item: TriggerQueueItem) -> None:
        depth = await self.redis.rpush(
            self.key_for(item.severity), json.dumps(item.to_dict()),
        )
        get_metrics().set_queue_depth(item.severity.value, depth)

    async def dequeue(
        self,
        severity: AlertSeverity,
        max_count: int,
    ) -> list[TriggerQueueItem]:
        key = self.key_for(severity)
        if max_count <= 0:
            return []

        raw = await self.redis.lpop(key, max_count)
        items: list[TriggerQueueItem] = []
        for payload in raw or []:
            try:
                items.append(TriggerQueueItem.from_dict(json.loads(payload)))
            except (ValueError, KeyError) as e:
                logger.error("Dropping unparseable trigger item from %s: %s", key, e)

        get_metrics().set_queue_depth(
            _partition(severity).value, await self.redis.llen(key),
        )
        return items

    async def size(self, severity: AlertSeverity) -> int:
        return await self.redis.llen(self.key_for(severity))

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False


def create_trigger_queue(settings: Settings) -> TriggerQueue:
    """Build the backend selected by ``settings.trigger_queue_backend``.

    The caller must ``await queue.connect()`` before use.
    """
    if settings.trigger_queue_backend == "redis":
        return RedisTriggerQueue(
            str(settings.redis_url),
            key_prefix=settings.trigger_queue_key_prefix,
        )
    return MemoryTriggerQueue()
