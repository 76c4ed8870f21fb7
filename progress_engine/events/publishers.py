"""Outbound side of the domain event bus.

``ArqEventPublisher`` enqueues one ARQ job per event; the worker process
(``progress_engine.worker``) consumes them. ``InMemoryEventPublisher``
keeps events in a list for tests and local scripts.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from shared.events.schemas import DomainEvent

logger = logging.getLogger(__name__)

HANDLE_EVENT_JOB = "handle_domain_event"


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventPublisher:
    def __init__(self) -> None:
        self.published: list[DomainEvent] = []
        self._queue: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        self._queue.append(event)

    def take(self) -> list[DomainEvent]:
        """Pop every event queued since the last call."""
        events, self._queue = self._queue, []
        return events

    def names(self) -> list[str]:
        return [e.event_name for e in self.published]

    def of_type(self, event_cls: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.published if isinstance(e, event_cls)]


def redis_settings_from_url(url: str) -> RedisSettings:
    """Parse a redis:// URL into ARQ RedisSettings."""
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
    )


class ArqEventPublisher:
    """Publishes each event as an ARQ job keyed by its event id.

    Using the event id as the job id makes a re-publish of the same event
    a no-op while the first job is still queued.
    """

    def __init__(self, pool: ArqRedis, queue_name: str):
        self._pool = pool
        self._queue_name = queue_name

    @classmethod
    async def connect(cls, redis_url: str, queue_name: str) -> ArqEventPublisher:
        pool = await create_pool(
            redis_settings_from_url(redis_url), default_queue_name=queue_name
        )
        logger.info("ARQ event pool initialized for queue %s", queue_name)
        return cls(pool, queue_name)

    async def close(self) -> None:
        await self._pool.aclose()
        logger.info("ARQ event pool closed")

    async def publish(self, event: DomainEvent) -> None:
        try:
            job = await self._pool.enqueue_job(
                HANDLE_EVENT_JOB,
                event.to_payload(),
                _job_id=str(event.event_id),
                _queue_name=self._queue_name,
            )
        except Exception:
            # The producing transaction has already committed
            logger.exception("Failed to enqueue %s (%s)", event.event_name, event.event_id)
            return
        if job is None:
            logger.info("Event %s already queued, skipping", event.event_id)
            return
        logger.info("Enqueued %s -> job %s", event.event_name, job.job_id)
