from typing import Any
from uuid import UUID

import redis.asyncio as redis

RedisClient = redis.Redis


def get_redis_client(redis_url: str, **kwargs: Any) -> redis.Redis:
    return redis.from_url(redis_url, decode_responses=True, **kwargs)


class ProcessedEventStore:
    """Remembers which domain events a consumer already handled.

    Keys expire after ``ttl_secs``; a redelivery older than that is
    handled again, so listeners must stay idempotent.
    """

    def __init__(self, client: RedisClient, *, prefix: str, ttl_secs: int):
        self._client = client
        self._prefix = prefix
        self._ttl_secs = ttl_secs

    def key(self, event_id: UUID) -> str:
        return f"{self._prefix}{event_id}"

    async def seen(self, event_id: UUID) -> bool:
        return bool(await self._client.exists(self.key(event_id)))

    async def mark(self, event_id: UUID) -> None:
        await self._client.set(self.key(event_id), "1", ex=self._ttl_secs)

    async def close(self) -> None:
        await self._client.aclose()
