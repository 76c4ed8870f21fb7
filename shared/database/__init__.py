from shared.database.postgres import Base, get_async_session_factory
from shared.database.redis_client import ProcessedEventStore, RedisClient, get_redis_client

__all__ = [
    "Base",
    "get_async_session_factory",
    "ProcessedEventStore",
    "get_redis_client",
    "RedisClient",
]
