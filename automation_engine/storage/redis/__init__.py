"""Redis storage layer for idempotency claims."""

from automation_engine.storage.redis.connection import RedisConnection
from automation_engine.storage.redis.idempotency import RedisIdempotencyStore

__all__ = ["RedisConnection", "RedisIdempotencyStore"]
