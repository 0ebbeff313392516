"""Idempotency claims in Redis (SET NX EX)."""

import redis.asyncio as redis

from automation_engine.storage.base import IdempotencyStore


class RedisIdempotencyStore(IdempotencyStore):
    """
    One key per (event, workflow) pair.

    SET NX is atomic across dispatcher processes, so a redelivered event is
    evaluated at most once per workflow within the TTL.
    """

    KEY_PREFIX = "automation:idem:"

    def __init__(self, client: redis.Redis):
        self.client = client

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        claimed = await self.client.set(f"{self.KEY_PREFIX}{key}", "1", nx=True, ex=ttl_seconds)
        return bool(claimed)

    async def release(self, key: str) -> None:
        await self.client.delete(f"{self.KEY_PREFIX}{key}")
