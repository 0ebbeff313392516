"""
Redis connection management.

One pooled client serves the idempotency store and both streams.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from automation_engine.config.settings import RedisSettings

logger = logging.getLogger(__name__)


class RedisConnection:
    """
    Redis connection manager with connection pooling.
    """

    def __init__(self, settings: RedisSettings):
        self.settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def init(self) -> None:
        """Initialize Redis connection pool."""
        self._pool = ConnectionPool(
            host=self.settings.host,
            port=self.settings.port,
            db=self.settings.db,
            password=self.settings.password,
            max_connections=self.settings.max_connections,
            socket_timeout=self.settings.socket_timeout,
            socket_connect_timeout=self.settings.socket_connect_timeout,
            decode_responses=True,
        )

        self._client = redis.Redis(connection_pool=self._pool)

        # Test connection
        await self._client.ping()
        logger.info(f"Connected to Redis at {self.settings.host}:{self.settings.port}/{self.settings.db}")

    async def close(self) -> None:
        """Close Redis connections."""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.disconnect()
            self._pool = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client."""
        if self._client is None:
            raise RuntimeError("Redis not initialized. Call init() first.")
        return self._client

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        if self._client is None:
            return False
        try:
            await self._client.ping()
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"Redis health check failed: {e}")
            return False
