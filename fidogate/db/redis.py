import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from fidogate.core.config import settings

logger = structlog.get_logger()


class RedisClient:
    """Pooled async Redis access for short-lived JSON documents."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.pool: Optional[redis.ConnectionPool] = None

    async def init_pool(self):
        try:
            self.pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
            )
            async with redis.Redis(connection_pool=self.pool) as conn:
                await conn.ping()
            logger.info("Redis pool initialized", max_connections=settings.REDIS_MAX_CONNECTIONS)
        except Exception as e:
            logger.error("Redis initialization failed", error=str(e))
            raise

    async def close_pool(self):
        if self.pool:
            await self.pool.disconnect()
            self.pool = None
            logger.info("Redis pool closed")

    async def get_client(self) -> redis.Redis:
        if self.pool is None:
            raise RuntimeError("Redis pool is not initialized")
        return redis.Redis(connection_pool=self.pool)

    async def ping(self) -> bool:
        r = await self.get_client()
        return bool(await r.ping())

    async def cache_set(self, key: str, value: Any, ttl: int):
        """Store ``value`` as JSON under ``key`` for ``ttl`` seconds, replacing any previous value."""
        r = await self.get_client()
        await r.set(key, json.dumps(value), ex=ttl)

    async def cache_take(self, key: str) -> Optional[Any]:
        """Read and delete ``key`` in one step (GETDEL), so only one caller ever sees the value."""
        r = await self.get_client()
        value = await r.getdel(key)
        if value is None:
            return None
        return json.loads(value)


# Global client instance
redis_client = RedisClient()


async def init_pool():
    await redis_client.init_pool()


async def close_pool():
    await redis_client.close_pool()
