"""
config/redis_client.py
Async Redis client. Backs the notification event log (Redis Streams).
"""

from typing import Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


def create_redis() -> aioredis.Redis:
    """New connection pool. Workers outside the API process call this directly."""
    return aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = create_redis()
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None

