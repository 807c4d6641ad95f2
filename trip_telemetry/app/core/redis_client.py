"""
Redis client initialization and connection management.

Redis holds short-lived coordination flags, such as the one-time
operator alert markers of tracking sessions.
"""

import redis.asyncio as redis
from trip_telemetry.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """Return the shared Redis client (usable as a FastAPI dependency)."""
    return redis_client


async def ping_redis(client=None) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    client = client or redis_client
    try:
        return bool(await client.ping())
    except Exception:
        return False


async def set_once(client, key: str, ttl_seconds: int) -> bool:
    """
    Atomically claim a flag key.

    Returns:
        True if this call created the key, False if it already existed

    Raises:
        redis.RedisError: If Redis is unreachable (callers decide the fallback)
    """
    created = await client.set(key, "1", ex=ttl_seconds, nx=True)
    return bool(created)
