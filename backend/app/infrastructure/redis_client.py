"""
Redis connection factory.
Separated from the cache logic so the app lifespan owns the connection.
"""

from typing import Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_redis() -> Optional[redis.Redis]:
    """Open and ping a Redis connection. Returns None if Redis is disabled or unreachable."""
    settings = get_settings()
    if not settings.REDIS_ENABLED:
        return None

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    try:
        await client.ping()
    except (redis.ConnectionError, redis.TimeoutError, OSError) as e:
        logger.error("redis_connection_failed", url=settings.REDIS_URL, error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=settings.REDIS_URL)
    return client


async def close_redis(client: Optional[redis.Redis]) -> None:
    if client is not None:
        await client.aclose()
