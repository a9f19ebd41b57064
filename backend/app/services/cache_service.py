"""
Redis cache for trip search results.

CACHING STRATEGY
================

What we cache:
  - Trip search responses (paginated, JSON-serialized)
  - Key pattern: "trips:list:origin={o}&destination={d}&date={day}&page={p}&size={s}"

Invalidation:
  - Every inventory change (reserve, release, trip creation) deletes all
    "trips:list:*" keys once its transaction has committed
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

Why NOT cache seat maps:
  - Seat selection needs real-time holds; a stale map means a guaranteed 409

The cache is an explicit object created in the app lifespan and handed to the
services that need it. Constructed with `None` it is a no-op, which is how the
service runs without Redis.
"""

import json
from typing import Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_cache_operation

logger = get_logger(__name__)

TRIP_LIST_PREFIX = "trips:list:"


def make_trip_list_key(
    origin: Optional[str],
    destination: Optional[str],
    travel_date: Optional[str],
    page: int,
    page_size: int,
) -> str:
    return (
        f"{TRIP_LIST_PREFIX}origin={(origin or '').lower()}&destination={(destination or '').lower()}"
        f"&date={travel_date or ''}&page={page}&size={page_size}"
    )


class TripSnapshotCache:
    def __init__(self, client: Optional[redis.Redis], ttl: Optional[int] = None):
        self.client = client
        self.ttl = ttl if ttl is not None else get_settings().REDIS_CACHE_TTL

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get(self, key: str) -> Optional[dict]:
        if not self.client:
            return None
        try:
            data = await self.client.get(key)
        except redis.RedisError as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None

        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
        return None

    async def set(self, key: str, data: dict) -> None:
        if not self.client:
            return
        try:
            await self.client.setex(key, self.ttl, json.dumps(data, default=str))
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except redis.RedisError as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate_trips(self, trip_id: Optional[int] = None) -> int:
        """Drop every cached trip listing. Listings span trips, so one change clears them all."""
        if not self.client:
            return 0
        deleted = 0
        try:
            async for key in self.client.scan_iter(match=f"{TRIP_LIST_PREFIX}*", count=100):
                await self.client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", trip_id=trip_id, keys_deleted=deleted)
        except redis.RedisError as e:
            logger.error("cache_invalidation_error", trip_id=trip_id, error=str(e))
        return deleted

    async def stats(self) -> dict:
        """Redis keyspace statistics for the health endpoint."""
        if not self.client:
            return {"status": "disabled"}
        try:
            info = await self.client.info("stats")
            keyspace = await self.client.info("keyspace")
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}

        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            "keys": keyspace,
        }
