"""FORGE - Redis client for the advisory stock cache."""
from typing import Optional
from uuid import UUID

import redis.asyncio as redis

from forge.config import get_settings

_settings = get_settings()
_redis: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get Redis connection (application cache DB 1)."""
    global _redis
    if _redis is None:
        _redis = redis.from_url(_settings.REDIS_URL, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def stock_cache_key(tenant_id: UUID | str, product_id: UUID | str, location_id: UUID | str) -> str:
    """Cache key for available stock: stock:{tid}:{product}:{location}"""
    return f"stock:{tenant_id}:{product_id}:{location_id}"
