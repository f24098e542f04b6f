"""Process-wide Redis client backing the session and claim locks."""

import redis.asyncio as redis

from tenantflow.core.config import get_settings

_redis: redis.Redis | None = None


async def init_redis(url: str | None = None) -> None:
    """Connect once; startup fails here if Redis is unreachable, since no lock could be taken."""
    global _redis

    if _redis is not None:
        return

    client = redis.from_url(
        url or get_settings().redis_url,
        decode_responses=True,  # lock values are compared as str
        client_name="tenantflow",
        health_check_interval=30,
    )
    await client.ping()
    _redis = client


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def ping_redis() -> bool:
    return bool(await get_redis().ping())
