"""Redis client for request idempotency keys and health checks.

Usage:
    from engagement_escrow.infrastructure.redis_client import get_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from engagement_escrow.config import get_settings
from engagement_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _key(key: str) -> str:
    return f"idempotency:{key}"


async def claim_idempotency(redis: aioredis.Redis, key: str, ttl_seconds: int) -> bool:
    """Atomically claim a request idempotency key.

    Returns True if the key was new (caller proceeds), False on a duplicate.
    """
    return bool(await redis.set(_key(key), "processing", ex=ttl_seconds, nx=True))


async def store_idempotent_result(
    redis: aioredis.Redis, key: str, value: str, ttl_seconds: int
) -> None:
    """Replace the claim marker with the serialized result of the request."""
    await redis.set(_key(key), value, ex=ttl_seconds)


async def get_idempotent_result(redis: aioredis.Redis, key: str) -> str | None:
    """Return the stored result, or None if absent or still processing."""
    value = await redis.get(_key(key))
    if value is None or value == "processing":
        return None
    return value


async def release_idempotency(redis: aioredis.Redis, key: str) -> None:
    """Drop a claim so a failed request can be retried with the same key."""
    await redis.delete(_key(key))
