"""Redis client backing the call signaling relay.

Usage:
    from artisan_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.publish("call-<conversation_id>", message)
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from artisan_escrow.config import get_settings
from artisan_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_initialized() -> bool:
    return _redis_client is not None


async def ping_redis() -> bool:
    """Health probe. False when Redis is down or was never initialized."""
    if _redis_client is None:
        return False
    try:
        return bool(await _redis_client.ping())
    except RedisError as exc:
        logger.warning("redis.ping_failed", error=str(exc))
        return False


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None
