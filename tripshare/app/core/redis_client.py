"""
Redis client initialization and connection management.

The client is created once in the application lifespan and handed to
request handlers through ``get_redis``.
"""

import logging

import redis.asyncio as redis
from fastapi import Request
from tripshare.app.core.config import Settings

logger = logging.getLogger(__name__)


def build_redis_client(settings: Settings):
    """Create an async Redis client; no connection is made until first use."""
    return redis.from_url(
        settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )


async def get_redis(request: Request):
    """
    Get the application's Redis client.

    Used as a FastAPI dependency.
    """
    return request.app.state.redis


async def ping_redis(redis_client) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False
