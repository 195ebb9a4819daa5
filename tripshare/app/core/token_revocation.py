"""
Approval link revocation using Redis.

Keeps the ids of consumed approval links until they would have expired
anyway, so a replayed link is turned away before touching the database.
The trip row remains the source of truth: Redis errors fail open.
"""

import logging

logger = logging.getLogger(__name__)

# Redis key prefix for consumed approval links
USED_APPROVAL_PREFIX = "approval:used:"


async def mark_token_used(redis_client, jti: str, ttl_seconds: int) -> bool:
    """
    Record an approval link id as consumed.

    Args:
        redis_client: Async Redis client
        jti: Token id shared by the approve/reject link pair
        ttl_seconds: Remaining lifetime of the link

    Returns:
        True if recorded, False otherwise
    """
    try:
        await redis_client.set(f"{USED_APPROVAL_PREFIX}{jti}", "1", ex=max(ttl_seconds, 1))
        return True
    except Exception as e:
        logger.warning("Could not record used approval token %s: %s", jti, e)
        return False


async def is_token_used(redis_client, jti: str) -> bool:
    """
    Check whether an approval link id was already consumed.

    Returns:
        True if used, False if unknown or Redis is unavailable
    """
    try:
        exists = await redis_client.exists(f"{USED_APPROVAL_PREFIX}{jti}")
        return exists > 0
    except Exception as e:
        logger.warning("Could not check approval token %s: %s", jti, e)
        return False
