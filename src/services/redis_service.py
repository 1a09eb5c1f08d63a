"""Redis client and the response message cache."""

import json
from typing import Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)

RESPONSE_MESSAGES_KEY = "response_messages:all"

# Global Redis client
_redis_client: Optional[redis.Redis] = None


async def get_redis(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
    """Get or create the Redis client.

    Args:
        redis_url: Connection URL, required on first call

    Returns:
        Redis client or None if connection fails (graceful degradation)
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    if not redis_url:
        return None

    try:
        _redis_client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        # Test connection
        await _redis_client.ping()
        logger.info("redis_connected", url=redis_url.split("@")[-1])
        return _redis_client
    except Exception as e:
        logger.warning("redis_connection_failed", error=str(e))
        _redis_client = None
        return None


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
        logger.info("redis_connection_closed")


class RedisService:
    """Cache operations for the response message catalogue."""

    def __init__(self, ttl_seconds: int = 21600):
        self.ttl_seconds = ttl_seconds

    async def get_cached_messages(self) -> Optional[list[dict]]:
        """Retrieve the cached message catalogue.

        Returns:
            List of message dicts or None if not cached/Redis unavailable
        """
        client = await get_redis()
        if client is None:
            return None

        try:
            data = await client.get(RESPONSE_MESSAGES_KEY)
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.warning("redis_get_messages_failed", error=str(e))
            return None

    async def cache_messages(self, messages: list[dict]) -> bool:
        """Store the message catalogue with TTL.

        Returns:
            True if successful, False otherwise
        """
        client = await get_redis()
        if client is None:
            return False

        try:
            await client.setex(RESPONSE_MESSAGES_KEY, self.ttl_seconds, json.dumps(messages))
            logger.debug("response_messages_cached", count=len(messages), ttl=self.ttl_seconds)
            return True
        except Exception as e:
            logger.warning("redis_cache_messages_failed", error=str(e))
            return False

    async def invalidate_messages(self) -> bool:
        client = await get_redis()
        if client is None:
            return False

        try:
            await client.delete(RESPONSE_MESSAGES_KEY)
            return True
        except Exception as e:
            logger.warning("redis_invalidate_messages_failed", error=str(e))
            return False
