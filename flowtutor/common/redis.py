"""
Redis Client Utility Module

This module provides a shared asyncio Redis client for components that keep
derived, rebuildable data in Redis (the XP leaderboard).
"""

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from flowtutor.common.config import RedisConfig

# Setup logging
logger = logging.getLogger(__name__)

# Singleton Redis client instance
_redis_client: Optional[aioredis.Redis] = None


def get_redis_client(config: Optional[RedisConfig] = None) -> Optional[aioredis.Redis]:
    """
    Get a Redis client instance.

    Returns the singleton client, creating it on first use. Returns None when
    Redis is disabled in the configuration.

    Args:
        config: Redis configuration; loaded from the app config when omitted

    Returns:
        Redis client instance or None
    """
    global _redis_client

    if config is None:
        from flowtutor.common.config import get_config
        config = get_config().redis

    if not config.enabled:
        return None

    if _redis_client is None:
        _redis_client = aioredis.Redis(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            ssl=config.use_ssl,
            socket_connect_timeout=config.connection_timeout,
            decode_responses=True
        )
        logger.info(f"Redis client created for {config.host}:{config.port}/{config.db}")

    return _redis_client


async def reset_redis_client() -> None:
    """
    Reset the Redis client.

    This forces a new connection on the next call to get_redis_client().
    """
    global _redis_client

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")

        _redis_client = None
        logger.info("Redis client reset")
