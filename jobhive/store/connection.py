"""
Store connection management.
Handles the shared async Redis client used by one process.
"""

import logging

import redis.asyncio as redis

from jobhive.config import get_settings
from jobhive.store.adapter import RedisStore

logger = logging.getLogger(__name__)

# Global client and adapter instances
_client: redis.Redis | None = None
_store: RedisStore | None = None


def get_redis() -> redis.Redis:
    """
    Get or create the async Redis client.

    Returns:
        redis.Redis: The client instance.
    """
    global _client
    if _client is None:
        settings = get_settings()
        _client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_rw_timeout,
            socket_connect_timeout=settings.redis_rw_timeout,
        )
    return _client


async def init_store() -> RedisStore:
    """
    Initialize the store adapter and verify the connection.
    Should be called on process startup.
    """
    global _store
    settings = get_settings()
    _store = RedisStore(get_redis(), namespace=settings.redis_namespace)
    await _store.ping()
    logger.info(
        "Store connection initialized",
        extra={"host": settings.redis_host, "port": settings.redis_port},
    )
    return _store


async def close_store() -> None:
    """
    Close the Redis connection.
    Should be called on process shutdown.
    """
    global _client, _store
    if _client is not None:
        await _client.aclose()
        _client = None
        _store = None
        logger.info("Store connection closed")
