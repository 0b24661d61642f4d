# ruff: noqa: PLW0603
"""Redis connection for the enrollment check cache.

Redis only ever holds derived data (positive access checks), so the API
runs without it: services receive None and read Cassandra instead.
"""

import redis.asyncio as redis

from lms_core.config import Settings, get_settings
from lms_core.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


async def init_redis(settings: Settings | None = None) -> redis.Redis:
    """Open the connection pool and check it with a PING.

    Raises:
        redis.ConnectionError: If the server cannot be reached
    """
    global _redis_client

    settings = settings or get_settings()

    client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
        decode_responses=True,
    )

    try:
        await client.ping()
    except redis.ConnectionError:
        await client.aclose()
        raise

    _redis_client = client
    logger.info(
        "redis_connected",
        max_connections=settings.redis_max_connections,
        cache_ttl=settings.access_cache_ttl_seconds,
    )
    return client


async def shutdown_redis() -> None:
    """Close the connection pool if one is open."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_disconnected")
