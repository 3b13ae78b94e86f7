# ruff: noqa: PLW0603
"""Redis connection management.

Redis only carries lesson events to connected clients over Pub/Sub. Nothing
governing lives here, so the API keeps serving when Redis is down.
"""

from uuid import UUID

import redis.asyncio as redis

from src.config import get_settings
from src.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Create the client and verify it with a ping.

    Raises:
        redis.ConnectionError: If the server is unreachable
    """
    global _redis_client

    settings = get_settings()

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
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", error=str(e))
        await client.aclose()
        raise

    _redis_client = client
    logger.info("redis_connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> redis.Redis | None:
    """The live client, or None when running without Redis."""
    return _redis_client


async def shutdown_redis() -> None:
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


def lesson_events_channel(user_id: UUID | str) -> str:
    """Per-learner channel, e.g. ``lesson_events:user:<uuid>``."""
    prefix = get_settings().lesson_events_channel_prefix
    return f"{prefix}:user:{user_id}"
