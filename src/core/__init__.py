# Core infrastructure: request context, logging, Cassandra and Redis
from src.core.context import (
    clear_context,
    get_context,
    get_request_id,
    set_actor,
    set_request_id,
)
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import get_redis, init_redis, shutdown_redis


__all__ = [
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_logger",
    "get_redis",
    "get_request_id",
    "init_async_cassandra",
    "init_redis",
    "set_actor",
    "set_request_id",
    "shutdown_async_cassandra",
    "shutdown_redis",
]
