"""Redis connection management."""

import redis.asyncio as redis
from redis.asyncio import Redis

from toolgate.core.logging import get_logger

logger = get_logger(__name__)


def create_redis(url: str) -> Redis:
    """Create a Redis client for the shared rate limit store.

    The client connects lazily; nothing is sent until the first command.
    """
    client: Redis = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
    )
    return client


async def close_redis(client: Redis | None) -> None:
    """Close a Redis client if one was created."""
    if client is not None:
        await client.aclose()


async def check_redis_connection(client: Redis | None) -> bool:
    """Check if Redis connection is healthy."""
    if client is None:
        return False
    try:
        await client.ping()
        return True
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False
