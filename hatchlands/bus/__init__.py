"""World event bus — Redis client lifecycle and bus construction.

The world never depends on Redis: ``connect_event_bus`` returns None when the
server cannot be reached and the services simply publish nothing.
"""

from __future__ import annotations

from typing import Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from hatchlands.config import Settings
from hatchlands.bus.channels import Channels
from hatchlands.bus.event_bus import EventBus
from hatchlands.bus import events

logger = structlog.get_logger()

# Process-wide client shared by every EventBus
_redis_client: Optional[Redis] = None


async def get_redis(settings: Optional[Settings] = None) -> Redis:
    """Return the shared Redis client, creating it on first use.

    The client connects lazily; nothing reaches the server before the first
    command.
    """
    global _redis_client

    if _redis_client is None:
        settings = settings or Settings()
        _redis_client = Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.redis_connect_timeout_sec,
        )

    return _redis_client


async def connect_event_bus(settings: Settings) -> Optional[EventBus]:
    """Build an EventBus on the shared client, or None if Redis is down."""
    redis = await get_redis(settings)
    try:
        await redis.ping()
    except (RedisError, OSError) as exc:
        logger.warning(
            "redis_connection_failed",
            error=str(exc),
            fallback="continuing_without_events",
        )
        await close_redis()
        return None
    logger.info("redis_connected")
    return EventBus(redis)


async def close_redis() -> None:
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


__all__ = [
    "get_redis",
    "connect_event_bus",
    "close_redis",
    "EventBus",
    "Channels",
    "events",
]
