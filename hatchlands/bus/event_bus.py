"""Publish-side event bus built on Redis Pub/Sub."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger()


class EventBus:
    """Publishes dataclass events as JSON on Redis channels.

    Publishing is best effort: the world state lives in the store, so a
    failed publish is logged and never undoes a committed change.
    """

    def __init__(self, redis_client: Redis) -> None:
        self._redis = redis_client

    async def publish(self, channel: str, event: Any) -> int:
        """Publish ``event`` on ``channel``.

        Returns:
            Number of subscribers that received the message (0 on failure).
        """
        payload = json.dumps(asdict(event), default=str)
        try:
            receivers = await self._redis.publish(channel, payload)
        except Exception as exc:
            logger.warning("event_bus_publish_failed", channel=channel, error=str(exc))
            return 0
        logger.debug("event_bus_published", channel=channel, subscribers=receivers)
        return receivers
