"""Tests for the world Redis client helper.

The client connects lazily, so none of these need a running server.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError

import hatchlands.bus as bus_module
from hatchlands.bus import EventBus, close_redis, connect_event_bus, get_redis
from hatchlands.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(redis_url="redis://localhost:6379/15")


@pytest.mark.asyncio
async def test_get_redis_returns_redis_instance(settings) -> None:
    redis = await get_redis(settings)

    assert isinstance(redis, Redis)

    await close_redis()


@pytest.mark.asyncio
async def test_get_redis_singleton_pattern(settings) -> None:
    redis1 = await get_redis(settings)
    redis2 = await get_redis(settings)

    assert redis1 is redis2, "Should return the same instance (singleton)"

    await close_redis()


@pytest.mark.asyncio
async def test_close_redis_resets_singleton(settings) -> None:
    redis = await get_redis(settings)
    await close_redis()

    redis_new = await get_redis(settings)
    assert redis_new is not redis

    await close_redis()


@pytest.mark.asyncio
async def test_connect_event_bus_without_server(settings, monkeypatch) -> None:
    async def refuse(self):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(Redis, "ping", refuse)

    assert await connect_event_bus(settings) is None
    # The dead client is dropped so the next attempt starts fresh
    assert bus_module._redis_client is None


@pytest.mark.asyncio
async def test_connect_event_bus_with_server(settings, monkeypatch) -> None:
    monkeypatch.setattr(Redis, "ping", AsyncMock(return_value=True))

    bus = await connect_event_bus(settings)

    assert isinstance(bus, EventBus)
    await close_redis()
