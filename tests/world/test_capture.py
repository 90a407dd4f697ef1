"""Tests for CaptureLockManager — compare-and-set locks and capture."""

from __future__ import annotations

import asyncio
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from hatchlands.bus.channels import Channels
from hatchlands.config import Settings
from hatchlands.core.generator import CreatureGenerator
from hatchlands.core.models import CreatureStatus, Spawn, SpawnLock, TimeWindow
from hatchlands.core.species import SpeciesCatalog
from hatchlands.db.memory import MemoryStore
from hatchlands.world.capture import CaptureLockManager, CaptureStatus, LockResult

LOCK_MS = 300_000


class InterleavingStore(MemoryStore):
    """Yields to the event loop on every read so concurrent callers interleave."""

    async def read_spawn(self, spawn_id: str) -> Optional[Spawn]:
        spawn = await super().read_spawn(spawn_id)
        await asyncio.sleep(0)
        return spawn


@pytest.fixture(scope="module")
def catalog() -> SpeciesCatalog:
    return SpeciesCatalog.load()


@pytest.fixture
def settings() -> Settings:
    return Settings(encounter_lock_ms=LOCK_MS, postgres_dsn="")


async def add_spawn(store: MemoryStore, catalog: SpeciesCatalog, expires_at: int = 3_600_000) -> Spawn:
    creature = CreatureGenerator(catalog, Settings()).generate(1234, "dragon")
    spawn = Spawn(
        id="spawn-1",
        seed=1234,
        region_id="valley-1",
        window=TimeWindow(start=0, end=3_600_000),
        creature=creature,
        spawned_at=0,
        expires_at=expires_at,
    )
    await store.create_creature(creature)
    await store.create_spawn(spawn)
    return spawn


@pytest.mark.asyncio
async def test_lock_then_second_actor_rejected(catalog, settings):
    store = MemoryStore()
    await add_spawn(store, catalog)
    manager = CaptureLockManager(store, settings)

    assert await manager.try_lock("spawn-1", "alice", now=1_000) == LockResult.SUCCESS
    assert await manager.try_lock("spawn-1", "bob", now=2_000) == LockResult.ALREADY_LOCKED
    assert store.spawns["spawn-1"].lock == SpawnLock(actor_id="alice", locked_at=1_000)


@pytest.mark.asyncio
async def test_concurrent_lock_has_exactly_one_winner(catalog, settings):
    store = InterleavingStore()
    await add_spawn(store, catalog)
    manager = CaptureLockManager(store, settings)

    results = await asyncio.gather(
        manager.try_lock("spawn-1", "alice", now=1_000),
        manager.try_lock("spawn-1", "bob", now=1_000),
    )

    assert sorted(results) == sorted([LockResult.SUCCESS, LockResult.ALREADY_LOCKED])
    winner = "alice" if results[0] == LockResult.SUCCESS else "bob"
    assert store.spawns["spawn-1"].lock.actor_id == winner


@pytest.mark.asyncio
async def test_many_concurrent_actors_one_winner(catalog, settings):
    store = InterleavingStore()
    await add_spawn(store, catalog)
    manager = CaptureLockManager(store, settings)

    results = await asyncio.gather(
        *(manager.try_lock("spawn-1", f"actor-{i}", now=1_000) for i in range(10))
    )

    assert results.count(LockResult.SUCCESS) == 1
    assert results.count(LockResult.ALREADY_LOCKED) == 9


@pytest.mark.asyncio
async def test_stale_lock_can_be_taken_over(catalog, settings):
    store = MemoryStore()
    await add_spawn(store, catalog)
    manager = CaptureLockManager(store, settings)

    assert await manager.try_lock("spawn-1", "alice", now=1_000) == LockResult.SUCCESS
    assert await manager.try_lock("spawn-1", "bob", now=1_000 + LOCK_MS) == LockResult.SUCCESS
    assert store.spawns["spawn-1"].lock.actor_id == "bob"


@pytest.mark.asyncio
async def test_missing_and_expired_spawns(catalog, settings):
    store = MemoryStore()
    await add_spawn(store, catalog, expires_at=10_000)
    manager = CaptureLockManager(store, settings)

    assert await manager.try_lock("nope", "alice", now=1_000) == LockResult.NOT_FOUND
    assert await manager.try_lock("spawn-1", "alice", now=10_000) == LockResult.EXPIRED


@pytest.mark.asyncio
async def test_unlock_releases_for_others(catalog, settings):
    store = MemoryStore()
    await add_spawn(store, catalog)
    manager = CaptureLockManager(store, settings)

    await manager.try_lock("spawn-1", "alice", now=1_000)
    assert not await manager.unlock("spawn-1", "bob", now=1_500)
    assert await manager.unlock("spawn-1", "alice", now=2_000)
    assert store.spawns["spawn-1"].lock is None
    assert not await manager.unlock("spawn-1", now=2_500)
    assert await manager.try_lock("spawn-1", "bob", now=3_000) == LockResult.SUCCESS


@pytest.mark.asyncio
async def test_capture_consumes_spawn_and_transfers_creature(catalog, settings):
    store = MemoryStore()
    spawn = await add_spawn(store, catalog)
    bus = AsyncMock()
    manager = CaptureLockManager(store, settings, event_bus=bus)

    await manager.try_lock("spawn-1", "alice", now=1_000)
    result = await manager.capture("spawn-1", "alice", now=5_000)

    assert result.status == CaptureStatus.CAPTURED
    assert result.creature.owner_id == "alice"
    assert "spawn-1" not in store.spawns
    stored = await store.read_creature(spawn.creature.id)
    assert stored.owner_id == "alice"
    assert stored.status == CreatureStatus.CAPTURED
    assert stored.captured_at == 5_000
    bus.publish.assert_awaited_once()
    assert bus.publish.await_args.args[0] == Channels.SPAWN_CAPTURED

    again = await manager.capture("spawn-1", "alice", now=5_001)
    assert again.status == CaptureStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_capture_requires_own_live_lock(catalog, settings):
    store = MemoryStore()
    await add_spawn(store, catalog)
    manager = CaptureLockManager(store, settings)

    assert (await manager.capture("spawn-1", "alice", now=1_000)).status == CaptureStatus.NOT_LOCKED

    await manager.try_lock("spawn-1", "alice", now=1_000)
    assert (await manager.capture("spawn-1", "bob", now=2_000)).status == CaptureStatus.LOCKED_BY_OTHER
    assert (await manager.capture("spawn-1", "alice", now=1_000 + LOCK_MS)).status == CaptureStatus.NOT_LOCKED
    assert "spawn-1" in store.spawns


@pytest.mark.asyncio
async def test_capture_of_expired_spawn_is_not_found(catalog, settings):
    store = MemoryStore()
    await add_spawn(store, catalog, expires_at=10_000)
    manager = CaptureLockManager(store, settings)

    await manager.try_lock("spawn-1", "alice", now=9_000)
    assert (await manager.capture("spawn-1", "alice", now=10_000)).status == CaptureStatus.NOT_FOUND
