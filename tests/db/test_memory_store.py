"""Tests for the in-memory WorldStore."""

from __future__ import annotations

import json
from dataclasses import replace

import pytest

from hatchlands.config import Settings
from hatchlands.core.errors import ConfigurationError
from hatchlands.core.generator import CreatureGenerator
from hatchlands.core.models import (
    BreedingRequest,
    CreatureStatus,
    LineageNode,
    Spawn,
    SpawnLock,
    TimeWindow,
)
from hatchlands.core.species import SpeciesCatalog
from hatchlands.db.memory import MemoryStore


@pytest.fixture(scope="module")
def catalog() -> SpeciesCatalog:
    return SpeciesCatalog.load()


def make_spawn(catalog, spawn_id: str = "s1", seed: int = 1, expires_at: int = 1_000) -> Spawn:
    creature = CreatureGenerator(catalog, Settings()).generate(seed, "dragon")
    return Spawn(
        id=spawn_id,
        seed=seed,
        region_id="valley-1",
        window=TimeWindow(start=0, end=1_000),
        creature=creature,
        spawned_at=0,
        expires_at=expires_at,
    )


def test_from_regions_file(tmp_path):
    path = tmp_path / "regions.json"
    path.write_text(json.dumps({"regions": [{"id": "valley-1", "biome": "plains", "radius": 500}]}))

    store = MemoryStore.from_regions_file(path)

    assert list(store.regions) == ["valley-1"]
    assert store.regions["valley-1"].radius == 500


def test_from_regions_file_rejects_garbage(tmp_path):
    path = tmp_path / "regions.json"
    path.write_text("not json")
    with pytest.raises(ConfigurationError):
        MemoryStore.from_regions_file(path)


@pytest.mark.asyncio
async def test_keyed_creates_are_idempotent(catalog):
    store = MemoryStore()
    spawn = make_spawn(catalog)

    assert await store.create_creature(spawn.creature)
    assert not await store.create_creature(spawn.creature)
    assert await store.create_spawn(spawn)
    assert not await store.create_spawn(spawn)

    duplicate_key = make_spawn(catalog, spawn_id="s2")
    assert not await store.create_spawn(duplicate_key)
    assert await store.read_spawn_by_key("valley-1", 0, 1) == spawn


@pytest.mark.asyncio
async def test_returned_records_are_copies(catalog):
    store = MemoryStore()
    spawn = make_spawn(catalog)
    await store.create_creature(spawn.creature)

    copy = await store.read_creature(spawn.creature.id)
    copy.owner_id = "intruder"

    assert (await store.read_creature(spawn.creature.id)).owner_id is None


@pytest.mark.asyncio
async def test_lock_compare_and_set(catalog):
    store = MemoryStore()
    await store.create_spawn(make_spawn(catalog))
    lock = SpawnLock(actor_id="alice", locked_at=10)

    assert await store.conditional_update_spawn_lock("s1", None, lock, now=10)
    assert not await store.conditional_update_spawn_lock("s1", None, SpawnLock("bob", 11), now=11)
    assert await store.conditional_update_spawn_lock("s1", lock, None, now=12)
    assert not await store.conditional_update_spawn_lock("s1", None, lock, now=1_000)
    assert not await store.conditional_update_spawn_lock("missing", None, lock, now=10)


@pytest.mark.asyncio
async def test_consume_spawn_checks_lock_holder(catalog):
    store = MemoryStore()
    spawn = make_spawn(catalog)
    await store.create_creature(spawn.creature)
    await store.create_spawn(spawn)
    await store.conditional_update_spawn_lock("s1", None, SpawnLock("alice", 100), now=100)

    assert await store.consume_spawn("s1", "bob", lock_valid_after=0, now=200) is None
    assert await store.consume_spawn("s1", "alice", lock_valid_after=100, now=200) is None

    creature = await store.consume_spawn("s1", "alice", lock_valid_after=0, now=200)
    assert creature.owner_id == "alice"
    assert creature.status == CreatureStatus.CAPTURED
    assert await store.read_spawn("s1") is None


@pytest.mark.asyncio
async def test_delete_expired_spawns(catalog):
    store = MemoryStore()
    await store.create_spawn(make_spawn(catalog, "s1", seed=1, expires_at=100))
    await store.create_spawn(make_spawn(catalog, "s2", seed=2, expires_at=200))

    assert await store.delete_expired_spawns(150) == 1
    assert [s.id for s in await store.list_active_spawns(150)] == ["s2"]


@pytest.mark.asyncio
async def test_lineage_and_progress_updates(catalog):
    store = MemoryStore()
    creature = make_spawn(catalog).creature
    await store.create_creature(creature)

    node = LineageNode(creature_id="child", generation=1, timestamp=5, parent_a=creature.id, parent_b="x")
    assert await store.append_lineage_record(creature.id, node)
    assert await store.update_creature_progress(creature.id, xp=150, level=2)
    assert not await store.update_creature_progress("missing", xp=1, level=1)

    stored = await store.read_creature(creature.id)
    assert stored.lineage == [node]
    assert (stored.xp, stored.level) == (150, 2)


@pytest.mark.asyncio
async def test_conditional_status_update(catalog):
    store = MemoryStore()
    creature = make_spawn(catalog).creature
    await store.create_creature(creature)

    assert not await store.update_creature_ownership_and_status(
        creature.id, "p1", CreatureStatus.LISTED, expected_status=CreatureStatus.CAPTURED
    )
    assert await store.update_creature_ownership_and_status(
        creature.id, "p1", CreatureStatus.CAPTURED, expected_status=CreatureStatus.WILD
    )
    assert [c.id for c in await store.list_creatures_by_owner("p1")] == [creature.id]


@pytest.mark.asyncio
async def test_breeding_request_lifecycle(catalog):
    store = MemoryStore()
    generator = CreatureGenerator(catalog, Settings())
    parent_a = generator.generate(1, "dragon")
    parent_b = generator.generate(2, "dragon")
    for parent in (parent_a, parent_b):
        parent.owner_id = "alice"
        parent.status = CreatureStatus.CAPTURED
        await store.create_creature(parent)

    request = BreedingRequest(
        id="b1",
        parent_a_id=parent_a.id,
        parent_b_id=parent_b.id,
        owner_id="alice",
        breeding_seed=7,
        started_at=0,
        completes_at=100,
    )
    assert await store.create_breeding_request(request)
    assert (await store.read_creature(parent_a.id)).status == CreatureStatus.BREEDING

    # Parents are busy, so a second request over them conflicts
    assert not await store.create_breeding_request(replace(request, id="b2"))

    offspring = generator.generate(3, "dragon", creature_id="child")
    offspring.owner_id = "alice"
    offspring.status = CreatureStatus.CAPTURED
    assert await store.complete_breeding_request("b1", offspring, now=100)
    assert not await store.complete_breeding_request("b1", offspring, now=101)

    stored_request = await store.read_breeding_request("b1")
    assert stored_request.completed
    assert stored_request.offspring_id == "child"
    parent = await store.read_creature(parent_a.id)
    assert parent.status == CreatureStatus.CAPTURED
    assert parent.lineage[-1].creature_id == "child"
