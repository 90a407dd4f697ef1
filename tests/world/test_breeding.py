"""Tests for BreedingService — validation, deferred completion, exactly once."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from hatchlands.bus.channels import Channels
from hatchlands.config import Settings
from hatchlands.core.errors import ResourceError
from hatchlands.core.generator import CreatureGenerator
from hatchlands.core.models import BreedingRequest, Creature, CreatureStatus
from hatchlands.core.species import SpeciesCatalog
from hatchlands.db.memory import MemoryStore
from hatchlands.world.breeding import BreedingService, BreedingStatus

DAY_MS = 86_400_000


@pytest.fixture(scope="module")
def catalog() -> SpeciesCatalog:
    return SpeciesCatalog.load()


@pytest.fixture
def settings() -> Settings:
    return Settings(breeding_duration_ms=DAY_MS, postgres_dsn="")


async def add_owned(store: MemoryStore, catalog: SpeciesCatalog, seed: int, species: str, owner: str = "p1") -> Creature:
    creature = CreatureGenerator(catalog, Settings()).generate(seed, species)
    creature.owner_id = owner
    creature.status = CreatureStatus.CAPTURED
    await store.create_creature(creature)
    return creature


@pytest.mark.asyncio
async def test_start_marks_parents_breeding(catalog, settings):
    store = MemoryStore()
    a = await add_owned(store, catalog, 1, "dragon")
    b = await add_owned(store, catalog, 2, "phoenix")
    service = BreedingService(store, catalog, settings)

    result = await service.start(a.id, b.id, "p1", now=1_000)

    assert result.status == BreedingStatus.STARTED
    assert result.request.completes_at == 1_000 + DAY_MS
    assert (await store.read_creature(a.id)).status == CreatureStatus.BREEDING
    assert (await store.read_creature(b.id)).status == CreatureStatus.BREEDING
    assert await store.read_breeding_request(result.request.id) == result.request


@pytest.mark.asyncio
async def test_start_validation_errors(catalog, settings):
    store = MemoryStore()
    a = await add_owned(store, catalog, 1, "dragon")
    kraken = await add_owned(store, catalog, 2, "kraken")
    foreign = await add_owned(store, catalog, 3, "dragon", owner="p2")
    service = BreedingService(store, catalog, settings)

    cases = [
        ((a.id, a.id), "SAME_CREATURE"),
        ((a.id, "missing"), "CREATURE_NOT_FOUND"),
        ((a.id, foreign.id), "NOT_OWNER"),
        ((a.id, kraken.id), "INCOMPATIBLE_ANCHORS"),
    ]
    for (first, second), code in cases:
        with pytest.raises(ResourceError) as excinfo:
            await service.start(first, second, "p1", now=0)
        assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_parents_cannot_breed_twice(catalog, settings):
    store = MemoryStore()
    a = await add_owned(store, catalog, 1, "dragon")
    b = await add_owned(store, catalog, 2, "dragon")
    c = await add_owned(store, catalog, 3, "dragon")
    service = BreedingService(store, catalog, settings)

    await service.start(a.id, b.id, "p1", now=0)
    with pytest.raises(ResourceError) as excinfo:
        await service.start(a.id, c.id, "p1", now=10)
    assert excinfo.value.code == "CREATURE_UNAVAILABLE"


class RacingStore(MemoryStore):
    """Another request grabs a parent between validation and the write."""

    async def create_breeding_request(self, request: BreedingRequest) -> bool:
        self.creatures[request.parent_a_id].status = CreatureStatus.LISTED
        return await super().create_breeding_request(request)


@pytest.mark.asyncio
async def test_lost_start_race_is_a_conflict(catalog, settings):
    store = RacingStore()
    a = await add_owned(store, catalog, 1, "dragon")
    b = await add_owned(store, catalog, 2, "dragon")
    service = BreedingService(store, catalog, settings)

    result = await service.start(a.id, b.id, "p1", now=0)

    assert result.status == BreedingStatus.CONFLICT
    assert store.breeding_requests == {}
    assert (await store.read_creature(b.id)).status == CreatureStatus.CAPTURED


@pytest.mark.asyncio
async def test_complete_lifecycle(catalog, settings):
    store = MemoryStore()
    a = await add_owned(store, catalog, 1, "dragon")
    b = await add_owned(store, catalog, 2, "phoenix")
    bus = AsyncMock()
    service = BreedingService(store, catalog, settings, event_bus=bus)
    request = (await service.start(a.id, b.id, "p1", now=0)).request

    assert (await service.complete(request.id, "p2", now=DAY_MS)).status == BreedingStatus.NOT_FOUND
    assert (await service.complete(request.id, "p1", now=DAY_MS - 1)).status == BreedingStatus.NOT_READY

    result = await service.complete(request.id, "p1", now=DAY_MS + 5)

    assert result.status == BreedingStatus.COMPLETED
    offspring = result.offspring
    assert offspring.owner_id == "p1"
    assert offspring.status == CreatureStatus.CAPTURED
    assert offspring.generation == 1
    assert offspring.birth_timestamp == DAY_MS + 5
    assert offspring.primary_species in {"dragon", "phoenix"}
    assert len(offspring.lineage) == 1
    assert offspring.lineage[0].parent_a == a.id
    assert offspring.lineage[0].parent_b == b.id

    preview = service.preview(a, b, request.breeding_seed)
    assert preview.genome == offspring.genome

    stored_request = await store.read_breeding_request(request.id)
    assert stored_request.completed
    assert stored_request.offspring_id == offspring.id
    for parent_id in (a.id, b.id):
        parent = await store.read_creature(parent_id)
        assert parent.status == CreatureStatus.CAPTURED
        assert parent.lineage[-1].creature_id == offspring.id

    bus.publish.assert_awaited_once()
    assert bus.publish.await_args.args[0] == Channels.OFFSPRING_BORN


@pytest.mark.asyncio
async def test_completion_happens_exactly_once(catalog, settings):
    store = MemoryStore()
    a = await add_owned(store, catalog, 1, "dragon")
    b = await add_owned(store, catalog, 2, "dragon")
    service = BreedingService(store, catalog, settings)
    request = (await service.start(a.id, b.id, "p1", now=0)).request

    results = await asyncio.gather(
        service.complete(request.id, "p1", now=DAY_MS),
        service.complete(request.id, "p1", now=DAY_MS),
    )
    statuses = sorted(r.status for r in results)
    assert statuses == sorted([BreedingStatus.COMPLETED, BreedingStatus.ALREADY_COMPLETED])

    later = await service.complete(request.id, "p1", now=DAY_MS * 30)
    assert later.status == BreedingStatus.ALREADY_COMPLETED
    assert len(await store.list_creatures_by_owner("p1")) == 3


@pytest.mark.asyncio
async def test_explicit_breeding_seed_is_kept(catalog, settings):
    store = MemoryStore()
    a = await add_owned(store, catalog, 1, "griffin")
    b = await add_owned(store, catalog, 2, "pegasus")
    service = BreedingService(store, catalog, settings)

    result = await service.start(a.id, b.id, "p1", now=0, breeding_seed=55)

    assert result.request.breeding_seed == 55
