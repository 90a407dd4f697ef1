"""Breeding service — deferred, time-gated breeding of owned creatures.

``start`` accepts a request immediately and marks both parents as breeding.
``complete`` is checked lazily: before ``completes_at`` it is rejected, after
it the offspring is materialised exactly once, however often it is called.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

from hatchlands.bus.channels import Channels
from hatchlands.bus.event_bus import EventBus
from hatchlands.bus.events import OffspringBorn
from hatchlands.config import Settings
from hatchlands.core.errors import ResourceError
from hatchlands.core.generator import CreatureGenerator
from hatchlands.core.genetics import GeneticsEngine
from hatchlands.core.models import (
    BreedingRequest,
    Creature,
    CreatureStatus,
    LineageNode,
    OffspringBlueprint,
)
from hatchlands.core.prng import derive_offspring_seed, stable_id
from hatchlands.core.species import SpeciesCatalog
from hatchlands.db.store import WorldStore
from hatchlands.world import system_clock

logger = structlog.get_logger()


class BreedingStatus(str, Enum):
    STARTED = "started"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    ALREADY_COMPLETED = "already_completed"
    COMPLETED = "completed"


@dataclass
class BreedingResult:
    """Typed outcome of a breeding call.

    Attributes:
        status: What happened.
        request: The breeding request, when one exists.
        offspring: The new creature, only on COMPLETED.
    """

    status: BreedingStatus
    request: Optional[BreedingRequest] = None
    offspring: Optional[Creature] = None


class BreedingService:
    """Starts and completes breeding requests against the world store."""

    def __init__(
        self,
        store: WorldStore,
        catalog: SpeciesCatalog,
        settings: Settings,
        genetics: Optional[GeneticsEngine] = None,
        generator: Optional[CreatureGenerator] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], int] = system_clock,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.settings = settings
        self.genetics = genetics or GeneticsEngine(catalog, settings)
        self.generator = generator or CreatureGenerator(catalog, settings, self.genetics)
        self.event_bus = event_bus
        self.clock = clock

    def can_breed(self, species_a: str, species_b: str) -> bool:
        """Same species always breed; otherwise ``species_a`` must list ``species_b``."""
        return species_a == species_b or self.catalog.is_compatible(species_a, species_b)

    def preview(self, parent_a: Creature, parent_b: Creature, breeding_seed: int) -> OffspringBlueprint:
        """Blueprint the offspring would have, without touching the store."""
        return self.genetics.derive_offspring(parent_a, parent_b, breeding_seed)

    async def start(
        self,
        parent_a_id: str,
        parent_b_id: str,
        owner_id: str,
        now: Optional[int] = None,
        breeding_seed: Optional[int] = None,
    ) -> BreedingResult:
        """Open a breeding request.

        Args:
            parent_a_id: First parent.
            parent_b_id: Second parent.
            owner_id: Actor owning both parents.
            now: Current time in ms; read from the clock when omitted.
            breeding_seed: Explicit seed; derived from the parents and
                ``now`` otherwise.

        Returns:
            STARTED with the request, or CONFLICT when another request took
            either parent first.

        Raises:
            ResourceError: If a parent is missing, not owned, unavailable,
                used twice, or the species cannot breed.
        """
        if now is None:
            now = self.clock()
        if parent_a_id == parent_b_id:
            raise ResourceError("SAME_CREATURE", "a creature cannot breed with itself")

        parent_a = await self._owned_parent(parent_a_id, owner_id)
        parent_b = await self._owned_parent(parent_b_id, owner_id)
        if not self.can_breed(parent_a.primary_species, parent_b.primary_species):
            raise ResourceError(
                "INCOMPATIBLE_ANCHORS",
                f"{parent_a.primary_species} cannot breed with {parent_b.primary_species}",
            )

        if breeding_seed is None:
            breeding_seed = derive_offspring_seed(
                parent_a.id, parent_a.seed, parent_b.id, parent_b.seed, nonce=now
            )
        request = BreedingRequest(
            id=stable_id("breeding", parent_a.id, parent_b.id, owner_id, now),
            parent_a_id=parent_a.id,
            parent_b_id=parent_b.id,
            owner_id=owner_id,
            breeding_seed=breeding_seed,
            started_at=now,
            completes_at=now + self.settings.breeding_duration_ms,
        )

        if not await self.store.create_breeding_request(request):
            logger.info("breeding_start_conflict", parent_a=parent_a.id, parent_b=parent_b.id)
            return BreedingResult(BreedingStatus.CONFLICT)

        logger.info(
            "breeding_started",
            request_id=request.id,
            owner_id=owner_id,
            completes_at=request.completes_at,
        )
        return BreedingResult(BreedingStatus.STARTED, request=request)

    async def _owned_parent(self, creature_id: str, owner_id: str) -> Creature:
        creature = await self.store.read_creature(creature_id)
        if creature is None:
            raise ResourceError("CREATURE_NOT_FOUND", f"creature {creature_id} not found")
        if creature.owner_id != owner_id:
            raise ResourceError("NOT_OWNER", f"creature {creature_id} is not owned by {owner_id}")
        if creature.status != CreatureStatus.CAPTURED:
            raise ResourceError(
                "CREATURE_UNAVAILABLE",
                f"creature {creature_id} is {creature.status.value}",
            )
        return creature

    async def complete(self, request_id: str, owner_id: str, now: Optional[int] = None) -> BreedingResult:
        """Materialise the offspring of a finished breeding, exactly once."""
        if now is None:
            now = self.clock()
        request = await self.store.read_breeding_request(request_id)
        if request is None or request.owner_id != owner_id:
            return BreedingResult(BreedingStatus.NOT_FOUND)
        if request.completed:
            return BreedingResult(BreedingStatus.ALREADY_COMPLETED, request=request)
        if not request.is_ready(now):
            return BreedingResult(BreedingStatus.NOT_READY, request=request)

        parent_a = await self.store.read_creature(request.parent_a_id)
        parent_b = await self.store.read_creature(request.parent_b_id)
        if parent_a is None or parent_b is None:
            logger.error("breeding_parent_missing", request_id=request_id)
            return BreedingResult(BreedingStatus.NOT_FOUND, request=request)

        blueprint = self.genetics.derive_offspring(parent_a, parent_b, request.breeding_seed)
        offspring_id = stable_id("offspring", request.id)
        offspring = self.generator.build_offspring(
            blueprint,
            creature_id=offspring_id,
            owner_id=owner_id,
            born_at=now,
            lineage=[
                LineageNode(
                    creature_id=offspring_id,
                    generation=blueprint.genome.generation,
                    timestamp=now,
                    parent_a=parent_a.id,
                    parent_b=parent_b.id,
                )
            ],
        )

        if not await self.store.complete_breeding_request(request.id, offspring, now):
            latest = await self.store.read_breeding_request(request.id)
            return BreedingResult(BreedingStatus.ALREADY_COMPLETED, request=latest)

        request.completed = True
        request.offspring_id = offspring.id
        logger.info(
            "offspring_born",
            request_id=request.id,
            offspring_id=offspring.id,
            generation=offspring.generation,
            primary_species=offspring.primary_species,
            secondary_species=offspring.secondary_species,
            mutations=len(offspring.genome.mutations),
        )
        if self.event_bus is not None:
            await self.event_bus.publish(
                Channels.OFFSPRING_BORN,
                OffspringBorn(
                    request_id=request.id,
                    offspring_id=offspring.id,
                    parent_a_id=parent_a.id,
                    parent_b_id=parent_b.id,
                    owner_id=owner_id,
                    generation=offspring.generation,
                ),
            )
        return BreedingResult(BreedingStatus.COMPLETED, request=request, offspring=offspring)
