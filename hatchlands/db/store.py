"""Persistence contract consumed by the world services.

Every method that changes more than one record is a single transaction in
the backing store. Conditional writes return ``False``/``None`` when their
precondition no longer holds; they never raise for an ordinary conflict.
"""

from __future__ import annotations

from typing import Optional, Protocol

from hatchlands.core.models import (
    BreedingRequest,
    Creature,
    CreatureStatus,
    LineageNode,
    Region,
    Spawn,
    SpawnLock,
)


class WorldStore(Protocol):
    """Async store used by the scheduler, capture and breeding services."""

    async def read_regions(self) -> list[Region]: ...

    async def read_spawn(self, spawn_id: str) -> Optional[Spawn]: ...

    async def read_spawn_by_key(self, region_id: str, window_start: int, seed: int) -> Optional[Spawn]: ...

    async def list_active_spawns(self, now: int, region_id: Optional[str] = None) -> list[Spawn]: ...

    async def create_creature(self, creature: Creature) -> bool:
        """Insert a creature keyed by id. Returns False if it already exists."""
        ...

    async def create_spawn(self, spawn: Spawn) -> bool:
        """Insert a spawn keyed by (region, window start, seed). Returns False if present."""
        ...

    async def conditional_update_spawn_lock(
        self,
        spawn_id: str,
        expected: Optional[SpawnLock],
        new: Optional[SpawnLock],
        now: int,
    ) -> bool:
        """Compare-and-set the lock of an unexpired spawn."""
        ...

    async def consume_spawn(
        self,
        spawn_id: str,
        actor_id: str,
        lock_valid_after: int,
        now: int,
    ) -> Optional[Creature]:
        """Delete the spawn and hand its creature to ``actor_id``.

        Succeeds only while ``actor_id`` holds a lock taken after
        ``lock_valid_after`` and the spawn has not expired.
        """
        ...

    async def read_creature(self, creature_id: str) -> Optional[Creature]: ...

    async def list_creatures_by_owner(self, owner_id: str) -> list[Creature]: ...

    async def update_creature_ownership_and_status(
        self,
        creature_id: str,
        owner_id: Optional[str],
        status: CreatureStatus,
        expected_status: Optional[CreatureStatus] = None,
    ) -> bool: ...

    async def append_lineage_record(self, creature_id: str, node: LineageNode) -> bool: ...

    async def update_creature_progress(self, creature_id: str, xp: int, level: int) -> bool: ...

    async def delete_expired_spawns(self, before: int) -> int: ...

    async def create_breeding_request(self, request: BreedingRequest) -> bool:
        """Flip both parents captured -> breeding and insert the request.

        Returns False, changing nothing, if either parent is no longer
        captured by the request owner.
        """
        ...

    async def read_breeding_request(self, request_id: str) -> Optional[BreedingRequest]: ...

    async def complete_breeding_request(self, request_id: str, offspring: Creature, now: int) -> bool:
        """Mark the request completed, insert the offspring and release the parents.

        Appends a lineage node for the birth to both parents. Returns False
        if the request was already completed.
        """
        ...
