"""In-process WorldStore used by tests and local runs without PostgreSQL.

Methods never await between reading and writing, so each one is atomic
with respect to other coroutines on the same event loop.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Iterable, Optional

import structlog

from hatchlands.core.errors import ConfigurationError
from hatchlands.core.models import (
    BreedingRequest,
    Creature,
    CreatureStatus,
    LineageNode,
    Region,
    Spawn,
    SpawnLock,
)

logger = structlog.get_logger()


class MemoryStore:
    """Dict-backed store. Returned records are copies."""

    def __init__(self, regions: Iterable[Region] = ()) -> None:
        self.regions: dict[str, Region] = {r.id: r for r in regions}
        self.creatures: dict[str, Creature] = {}
        self.spawns: dict[str, Spawn] = {}
        self.breeding_requests: dict[str, BreedingRequest] = {}

    @classmethod
    def from_regions_file(cls, path: str | Path) -> MemoryStore:
        """Build a store seeded with regions from ``{"regions": [...]}`` JSON."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            regions = [Region.from_document(doc) for doc in data["regions"]]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise ConfigurationError(f"cannot read regions file {path}: {exc}") from exc
        logger.info("regions_loaded", path=str(path), regions=len(regions))
        return cls(regions)

    def add_region(self, region: Region) -> None:
        self.regions[region.id] = region

    # ------------------------------------------------------------------
    # Regions & spawns
    # ------------------------------------------------------------------

    async def read_regions(self) -> list[Region]:
        return list(self.regions.values())

    async def read_spawn(self, spawn_id: str) -> Optional[Spawn]:
        spawn = self.spawns.get(spawn_id)
        return copy.deepcopy(spawn) if spawn else None

    async def read_spawn_by_key(self, region_id: str, window_start: int, seed: int) -> Optional[Spawn]:
        for spawn in self.spawns.values():
            if spawn.key == (region_id, window_start, seed):
                return copy.deepcopy(spawn)
        return None

    async def list_active_spawns(self, now: int, region_id: Optional[str] = None) -> list[Spawn]:
        return [
            copy.deepcopy(s) for s in self.spawns.values()
            if not s.is_expired(now) and (region_id is None or s.region_id == region_id)
        ]

    async def create_creature(self, creature: Creature) -> bool:
        if creature.id in self.creatures:
            return False
        self.creatures[creature.id] = copy.deepcopy(creature)
        return True

    async def create_spawn(self, spawn: Spawn) -> bool:
        if spawn.id in self.spawns or any(s.key == spawn.key for s in self.spawns.values()):
            return False
        self.spawns[spawn.id] = copy.deepcopy(spawn)
        return True

    async def conditional_update_spawn_lock(
        self,
        spawn_id: str,
        expected: Optional[SpawnLock],
        new: Optional[SpawnLock],
        now: int,
    ) -> bool:
        spawn = self.spawns.get(spawn_id)
        if spawn is None or spawn.is_expired(now) or spawn.lock != expected:
            return False
        spawn.lock = new
        return True

    async def consume_spawn(
        self,
        spawn_id: str,
        actor_id: str,
        lock_valid_after: int,
        now: int,
    ) -> Optional[Creature]:
        spawn = self.spawns.get(spawn_id)
        if spawn is None or spawn.is_expired(now):
            return None
        lock = spawn.lock
        if lock is None or lock.actor_id != actor_id or lock.locked_at <= lock_valid_after:
            return None
        creature = self.creatures.get(spawn.creature.id)
        if creature is None:
            return None

        del self.spawns[spawn_id]
        creature.owner_id = actor_id
        creature.status = CreatureStatus.CAPTURED
        creature.captured_at = now
        return copy.deepcopy(creature)

    async def delete_expired_spawns(self, before: int) -> int:
        expired = [sid for sid, s in self.spawns.items() if s.expires_at <= before]
        for sid in expired:
            del self.spawns[sid]
        return len(expired)

    # ------------------------------------------------------------------
    # Creatures
    # ------------------------------------------------------------------

    async def read_creature(self, creature_id: str) -> Optional[Creature]:
        creature = self.creatures.get(creature_id)
        return copy.deepcopy(creature) if creature else None

    async def list_creatures_by_owner(self, owner_id: str) -> list[Creature]:
        owned = [c for c in self.creatures.values() if c.owner_id == owner_id]
        return [copy.deepcopy(c) for c in sorted(owned, key=lambda c: c.birth_timestamp, reverse=True)]

    async def update_creature_ownership_and_status(
        self,
        creature_id: str,
        owner_id: Optional[str],
        status: CreatureStatus,
        expected_status: Optional[CreatureStatus] = None,
    ) -> bool:
        creature = self.creatures.get(creature_id)
        if creature is None:
            return False
        if expected_status is not None and creature.status != expected_status:
            return False
        creature.owner_id = owner_id
        creature.status = status
        return True

    async def append_lineage_record(self, creature_id: str, node: LineageNode) -> bool:
        creature = self.creatures.get(creature_id)
        if creature is None:
            return False
        creature.lineage.append(copy.deepcopy(node))
        return True

    async def update_creature_progress(self, creature_id: str, xp: int, level: int) -> bool:
        creature = self.creatures.get(creature_id)
        if creature is None:
            return False
        creature.xp = xp
        creature.level = level
        return True

    # ------------------------------------------------------------------
    # Breeding
    # ------------------------------------------------------------------

    async def create_breeding_request(self, request: BreedingRequest) -> bool:
        if request.id in self.breeding_requests:
            return False
        parents = [self.creatures.get(request.parent_a_id), self.creatures.get(request.parent_b_id)]
        for parent in parents:
            if parent is None or parent.owner_id != request.owner_id or parent.status != CreatureStatus.CAPTURED:
                return False
        for parent in parents:
            parent.status = CreatureStatus.BREEDING
        self.breeding_requests[request.id] = copy.deepcopy(request)
        return True

    async def read_breeding_request(self, request_id: str) -> Optional[BreedingRequest]:
        request = self.breeding_requests.get(request_id)
        return copy.deepcopy(request) if request else None

    async def complete_breeding_request(self, request_id: str, offspring: Creature, now: int) -> bool:
        request = self.breeding_requests.get(request_id)
        if request is None or request.completed or offspring.id in self.creatures:
            return False

        request.completed = True
        request.offspring_id = offspring.id
        self.creatures[offspring.id] = copy.deepcopy(offspring)

        birth = LineageNode(
            creature_id=offspring.id,
            generation=offspring.generation,
            timestamp=now,
            parent_a=request.parent_a_id,
            parent_b=request.parent_b_id,
        )
        for parent_id in (request.parent_a_id, request.parent_b_id):
            parent = self.creatures.get(parent_id)
            if parent is None:
                continue
            if parent.status == CreatureStatus.BREEDING:
                parent.status = CreatureStatus.CAPTURED
            parent.lineage.append(copy.deepcopy(birth))
        return True
