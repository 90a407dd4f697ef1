"""PostgreSQL repository — async world persistence for Hatchlands.

All functions accept an asyncpg.Pool as the first argument so callers
don't have to manage individual connections. ``PostgresStore`` binds a pool
and exposes them through the ``WorldStore`` contract.

JSON/JSONB columns receive Python dicts/lists directly — the asyncpg
pool is configured with a json codec in connection.init_db().
"""

from __future__ import annotations

from typing import Optional

import asyncpg
import structlog

from hatchlands.core.models import (
    BreedingRequest,
    Creature,
    CreatureStatus,
    LineageNode,
    Region,
    Spawn,
    SpawnLock,
    TimeWindow,
)

logger = structlog.get_logger()

_SPAWN_SELECT = """
    SELECT s.id AS spawn_id, s.seed AS spawn_seed, s.region_id,
           s.time_window_start, s.time_window_end, s.spawned_at, s.expires_at,
           s.locked_by, s.locked_at, c.*
    FROM spawns s
    JOIN creatures c ON c.id = s.creature_id
"""


class _ConditionFailed(Exception):
    """Raised inside a transaction to roll it back when a guard fails."""


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _row_to_creature(row: asyncpg.Record) -> Creature:
    return Creature.from_document({
        "id": row["id"],
        "seed": row["seed"],
        "primaryAnchor": row["primary_anchor"],
        "secondaryAnchor": row["secondary_anchor"],
        "genomeSignature": row["genome_signature"],
        "appearanceParams": row["appearance_params"],
        "ownerId": row["owner_id"],
        "status": row["status"],
        "lineageHistory": row["lineage_history"],
        "capturedAt": row["captured_at"],
        "birthTimestamp": row["birth_timestamp"],
        "xp": row["xp"],
        "level": row["level"],
    })


def _row_to_spawn(row: asyncpg.Record) -> Spawn:
    lock = None
    if row["locked_by"] is not None and row["locked_at"] is not None:
        lock = SpawnLock(actor_id=row["locked_by"], locked_at=row["locked_at"])
    return Spawn(
        id=row["spawn_id"],
        seed=row["spawn_seed"],
        region_id=row["region_id"],
        window=TimeWindow(start=row["time_window_start"], end=row["time_window_end"]),
        creature=_row_to_creature(row),
        spawned_at=row["spawned_at"],
        expires_at=row["expires_at"],
        lock=lock,
    )


def _row_to_request(row: asyncpg.Record) -> BreedingRequest:
    return BreedingRequest(
        id=row["id"],
        parent_a_id=row["parent_a_id"],
        parent_b_id=row["parent_b_id"],
        owner_id=row["owner_id"],
        breeding_seed=row["breeding_seed"],
        started_at=row["started_at"],
        completes_at=row["completes_at"],
        completed=row["completed"],
        offspring_id=row["offspring_id"],
    )


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``DELETE 3``."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


async def _insert_creature(conn: asyncpg.Connection, creature: Creature) -> bool:
    doc = creature.to_document()
    inserted = await conn.fetchval(
        """
        INSERT INTO creatures
            (id, seed, primary_anchor, secondary_anchor, genome_signature,
             appearance_params, owner_id, status, lineage_history, captured_at,
             birth_timestamp, xp, level)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
        ON CONFLICT (id) DO NOTHING
        RETURNING id
        """,
        creature.id,
        creature.seed,
        creature.primary_species,
        creature.secondary_species,
        doc["genomeSignature"],
        doc["appearanceParams"],
        creature.owner_id,
        creature.status.value,
        doc["lineageHistory"],
        creature.captured_at,
        creature.birth_timestamp,
        creature.xp,
        creature.level,
    )
    return inserted is not None


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


async def upsert_region(pool: asyncpg.Pool, region: Region) -> None:
    """Insert or refresh a region row."""
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO regions (id, latitude, longitude, radius, biome)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE
                SET latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    radius = EXCLUDED.radius,
                    biome = EXCLUDED.biome
            """,
            region.id,
            region.latitude,
            region.longitude,
            region.radius,
            region.biome,
        )


async def load_regions(pool: asyncpg.Pool) -> list[Region]:
    async with pool.acquire() as conn:
        rows = await conn.fetch("SELECT id, latitude, longitude, radius, biome FROM regions ORDER BY id")
    return [
        Region(
            id=row["id"],
            biome=row["biome"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            radius=row["radius"],
        )
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Spawns
# ---------------------------------------------------------------------------


async def load_spawn(pool: asyncpg.Pool, spawn_id: str) -> Optional[Spawn]:
    async with pool.acquire() as conn:
        row = await conn.fetchrow(_SPAWN_SELECT + " WHERE s.id = $1", spawn_id)
    return _row_to_spawn(row) if row else None


async def load_spawn_by_key(pool: asyncpg.Pool, region_id: str, window_start: int, seed: int) -> Optional[Spawn]:
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            _SPAWN_SELECT + " WHERE s.region_id = $1 AND s.time_window_start = $2 AND s.seed = $3",
            region_id,
            window_start,
            seed,
        )
    return _row_to_spawn(row) if row else None


async def load_active_spawns(pool: asyncpg.Pool, now: int, region_id: Optional[str] = None) -> list[Spawn]:
    async with pool.acquire() as conn:
        if region_id is None:
            rows = await conn.fetch(_SPAWN_SELECT + " WHERE s.expires_at > $1 ORDER BY s.spawned_at", now)
        else:
            rows = await conn.fetch(
                _SPAWN_SELECT + " WHERE s.expires_at > $1 AND s.region_id = $2 ORDER BY s.spawned_at",
                now,
                region_id,
            )
    return [_row_to_spawn(row) for row in rows]


async def save_spawn(pool: asyncpg.Pool, spawn: Spawn) -> bool:
    """Insert a spawn; a duplicate id or (region, window, seed) key is a no-op.

    Returns:
        True if a row was inserted.
    """
    async with pool.acquire() as conn:
        inserted = await conn.fetchval(
            """
            INSERT INTO spawns
                (id, seed, region_id, creature_id, time_window_start, time_window_end,
                 spawned_at, expires_at, locked_by, locked_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT DO NOTHING
            RETURNING id
            """,
            spawn.id,
            spawn.seed,
            spawn.region_id,
            spawn.creature.id,
            spawn.window.start,
            spawn.window.end,
            spawn.spawned_at,
            spawn.expires_at,
            spawn.lock.actor_id if spawn.lock else None,
            spawn.lock.locked_at if spawn.lock else None,
        )
    return inserted is not None


async def compare_and_set_lock(
    pool: asyncpg.Pool,
    spawn_id: str,
    expected: Optional[SpawnLock],
    new: Optional[SpawnLock],
    now: int,
) -> bool:
    """Single conditional UPDATE on the lock columns of an unexpired spawn."""
    async with pool.acquire() as conn:
        updated = await conn.fetchval(
            """
            UPDATE spawns
            SET locked_by = $2, locked_at = $3
            WHERE id = $1
              AND locked_by IS NOT DISTINCT FROM $4
              AND locked_at IS NOT DISTINCT FROM $5
              AND expires_at > $6
            RETURNING id
            """,
            spawn_id,
            new.actor_id if new else None,
            new.locked_at if new else None,
            expected.actor_id if expected else None,
            expected.locked_at if expected else None,
            now,
        )
    return updated is not None


async def consume_spawn(
    pool: asyncpg.Pool,
    spawn_id: str,
    actor_id: str,
    lock_valid_after: int,
    now: int,
) -> Optional[Creature]:
    """Delete a locked spawn and transfer its creature in one transaction."""
    async with pool.acquire() as conn:
        async with conn.transaction():
            creature_id = await conn.fetchval(
                """
                DELETE FROM spawns
                WHERE id = $1 AND locked_by = $2 AND locked_at > $3 AND expires_at > $4
                RETURNING creature_id
                """,
                spawn_id,
                actor_id,
                lock_valid_after,
                now,
            )
            if creature_id is None:
                return None
            row = await conn.fetchrow(
                """
                UPDATE creatures
                SET owner_id = $2, status = $3, captured_at = $4
                WHERE id = $1
                RETURNING *
                """,
                creature_id,
                actor_id,
                CreatureStatus.CAPTURED.value,
                now,
            )
    return _row_to_creature(row) if row else None


async def purge_expired_spawns(pool: asyncpg.Pool, before: int) -> int:
    async with pool.acquire() as conn:
        status = await conn.execute("DELETE FROM spawns WHERE expires_at <= $1", before)
    return _affected(status)


# ---------------------------------------------------------------------------
# Creatures
# ---------------------------------------------------------------------------


async def save_creature(pool: asyncpg.Pool, creature: Creature) -> bool:
    async with pool.acquire() as conn:
        return await _insert_creature(conn, creature)


async def load_creature(pool: asyncpg.Pool, creature_id: str) -> Optional[Creature]:
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM creatures WHERE id = $1", creature_id)
    return _row_to_creature(row) if row else None


async def load_creatures_by_owner(pool: asyncpg.Pool, owner_id: str) -> list[Creature]:
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT * FROM creatures WHERE owner_id = $1 ORDER BY birth_timestamp DESC",
            owner_id,
        )
    return [_row_to_creature(row) for row in rows]


async def set_creature_owner_and_status(
    pool: asyncpg.Pool,
    creature_id: str,
    owner_id: Optional[str],
    status: CreatureStatus,
    expected_status: Optional[CreatureStatus] = None,
) -> bool:
    async with pool.acquire() as conn:
        updated = await conn.fetchval(
            """
            UPDATE creatures
            SET owner_id = $2, status = $3
            WHERE id = $1 AND ($4::varchar IS NULL OR status = $4)
            RETURNING id
            """,
            creature_id,
            owner_id,
            status.value,
            expected_status.value if expected_status else None,
        )
    return updated is not None


async def append_lineage(pool: asyncpg.Pool, creature_id: str, node: LineageNode) -> bool:
    async with pool.acquire() as conn:
        updated = await conn.fetchval(
            """
            UPDATE creatures
            SET lineage_history = lineage_history || $2::jsonb
            WHERE id = $1
            RETURNING id
            """,
            creature_id,
            [node.to_document()],
        )
    return updated is not None


async def set_creature_progress(pool: asyncpg.Pool, creature_id: str, xp: int, level: int) -> bool:
    async with pool.acquire() as conn:
        updated = await conn.fetchval(
            "UPDATE creatures SET xp = $2, level = $3 WHERE id = $1 RETURNING id",
            creature_id,
            xp,
            level,
        )
    return updated is not None


# ---------------------------------------------------------------------------
# Breeding
# ---------------------------------------------------------------------------


async def open_breeding_request(pool: asyncpg.Pool, request: BreedingRequest) -> bool:
    """Flip both parents to breeding and insert the request, all or nothing."""
    try:
        async with pool.acquire() as conn:
            async with conn.transaction():
                flipped = await conn.fetch(
                    """
                    UPDATE creatures
                    SET status = $3
                    WHERE id = ANY($1::varchar[]) AND owner_id = $2 AND status = $4
                    RETURNING id
                    """,
                    [request.parent_a_id, request.parent_b_id],
                    request.owner_id,
                    CreatureStatus.BREEDING.value,
                    CreatureStatus.CAPTURED.value,
                )
                if len(flipped) != 2:
                    raise _ConditionFailed("parents unavailable")
                inserted = await conn.fetchval(
                    """
                    INSERT INTO breeding_requests
                        (id, parent_a_id, parent_b_id, owner_id, breeding_seed,
                         started_at, completes_at, completed)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, FALSE)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    request.id,
                    request.parent_a_id,
                    request.parent_b_id,
                    request.owner_id,
                    request.breeding_seed,
                    request.started_at,
                    request.completes_at,
                )
                if inserted is None:
                    raise _ConditionFailed("request exists")
    except _ConditionFailed as exc:
        logger.info("breeding_request_conflict", request_id=request.id, reason=str(exc))
        return False
    return True


async def load_breeding_request(pool: asyncpg.Pool, request_id: str) -> Optional[BreedingRequest]:
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM breeding_requests WHERE id = $1", request_id)
    return _row_to_request(row) if row else None


async def close_breeding_request(pool: asyncpg.Pool, request_id: str, offspring: Creature, now: int) -> bool:
    """Insert the offspring, complete the request and release both parents."""
    try:
        async with pool.acquire() as conn:
            async with conn.transaction():
                if not await _insert_creature(conn, offspring):
                    raise _ConditionFailed("offspring exists")
                parents = await conn.fetchrow(
                    """
                    UPDATE breeding_requests
                    SET completed = TRUE, offspring_id = $2
                    WHERE id = $1 AND completed = FALSE
                    RETURNING parent_a_id, parent_b_id
                    """,
                    request_id,
                    offspring.id,
                )
                if parents is None:
                    raise _ConditionFailed("already completed")
                birth = LineageNode(
                    creature_id=offspring.id,
                    generation=offspring.generation,
                    timestamp=now,
                    parent_a=parents["parent_a_id"],
                    parent_b=parents["parent_b_id"],
                )
                await conn.execute(
                    """
                    UPDATE creatures
                    SET status = CASE WHEN status = $3 THEN $4 ELSE status END,
                        lineage_history = lineage_history || $2::jsonb
                    WHERE id = ANY($1::varchar[])
                    """,
                    [parents["parent_a_id"], parents["parent_b_id"]],
                    [birth.to_document()],
                    CreatureStatus.BREEDING.value,
                    CreatureStatus.CAPTURED.value,
                )
    except _ConditionFailed as exc:
        logger.info("breeding_completion_conflict", request_id=request_id, reason=str(exc))
        return False
    return True


# ---------------------------------------------------------------------------
# WorldStore adapter
# ---------------------------------------------------------------------------


class PostgresStore:
    """``WorldStore`` over an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def read_regions(self) -> list[Region]:
        return await load_regions(self.pool)

    async def read_spawn(self, spawn_id: str) -> Optional[Spawn]:
        return await load_spawn(self.pool, spawn_id)

    async def read_spawn_by_key(self, region_id: str, window_start: int, seed: int) -> Optional[Spawn]:
        return await load_spawn_by_key(self.pool, region_id, window_start, seed)

    async def list_active_spawns(self, now: int, region_id: Optional[str] = None) -> list[Spawn]:
        return await load_active_spawns(self.pool, now, region_id)

    async def create_creature(self, creature: Creature) -> bool:
        return await save_creature(self.pool, creature)

    async def create_spawn(self, spawn: Spawn) -> bool:
        return await save_spawn(self.pool, spawn)

    async def conditional_update_spawn_lock(
        self,
        spawn_id: str,
        expected: Optional[SpawnLock],
        new: Optional[SpawnLock],
        now: int,
    ) -> bool:
        return await compare_and_set_lock(self.pool, spawn_id, expected, new, now)

    async def consume_spawn(
        self,
        spawn_id: str,
        actor_id: str,
        lock_valid_after: int,
        now: int,
    ) -> Optional[Creature]:
        return await consume_spawn(self.pool, spawn_id, actor_id, lock_valid_after, now)

    async def read_creature(self, creature_id: str) -> Optional[Creature]:
        return await load_creature(self.pool, creature_id)

    async def list_creatures_by_owner(self, owner_id: str) -> list[Creature]:
        return await load_creatures_by_owner(self.pool, owner_id)

    async def update_creature_ownership_and_status(
        self,
        creature_id: str,
        owner_id: Optional[str],
        status: CreatureStatus,
        expected_status: Optional[CreatureStatus] = None,
    ) -> bool:
        return await set_creature_owner_and_status(self.pool, creature_id, owner_id, status, expected_status)

    async def append_lineage_record(self, creature_id: str, node: LineageNode) -> bool:
        return await append_lineage(self.pool, creature_id, node)

    async def update_creature_progress(self, creature_id: str, xp: int, level: int) -> bool:
        return await set_creature_progress(self.pool, creature_id, xp, level)

    async def delete_expired_spawns(self, before: int) -> int:
        return await purge_expired_spawns(self.pool, before)

    async def create_breeding_request(self, request: BreedingRequest) -> bool:
        return await open_breeding_request(self.pool, request)

    async def read_breeding_request(self, request_id: str) -> Optional[BreedingRequest]:
        return await load_breeding_request(self.pool, request_id)

    async def complete_breeding_request(self, request_id: str, offspring: Creature, now: int) -> bool:
        return await close_breeding_request(self.pool, request_id, offspring, now)
