"""Spawn scheduler — populates regions once per fixed time window.

Per (region, window) a spawn slot goes empty -> populated -> expired. The
slot's seed depends only on the region, the window start and the slot
index, so repeated ticks (or a restarted process) rebuild the same spawn
set and keyed inserts make every tick idempotent.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import structlog

from hatchlands.bus.channels import Channels
from hatchlands.bus.event_bus import EventBus
from hatchlands.bus.events import SpawnCreated
from hatchlands.config import Settings
from hatchlands.core.generator import CreatureGenerator
from hatchlands.core.models import Region, Spawn, TimeWindow
from hatchlands.core.prng import SeededRandom, generate_spawn_seed, hash_seed, stable_id, window_start
from hatchlands.core.species import SpeciesCatalog
from hatchlands.db.store import WorldStore
from hatchlands.world import system_clock

logger = structlog.get_logger()


class SpawnScheduler:
    """Periodic task creating wild spawns and sweeping expired ones.

    All collaborators are injected; the scheduler holds no module state and
    several instances may run against the same store.
    """

    def __init__(
        self,
        store: WorldStore,
        catalog: SpeciesCatalog,
        generator: CreatureGenerator,
        settings: Settings,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], int] = system_clock,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: World persistence.
            catalog: Species constraint table.
            generator: Creature generator used for wild spawns.
            settings: Window, duration and per-region counts.
            event_bus: Optional bus for SpawnCreated events.
            clock: Returns the current time in epoch milliseconds.
        """
        self.store = store
        self.catalog = catalog
        self.generator = generator
        self.settings = settings
        self.event_bus = event_bus
        self.clock = clock
        self.running = False
        self.tick_counter = 0

    async def run(self) -> None:
        """Tick every ``tick_interval_sec`` until ``stop()`` is called.

        Note:
            A failing tick is logged and the loop carries on; the next tick
            retries the same window idempotently.
        """
        self.running = True
        logger.info("scheduler_starting", tick_interval_sec=self.settings.tick_interval_sec)

        while self.running:
            self.tick_counter += 1
            try:
                await self.tick()
            except Exception as exc:
                # Never let the scheduler loop crash
                logger.error(
                    "tick_error",
                    tick=self.tick_counter,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            await asyncio.sleep(self.settings.tick_interval_sec)

        logger.info("scheduler_stopped", ticks=self.tick_counter)

    def stop(self) -> None:
        self.running = False

    async def tick(self, now: Optional[int] = None) -> int:
        """Run one scheduling pass.

        Args:
            now: Current time in ms; read from the clock when omitted.

        Returns:
            Number of spawns created by this pass.
        """
        if now is None:
            now = self.clock()
        removed = await self.cleanup_expired(now)

        start = window_start(now, self.settings.time_window_ms)
        regions = await self.store.read_regions()
        created = 0
        for region in regions:
            created += await self.populate_region(region, start, now)

        logger.info(
            "scheduler_tick",
            window_start=start,
            regions=len(regions),
            spawns_created=created,
            spawns_expired=removed,
        )
        return created

    async def cleanup_expired(self, now: int) -> int:
        """Delete every spawn whose expiry has passed, captured or not."""
        removed = await self.store.delete_expired_spawns(now)
        if removed:
            logger.info("spawns_expired", count=removed)
        return removed

    async def populate_region(self, region: Region, start: int, now: int) -> int:
        """Fill the spawn slots of ``region`` for the window starting at ``start``."""
        created = 0
        for index in range(self.settings.spawns_per_region):
            seed = generate_spawn_seed(region.id, start, index)
            if await self.store.read_spawn_by_key(region.id, start, seed) is not None:
                continue

            primary, secondary = self.choose_species(region, seed)
            creature = self.generator.generate(
                seed,
                primary,
                secondary,
                born_at=start,
                creature_id=stable_id("creature", region.id, start, index),
            )
            # The creature outlives its spawn: once it exists the slot was
            # already used this window (captured, expired or live).
            if not await self.store.create_creature(creature):
                continue

            spawn = Spawn(
                id=stable_id("spawn", region.id, start, index),
                seed=seed,
                region_id=region.id,
                window=TimeWindow(start=start, end=start + self.settings.time_window_ms),
                creature=creature,
                spawned_at=now,
                expires_at=now + self.settings.spawn_duration_ms,
            )
            if not await self.store.create_spawn(spawn):
                continue

            created += 1
            logger.info(
                "spawn_created",
                spawn_id=spawn.id,
                region_id=region.id,
                creature_id=creature.id,
                primary_species=creature.primary_species,
                secondary_species=creature.secondary_species,
            )
            if self.event_bus is not None:
                await self.event_bus.publish(
                    Channels.SPAWN_CREATED,
                    SpawnCreated(
                        spawn_id=spawn.id,
                        region_id=region.id,
                        creature_id=creature.id,
                        primary_species=creature.primary_species,
                        secondary_species=creature.secondary_species,
                        window_start=start,
                        expires_at=spawn.expires_at,
                    ),
                )
        return created

    def choose_species(self, region: Region, seed: int) -> tuple[str, Optional[str]]:
        """Pick (primary, secondary) species for a spawn seed.

        Uses its own stream salted from the seed so the choice does not
        shift the generator's draws.
        """
        rng = SeededRandom(hash_seed("species", seed))
        eligible = self.catalog.for_biome(region.biome)
        if not eligible:
            logger.warning("biome_has_no_species", region_id=region.id, biome=region.biome)
            eligible = self.catalog.all()

        primary = rng.weighted_choice(eligible, [s.rarity for s in eligible])
        secondary = None
        if rng.next() < self.settings.wild_hybrid_chance:
            partners = [
                other for other in primary.hybrid_rules.compatible
                if self.catalog.can_hybridize(primary.id, other)
            ]
            if partners:
                secondary = rng.choice(partners)
        return primary.id, secondary
