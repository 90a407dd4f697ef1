"""Hatchlands entry point — world runner with the spawn scheduler.

Initializes the species catalog, the world store and the event bus, then
runs the spawn scheduler until SIGTERM/SIGINT.

Can be run directly via `python -m hatchlands.main` or through Docker.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

import asyncpg
import structlog

from hatchlands.bus import close_redis, connect_event_bus
from hatchlands.config import Settings
from hatchlands.core.generator import CreatureGenerator
from hatchlands.core.species import SpeciesCatalog
from hatchlands.db.connection import close_db, init_db
from hatchlands.db.memory import MemoryStore
from hatchlands.db.repository import PostgresStore, upsert_region
from hatchlands.db.store import WorldStore
from hatchlands.world.scheduler import SpawnScheduler

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(min_level="info"),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()


class WorldRunner:
    """Manages the world services lifecycle and graceful shutdown."""

    def __init__(self) -> None:
        self.scheduler: Optional[SpawnScheduler] = None
        self.shutdown_event = asyncio.Event()
        self._postgres = False

    async def _open_store(self, settings: Settings) -> WorldStore:
        """PostgreSQL when reachable, otherwise an in-memory store."""
        if settings.postgres_dsn:
            try:
                pool = await init_db(settings)
                self._postgres = True
                if settings.regions_file:
                    for region in MemoryStore.from_regions_file(settings.regions_file).regions.values():
                        await upsert_region(pool, region)
                return PostgresStore(pool)
            except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:
                logger.warning(
                    "postgres_connection_failed",
                    error=str(exc),
                    fallback="in_memory_store",
                )
        if settings.regions_file:
            return MemoryStore.from_regions_file(settings.regions_file)
        logger.warning("no_regions_configured", hint="set HATCHLANDS_REGIONS_FILE")
        return MemoryStore()

    async def run(self) -> None:
        """Initialize components and run the scheduler until shutdown."""
        logger.info("hatchlands_starting", version="0.3.0")

        settings = Settings()
        logger.info(
            "settings_loaded",
            time_window_ms=settings.time_window_ms,
            spawns_per_region=settings.spawns_per_region,
        )

        catalog = SpeciesCatalog.load(settings.species_file or None)
        store = await self._open_store(settings)
        logger.info("world_store_initialized", backend=type(store).__name__)

        event_bus = await connect_event_bus(settings)

        generator = CreatureGenerator(catalog, settings)
        self.scheduler = SpawnScheduler(
            store=store,
            catalog=catalog,
            generator=generator,
            settings=settings,
            event_bus=event_bus,
        )
        logger.info("scheduler_initialized")

        def handle_shutdown(sig: int) -> None:
            logger.info("shutdown_signal_received", signal=sig)
            self.shutdown_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

        scheduler_task = asyncio.create_task(self.scheduler.run())
        logger.info("services_running", scheduler="running")

        await self.shutdown_event.wait()

        logger.info("initiating_graceful_shutdown")
        self.scheduler.stop()
        scheduler_task.cancel()
        await asyncio.gather(scheduler_task, return_exceptions=True)

        if event_bus is not None:
            await close_redis()
        if self._postgres:
            await close_db()

        logger.info("all_services_stopped")


async def main() -> None:
    """Main entry point."""
    runner = WorldRunner()
    try:
        await runner.run()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
    except Exception as exc:
        logger.error("fatal_error", error=str(exc), error_type=type(exc).__name__)
        raise


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
