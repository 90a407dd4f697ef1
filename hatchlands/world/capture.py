"""Capture lock manager — exclusive encounters on a spawn.

Lock acquisition is one compare-and-set against the store, never an
in-process mutex, because actors may be served by independent handlers.
A lock older than the encounter timeout counts as no lock at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

from hatchlands.bus.channels import Channels
from hatchlands.bus.event_bus import EventBus
from hatchlands.bus.events import SpawnCaptured
from hatchlands.config import Settings
from hatchlands.core.models import Creature, SpawnLock
from hatchlands.db.store import WorldStore
from hatchlands.world import system_clock

logger = structlog.get_logger()


class LockResult(str, Enum):
    SUCCESS = "success"
    ALREADY_LOCKED = "already_locked"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


class CaptureStatus(str, Enum):
    CAPTURED = "captured"
    NOT_FOUND = "not_found"
    NOT_LOCKED = "not_locked"
    LOCKED_BY_OTHER = "locked_by_other"


@dataclass
class CaptureResult:
    """Outcome of a capture attempt; ``creature`` is set only on CAPTURED."""

    status: CaptureStatus
    creature: Optional[Creature] = None


class CaptureLockManager:
    """Acquires, releases and consumes spawn locks."""

    def __init__(
        self,
        store: WorldStore,
        settings: Settings,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], int] = system_clock,
    ) -> None:
        self.store = store
        self.lock_timeout_ms = settings.encounter_lock_ms
        self.event_bus = event_bus
        self.clock = clock

    async def try_lock(self, spawn_id: str, actor_id: str, now: Optional[int] = None) -> LockResult:
        """Try to take the encounter lock on a spawn.

        Args:
            spawn_id: Spawn to lock.
            actor_id: Actor starting the encounter.
            now: Current time in ms; read from the clock when omitted.

        Returns:
            SUCCESS if this call took the lock. Exactly one of several
            concurrent callers on an unlocked spawn gets SUCCESS; the rest
            get ALREADY_LOCKED.
        """
        if now is None:
            now = self.clock()
        spawn = await self.store.read_spawn(spawn_id)
        if spawn is None:
            return LockResult.NOT_FOUND
        if spawn.is_expired(now):
            return LockResult.EXPIRED

        observed = spawn.lock
        if observed is not None and observed.is_live(now, self.lock_timeout_ms):
            return LockResult.ALREADY_LOCKED

        won = await self.store.conditional_update_spawn_lock(
            spawn_id, observed, SpawnLock(actor_id=actor_id, locked_at=now), now
        )
        if not won:
            logger.info("spawn_lock_race_lost", spawn_id=spawn_id, actor_id=actor_id)
            return LockResult.ALREADY_LOCKED

        logger.info(
            "spawn_locked",
            spawn_id=spawn_id,
            actor_id=actor_id,
            took_over_stale=observed is not None,
        )
        return LockResult.SUCCESS

    async def unlock(self, spawn_id: str, actor_id: Optional[str] = None, now: Optional[int] = None) -> bool:
        """Release a lock (flee or timeout).

        When ``actor_id`` is given only that actor's lock is released.

        Returns:
            True if a lock was cleared.
        """
        if now is None:
            now = self.clock()
        spawn = await self.store.read_spawn(spawn_id)
        if spawn is None or spawn.lock is None:
            return False
        if actor_id is not None and spawn.lock.actor_id != actor_id:
            return False
        released = await self.store.conditional_update_spawn_lock(spawn_id, spawn.lock, None, now)
        if released:
            logger.info("spawn_unlocked", spawn_id=spawn_id, actor_id=spawn.lock.actor_id)
        return released

    async def capture(self, spawn_id: str, actor_id: str, now: Optional[int] = None) -> CaptureResult:
        """Consume a spawn locked by ``actor_id`` and take its creature.

        Deleting the spawn and transferring the creature happen in one
        store transaction.
        """
        if now is None:
            now = self.clock()
        spawn = await self.store.read_spawn(spawn_id)
        if spawn is None or spawn.is_expired(now):
            return CaptureResult(CaptureStatus.NOT_FOUND)

        lock = spawn.lock
        if lock is None or not lock.is_live(now, self.lock_timeout_ms):
            return CaptureResult(CaptureStatus.NOT_LOCKED)
        if lock.actor_id != actor_id:
            return CaptureResult(CaptureStatus.LOCKED_BY_OTHER)

        creature = await self.store.consume_spawn(
            spawn_id, actor_id, now - self.lock_timeout_ms, now
        )
        if creature is None:
            # Lock expired or the spawn vanished between read and consume
            return CaptureResult(CaptureStatus.NOT_LOCKED)

        logger.info("spawn_captured", spawn_id=spawn_id, creature_id=creature.id, actor_id=actor_id)
        if self.event_bus is not None:
            await self.event_bus.publish(
                Channels.SPAWN_CAPTURED,
                SpawnCaptured(
                    spawn_id=spawn_id,
                    creature_id=creature.id,
                    actor_id=actor_id,
                    captured_at=now,
                ),
            )
        return CaptureResult(CaptureStatus.CAPTURED, creature)
