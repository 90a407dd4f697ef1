"""Creature level progression.

Level ``n`` needs ``floor(100 * 1.1 ** (n - 1))`` XP to advance to ``n + 1``;
``xp`` on a creature is the running total since level 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import structlog

from hatchlands.db.store import WorldStore

logger = structlog.get_logger()

BASE_XP_PER_LEVEL = 100
XP_MULTIPLIER_PER_LEVEL = 1.1
MAX_LEVEL = 100

# XP granted per activity
XP_REWARDS = {
    "capture_wild": 50,
    "capture_rare": 150,
    "defeat_wild": 25,
    "breed_offspring": 200,
    "daily_visit": 10,
}


@dataclass(frozen=True)
class LevelProgress:
    xp: int
    level: int
    leveled_up: bool


def xp_required(level: int) -> int:
    """XP needed to go from ``level`` to ``level + 1``."""
    return math.floor(BASE_XP_PER_LEVEL * XP_MULTIPLIER_PER_LEVEL ** (level - 1))


def total_xp_to_level(level: int) -> int:
    """Cumulative XP needed to reach ``level`` from level 1."""
    return sum(xp_required(n) for n in range(1, level))


def level_for_xp(xp: int) -> int:
    """Highest level reachable with ``xp`` total experience."""
    level = 1
    needed = 0
    while level < MAX_LEVEL:
        needed += xp_required(level)
        if xp < needed:
            break
        level += 1
    return level


def add_xp(xp: int, level: int, amount: int) -> LevelProgress:
    """Apply an XP gain; levels never go down."""
    new_xp = xp + max(0, amount)
    new_level = max(level, level_for_xp(new_xp))
    return LevelProgress(xp=new_xp, level=new_level, leveled_up=new_level > level)


async def award_experience(store: WorldStore, creature_id: str, amount: int) -> Optional[LevelProgress]:
    """Add XP to a stored creature.

    Returns:
        The new progress, or None if the creature does not exist.
    """
    creature = await store.read_creature(creature_id)
    if creature is None:
        return None
    progress = add_xp(creature.xp, creature.level, amount)
    if not await store.update_creature_progress(creature_id, progress.xp, progress.level):
        return None
    if progress.leveled_up:
        logger.info("creature_leveled_up", creature_id=creature_id, level=progress.level)
    return progress


async def award_activity(store: WorldStore, creature_id: str, activity: str) -> Optional[LevelProgress]:
    """Award the ``XP_REWARDS`` amount for ``activity``.

    Raises:
        KeyError: If the activity has no reward.
    """
    return await award_experience(store, creature_id, XP_REWARDS[activity])
