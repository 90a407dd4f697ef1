"""Event types published on the world channels.

All events are dataclasses serialized to JSON by ``EventBus.publish``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class SpawnCreated:
    """Published by the scheduler for every new spawn.

    Attributes:
        spawn_id: Id of the new spawn.
        region_id: Region the spawn belongs to.
        creature_id: Id of the wild creature.
        primary_species: Species of the creature.
        window_start: Start of the spawn's time window (ms).
        expires_at: Expiry timestamp (ms).
        secondary_species: Hybrid partner, if any.
        timestamp: Unix timestamp when the event was created.
    """

    spawn_id: str
    region_id: str
    creature_id: str
    primary_species: str
    window_start: int
    expires_at: int
    secondary_species: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class SpawnCaptured:
    """Published when a spawn is consumed by a capture."""

    spawn_id: str
    creature_id: str
    actor_id: str
    captured_at: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class OffspringBorn:
    """Published once per completed breeding request."""

    request_id: str
    offspring_id: str
    parent_a_id: str
    parent_b_id: str
    owner_id: str
    generation: int
    timestamp: float = field(default_factory=time.time)
