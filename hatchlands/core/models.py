"""World data model — creatures, genomes, spawns and breeding requests.

Records serialise to documents with fixed camelCase keys. Stored genomes and
appearances are read back with ``from_document`` to rebuild historical
creatures, so the key names below must not change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class CreatureStatus(str, Enum):
    """Lifecycle status of a creature."""

    WILD = "wild"
    CAPTURED = "captured"
    BREEDING = "breeding"
    LISTED = "listed"
    TRADED = "traded"


def _drop_none(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if v is not None}


@dataclass
class GenomeSignature:
    """Abstract genetic encoding of a creature.

    Attributes:
        primary_genes: Ordered integer genes.
        secondary_genes: Second half of a bred genome, None for wild creatures.
        mutations: Indices of genes mutated during breeding.
        generation: 0 for wild-born, max(parents) + 1 for bred creatures.
    """

    primary_genes: list[int]
    secondary_genes: Optional[list[int]] = None
    mutations: list[int] = field(default_factory=list)
    generation: int = 0

    def all_genes(self) -> list[int]:
        return list(self.primary_genes) + list(self.secondary_genes or [])

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "primaryGenes": list(self.primary_genes),
            "secondaryGenes": list(self.secondary_genes) if self.secondary_genes is not None else None,
            "mutations": list(self.mutations),
            "generation": self.generation,
        })

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> GenomeSignature:
        secondary = doc.get("secondaryGenes")
        return cls(
            primary_genes=list(doc.get("primaryGenes") or []),
            secondary_genes=list(secondary) if secondary is not None else None,
            mutations=list(doc.get("mutations") or []),
            generation=int(doc.get("generation", 0)),
        )


@dataclass
class AppearanceParts:
    """Selected anatomy part identifiers."""

    body: str
    head: str
    limbs: list[str] = field(default_factory=list)
    tail: Optional[str] = None
    wings: Optional[list[str]] = None
    fins: Optional[list[str]] = None

    def all_parts(self) -> list[str]:
        parts = [self.body, self.head, *self.limbs]
        if self.tail is not None:
            parts.append(self.tail)
        parts.extend(self.wings or [])
        parts.extend(self.fins or [])
        return parts

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "body": self.body,
            "head": self.head,
            "limbs": list(self.limbs),
            "tail": self.tail,
            "wings": list(self.wings) if self.wings is not None else None,
            "fins": list(self.fins) if self.fins is not None else None,
        })

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> AppearanceParts:
        wings = doc.get("wings")
        fins = doc.get("fins")
        return cls(
            body=doc["body"],
            head=doc["head"],
            limbs=list(doc.get("limbs") or []),
            tail=doc.get("tail"),
            wings=list(wings) if wings is not None else None,
            fins=list(fins) if fins is not None else None,
        )


@dataclass
class AppearanceParams:
    """Inputs for the (external) renderer."""

    parts: AppearanceParts
    color_indices: list[int]
    materials: list[str]
    scale: float
    procedural: dict[str, float] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        return {
            "parts": self.parts.to_document(),
            "colorIndices": list(self.color_indices),
            "materials": list(self.materials),
            "scale": self.scale,
            "procedural": dict(self.procedural),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> AppearanceParams:
        return cls(
            parts=AppearanceParts.from_document(doc["parts"]),
            color_indices=list(doc.get("colorIndices") or []),
            materials=list(doc.get("materials") or []),
            scale=float(doc.get("scale", 1.0)),
            procedural={k: float(v) for k, v in (doc.get("procedural") or {}).items()},
        )


@dataclass
class LineageNode:
    """One breeding event in a creature's history."""

    creature_id: str
    generation: int
    timestamp: int
    parent_a: Optional[str] = None
    parent_b: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "creatureId": self.creature_id,
            "generation": self.generation,
            "timestamp": self.timestamp,
            "parentA": self.parent_a,
            "parentB": self.parent_b,
        })

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> LineageNode:
        return cls(
            creature_id=doc["creatureId"],
            generation=int(doc["generation"]),
            timestamp=int(doc["timestamp"]),
            parent_a=doc.get("parentA"),
            parent_b=doc.get("parentB"),
        )


@dataclass
class Creature:
    """A generated organism.

    Seed, genome and appearance never change after creation. Ownership,
    status, xp/level and the (append-only) lineage history may.
    """

    # Identity
    id: str
    seed: int

    # Biology
    primary_species: str
    genome: GenomeSignature
    appearance: AppearanceParams
    secondary_species: Optional[str] = None

    # Ownership & state
    owner_id: Optional[str] = None
    status: CreatureStatus = CreatureStatus.WILD

    # History
    lineage: list[LineageNode] = field(default_factory=list)
    captured_at: Optional[int] = None
    birth_timestamp: int = 0

    # Growth
    xp: int = 0
    level: int = 1

    @property
    def generation(self) -> int:
        return self.genome.generation

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "seed": self.seed,
            "primaryAnchor": self.primary_species,
            "secondaryAnchor": self.secondary_species,
            "genomeSignature": self.genome.to_document(),
            "appearanceParams": self.appearance.to_document(),
            "ownerId": self.owner_id,
            "status": self.status.value,
            "lineageHistory": [node.to_document() for node in self.lineage],
            "capturedAt": self.captured_at,
            "birthTimestamp": self.birth_timestamp,
            "xp": self.xp,
            "level": self.level,
        })

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Creature:
        return cls(
            id=doc["id"],
            seed=int(doc["seed"]),
            primary_species=doc["primaryAnchor"],
            secondary_species=doc.get("secondaryAnchor"),
            genome=GenomeSignature.from_document(doc["genomeSignature"]),
            appearance=AppearanceParams.from_document(doc["appearanceParams"]),
            owner_id=doc.get("ownerId"),
            status=CreatureStatus(doc.get("status", CreatureStatus.WILD.value)),
            lineage=[LineageNode.from_document(n) for n in doc.get("lineageHistory") or []],
            captured_at=doc.get("capturedAt"),
            birth_timestamp=int(doc.get("birthTimestamp", 0)),
            xp=int(doc.get("xp", 0)),
            level=int(doc.get("level", 1)),
        )


@dataclass(frozen=True)
class Region:
    """A named area of the world. Static reference data."""

    id: str
    biome: str
    latitude: float = 0.0
    longitude: float = 0.0
    radius: int = 1000

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Region:
        coords = doc.get("coordinates") or {}
        return cls(
            id=doc["id"],
            biome=doc["biome"],
            latitude=float(coords.get("latitude", 0.0)),
            longitude=float(coords.get("longitude", 0.0)),
            radius=int(doc.get("radius", 1000)),
        )


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in milliseconds."""

    start: int
    end: int

    def contains(self, ts: int) -> bool:
        return self.start <= ts < self.end


@dataclass(frozen=True)
class SpawnLock:
    """Exclusive claim on a spawn."""

    actor_id: str
    locked_at: int

    def is_live(self, now: int, timeout_ms: int) -> bool:
        """True while the lock is younger than ``timeout_ms``."""
        return now - self.locked_at < timeout_ms


@dataclass
class Spawn:
    """A time-boxed, region-bound instance of a wild creature."""

    id: str
    seed: int
    region_id: str
    window: TimeWindow
    creature: Creature
    spawned_at: int
    expires_at: int
    lock: Optional[SpawnLock] = None

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.region_id, self.window.start, self.seed)

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "seed": self.seed,
            "regionId": self.region_id,
            "timeWindow": {"start": self.window.start, "end": self.window.end},
            "creature": self.creature.to_document(),
            "spawnedAt": self.spawned_at,
            "expiresAt": self.expires_at,
            "locked": self.lock is not None,
            "lockedBy": self.lock.actor_id if self.lock else None,
            "lockedAt": self.lock.locked_at if self.lock else None,
        })


@dataclass
class BreedingRequest:
    """A deferred breeding of two owned creatures."""

    id: str
    parent_a_id: str
    parent_b_id: str
    owner_id: str
    breeding_seed: int
    started_at: int
    completes_at: int
    completed: bool = False
    offspring_id: Optional[str] = None

    def is_ready(self, now: int) -> bool:
        return now >= self.completes_at

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "parentAId": self.parent_a_id,
            "parentBId": self.parent_b_id,
            "ownerId": self.owner_id,
            "breedingSeed": self.breeding_seed,
            "startedAt": self.started_at,
            "completesAt": self.completes_at,
            "completed": self.completed,
            "offspringId": self.offspring_id,
        })


@dataclass(frozen=True)
class GeneticStatProfile:
    """Six normalized stat dimensions, each in [0, 1.25]."""

    vitality: float
    power: float
    defense: float
    agility: float
    intellect: float
    spirit: float

    def to_document(self) -> dict[str, float]:
        return {
            "vitality": self.vitality,
            "power": self.power,
            "defense": self.defense,
            "agility": self.agility,
            "intellect": self.intellect,
            "spirit": self.spirit,
        }


@dataclass
class OffspringBlueprint:
    """Everything needed to materialise a bred creature."""

    seed: int
    primary_species: str
    genome: GenomeSignature
    appearance: AppearanceParams
    stats: GeneticStatProfile
    secondary_species: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        return _drop_none({
            "seed": self.seed,
            "primaryAnchor": self.primary_species,
            "secondaryAnchor": self.secondary_species,
            "genomeSignature": self.genome.to_document(),
            "appearanceParams": self.appearance.to_document(),
            "geneticStats": self.stats.to_document(),
        })
