"""Species constraint table — read-only catalog of anchor species.

The catalog is passed explicitly to the generator, the genetics engine and
the scheduler. The bundled ``species.json`` holds the fifteen anchors; tests
and alternate worlds build their own catalog with ``SpeciesCatalog.from_dict``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator

from hatchlands.core.errors import ConfigurationError

logger = structlog.get_logger()

_BUNDLED_CATALOG = Path(__file__).parent / "species.json"


class Anatomy(BaseModel):
    """Parts a species may be built from, per category."""

    body_parts: list[str] = Field(..., min_length=1)
    head_types: list[str] = Field(..., min_length=1)
    limb_types: list[str] = Field(default_factory=list)
    tail_types: list[str] = Field(default_factory=list)
    wing_types: list[str] = Field(default_factory=list)
    fin_types: list[str] = Field(default_factory=list)


class HybridRules(BaseModel):
    """Which species this one may hybridize with, and how much it may borrow."""

    compatible: list[str] = Field(default_factory=list)
    max_foreign_parts: int = Field(default=0, ge=0)
    dominant_traits: list[str] = Field(default_factory=list)


class SpeciesDefinition(BaseModel):
    """A fixed biological template."""

    id: str
    name: str
    description: str = ""
    rarity: float = Field(..., gt=0.0, le=1.0)
    size_category: str = "medium"
    habitats: list[str] = Field(default_factory=list)
    locomotion: list[str] = Field(default_factory=list)
    diet: str = "omnivore"
    anatomy: Anatomy
    max_limbs: int = Field(default=4, ge=0)
    wing_chance: float = Field(default=0.7, ge=0.0, le=1.0)
    fin_chance: float = Field(default=0.5, ge=0.0, le=1.0)
    color_palettes: list[list[str]] = Field(..., min_length=1)
    materials: list[str] = Field(..., min_length=1)
    forbidden: list[str] = Field(default_factory=list)
    hybrid_rules: HybridRules = Field(default_factory=HybridRules)

    @model_validator(mode="after")
    def _check_palettes(self) -> SpeciesDefinition:
        if any(len(palette) == 0 for palette in self.color_palettes):
            raise ValueError("color palettes must not be empty")
        return self


def _stem(trait: str) -> str:
    trait = trait.lower()
    if len(trait) > 3 and trait.endswith("s"):
        return trait[:-1]
    return trait


def trait_matches(value: str, trait: str) -> bool:
    """True if a part/material id carries ``trait``.

    ``feathered_wings`` carries ``feathers`` and ``wings``; ``fin_legs``
    carries ``fins`` and ``legs``.
    """
    stem = _stem(trait)
    return any(token.startswith(stem) for token in value.lower().split("_"))


class SpeciesCatalog:
    """Read-only lookup over species definitions."""

    def __init__(self, species: Iterable[SpeciesDefinition]) -> None:
        self._species: dict[str, SpeciesDefinition] = {}
        for definition in species:
            if definition.id in self._species:
                raise ConfigurationError(f"duplicate species id: {definition.id}")
            self._species[definition.id] = definition
        if not self._species:
            raise ConfigurationError("species catalog is empty")
        self._validate()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SpeciesCatalog:
        """Build a catalog from ``{"species": [...]}``.

        Raises:
            ConfigurationError: If any definition is malformed.
        """
        try:
            definitions = [SpeciesDefinition.model_validate(item) for item in data["species"]]
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(f"malformed species catalog: {exc}") from exc
        except ValidationError as exc:
            raise ConfigurationError(f"invalid species definition: {exc}") from exc
        return cls(definitions)

    @classmethod
    def load(cls, path: Optional[str | Path] = None) -> SpeciesCatalog:
        """Load a catalog from a JSON file (the bundled one by default)."""
        catalog_path = Path(path) if path else _BUNDLED_CATALOG
        try:
            data = json.loads(catalog_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"cannot read species catalog {catalog_path}: {exc}") from exc
        catalog = cls.from_dict(data)
        logger.info("species_catalog_loaded", path=str(catalog_path), species=len(catalog))
        return catalog

    def _validate(self) -> None:
        for definition in self._species.values():
            for other in definition.hybrid_rules.compatible:
                if other not in self._species:
                    raise ConfigurationError(
                        f"{definition.id} lists unknown hybrid partner {other}"
                    )
            if not self.allowed(definition.id, definition.anatomy.body_parts):
                raise ConfigurationError(f"{definition.id} forbids every body part")
            if not self.allowed(definition.id, definition.anatomy.head_types):
                raise ConfigurationError(f"{definition.id} forbids every head type")
            if not self.allowed(definition.id, definition.materials):
                raise ConfigurationError(f"{definition.id} forbids every material")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._species)

    def __contains__(self, species_id: object) -> bool:
        return species_id in self._species

    def get(self, species_id: str) -> SpeciesDefinition:
        """Return a species definition.

        Raises:
            ConfigurationError: If the id is unknown.
        """
        try:
            return self._species[species_id]
        except KeyError:
            raise ConfigurationError(f"unknown species id: {species_id}") from None

    def ids(self) -> list[str]:
        """All species ids in catalog order."""
        return list(self._species)

    def all(self) -> list[SpeciesDefinition]:
        return list(self._species.values())

    def for_biome(self, biome: str) -> list[SpeciesDefinition]:
        """Species whose habitats include ``biome``, in catalog order."""
        return [s for s in self._species.values() if biome in s.habitats]

    def is_compatible(self, species_a: str, species_b: str) -> bool:
        """True if ``species_a`` lists ``species_b`` as a hybrid partner."""
        return species_b in self.get(species_a).hybrid_rules.compatible

    def can_hybridize(self, primary: str, secondary: str) -> bool:
        """True if both species accept each other as hybrid partners."""
        if primary == secondary:
            return False
        return self.is_compatible(primary, secondary) and self.is_compatible(secondary, primary)

    def is_forbidden(self, species_id: str, value: str) -> bool:
        """True if ``value`` carries any trait the species forbids."""
        return any(trait_matches(value, trait) for trait in self.get(species_id).forbidden)

    def allowed(self, species_id: str, values: Iterable[str]) -> list[str]:
        """``values`` minus anything the species forbids, order preserved."""
        return [v for v in values if not self.is_forbidden(species_id, v)]
