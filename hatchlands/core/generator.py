"""Procedural creature generator.

Rebuilds an identical creature from a seed and species constraints. The
generator is a pure function of its inputs: all randomness comes from one
``SeededRandom`` created from the seed, and draws happen in a fixed order:

    genome -> body -> head -> limbs -> tail -> wings -> fins -> colours
    -> materials -> hybrid borrowing -> scale -> procedural parameters

Changing that order changes every creature ever generated, so append new
draws at the end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog

from hatchlands.config import Settings
from hatchlands.core.genetics import GeneticsEngine
from hatchlands.core.models import (
    AppearanceParams,
    AppearanceParts,
    Creature,
    CreatureStatus,
    GenomeSignature,
    LineageNode,
    OffspringBlueprint,
)
from hatchlands.core.prng import SeededRandom, stable_id
from hatchlands.core.species import SpeciesCatalog, SpeciesDefinition

logger = structlog.get_logger()

# Slots a hybrid may fill from its secondary species
HYBRID_SLOTS = ("body", "head", "tail", "limbs", "wings", "materials")


@dataclass
class GenerationResult:
    """A generated creature plus the trace of how it was built.

    Attributes:
        creature: The generated creature.
        steps: Ordered description of each selection made.
        constraints: Constraint repairs applied (forbidden filtering,
            hybrid downgrades, borrowed parts).
    """

    creature: Creature
    steps: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)


class CreatureGenerator:
    """Builds creatures from seeds, species and optional parent genomes."""

    def __init__(
        self,
        catalog: SpeciesCatalog,
        settings: Optional[Settings] = None,
        genetics: Optional[GeneticsEngine] = None,
    ) -> None:
        """Initialize the generator.

        Args:
            catalog: Species constraint table.
            settings: Application settings (gene count, scale range).
            genetics: Engine used for bred genomes; built from the catalog
                when omitted.
        """
        self.catalog = catalog
        self.settings = settings or Settings()
        self.genetics = genetics or GeneticsEngine(catalog, self.settings)

    def generate(
        self,
        seed: int,
        primary_species: str,
        secondary_species: Optional[str] = None,
        parent_genomes: Optional[tuple[GenomeSignature, GenomeSignature]] = None,
        *,
        born_at: int = 0,
        creature_id: Optional[str] = None,
    ) -> Creature:
        """Generate a creature.

        Args:
            seed: Generation seed.
            primary_species: Species whose anatomy the creature is built from.
            secondary_species: Optional hybrid partner. Downgraded to no
                hybrid when the two species cannot hybridize.
            parent_genomes: Two parent genomes; when given the genome is
                recombined instead of drawn fresh.
            born_at: Birth timestamp in milliseconds.
            creature_id: Explicit id; a stable id derived from the inputs
                is used otherwise.

        Returns:
            The generated wild creature.

        Raises:
            ConfigurationError: If the primary species is unknown.
        """
        return self.generate_with_trace(
            seed,
            primary_species,
            secondary_species,
            parent_genomes,
            born_at=born_at,
            creature_id=creature_id,
        ).creature

    def generate_with_trace(
        self,
        seed: int,
        primary_species: str,
        secondary_species: Optional[str] = None,
        parent_genomes: Optional[tuple[GenomeSignature, GenomeSignature]] = None,
        *,
        born_at: int = 0,
        creature_id: Optional[str] = None,
    ) -> GenerationResult:
        """Same as ``generate`` but also returns the selection trace."""
        primary = self.catalog.get(primary_species)
        rng = SeededRandom(seed)
        result_steps: list[str] = []
        constraints: list[str] = []

        secondary = self._resolve_secondary(primary, secondary_species, constraints)

        # Genome
        if parent_genomes is not None:
            genome = self.genetics.recombine(parent_genomes[0], parent_genomes[1], rng)
            result_steps.append(f"genome:recombined:{len(genome.all_genes())}")
        else:
            genes = [rng.next_int(0, 100) for _ in range(self.settings.wild_gene_count)]
            genome = GenomeSignature(primary_genes=genes)
            result_steps.append(f"genome:wild:{len(genes)}")

        # Anatomy, always from the primary species' legal pools
        anatomy = primary.anatomy
        pool = self._legal_pools(primary, constraints)

        body = rng.choice(pool["body"])
        head = rng.choice(pool["head"])
        result_steps += [f"body:{body}", f"head:{head}"]

        limbs: list[str] = []
        if pool["limbs"] and primary.max_limbs > 0:
            count = rng.next_int(1, primary.max_limbs + 1)
            limbs = [rng.choice(pool["limbs"]) for _ in range(count)]
            result_steps.append(f"limbs:{count}")

        tail = rng.choice(pool["tail"]) if pool["tail"] else None
        if tail:
            result_steps.append(f"tail:{tail}")

        wings: Optional[list[str]] = None
        if anatomy.wing_types and rng.next() < primary.wing_chance and pool["wings"]:
            wings = [rng.choice(pool["wings"]), rng.choice(pool["wings"])]
            result_steps.append("wings:" + ",".join(wings))

        fins: Optional[list[str]] = None
        if anatomy.fin_types and rng.next() < primary.fin_chance and pool["fins"]:
            fins = [rng.choice(pool["fins"])]
            result_steps.append("fins:" + ",".join(fins))

        # Colours come only from the primary species' palettes
        palette_index = rng.next_int(0, len(primary.color_palettes))
        palette = primary.color_palettes[palette_index]
        color_count = rng.next_int(2, 4)
        color_indices = [rng.next_int(0, len(palette)) for _ in range(color_count)]
        result_steps.append(f"palette:{palette_index}")

        materials: list[str] = []
        for _ in range(rng.next_int(1, 3)):
            material = rng.choice(pool["materials"])
            if material not in materials:
                materials.append(material)
        result_steps.append("materials:" + ",".join(materials))

        parts = AppearanceParts(body=body, head=head, limbs=limbs, tail=tail, wings=wings, fins=fins)

        if secondary is not None:
            parts, materials = self._borrow_parts(
                rng, primary, secondary, parts, materials, result_steps, constraints
            )

        scale = rng.uniform(self.settings.scale_min, self.settings.scale_max)
        procedural = {
            "roughness": rng.next(),
            "metalness": rng.next(),
            "patternIntensity": rng.next(),
            "asymmetry": rng.next() * 0.2,
            "detailLevel": rng.next(),
            "palette": float(palette_index),
        }

        creature = Creature(
            id=creature_id or stable_id(
                "creature", seed, primary.id, secondary.id if secondary else "", genome.generation
            ),
            seed=seed,
            primary_species=primary.id,
            secondary_species=secondary.id if secondary else None,
            genome=genome,
            appearance=AppearanceParams(
                parts=parts,
                color_indices=color_indices,
                materials=materials,
                scale=scale,
                procedural=procedural,
            ),
            birth_timestamp=born_at,
        )

        logger.debug(
            "creature_generated",
            creature_id=creature.id,
            seed=seed,
            primary_species=primary.id,
            secondary_species=creature.secondary_species,
            generation=genome.generation,
        )
        return GenerationResult(creature=creature, steps=result_steps, constraints=constraints)

    # ------------------------------------------------------------------
    # Constraint helpers
    # ------------------------------------------------------------------

    def _resolve_secondary(
        self,
        primary: SpeciesDefinition,
        secondary_species: Optional[str],
        constraints: list[str],
    ) -> Optional[SpeciesDefinition]:
        if secondary_species is None:
            return None
        if secondary_species in self.catalog and self.catalog.can_hybridize(primary.id, secondary_species):
            return self.catalog.get(secondary_species)
        logger.warning(
            "hybrid_downgraded",
            primary_species=primary.id,
            secondary_species=secondary_species,
        )
        constraints.append(f"hybrid_downgraded:{secondary_species}")
        return None

    def _legal_pools(self, primary: SpeciesDefinition, constraints: list[str]) -> dict[str, list[str]]:
        anatomy = primary.anatomy
        raw = {
            "body": anatomy.body_parts,
            "head": anatomy.head_types,
            "limbs": anatomy.limb_types,
            "tail": anatomy.tail_types,
            "wings": anatomy.wing_types,
            "fins": anatomy.fin_types,
            "materials": primary.materials,
        }
        pools = {}
        for slot, values in raw.items():
            pools[slot] = self.catalog.allowed(primary.id, values)
            removed = len(values) - len(pools[slot])
            if removed:
                constraints.append(f"forbidden_filtered:{slot}:{removed}")
        return pools

    def _borrow_parts(
        self,
        rng: SeededRandom,
        primary: SpeciesDefinition,
        secondary: SpeciesDefinition,
        parts: AppearanceParts,
        materials: list[str],
        steps: list[str],
        constraints: list[str],
    ) -> tuple[AppearanceParts, list[str]]:
        """Substitute up to ``max_foreign_parts`` slots with secondary parts.

        Only parts neither species forbids are candidates. Slots without a
        candidate, and slots the creature does not have (no tail, no wings,
        no limbs), are skipped: borrowing substitutes, it never adds anatomy.
        """
        max_foreign = primary.hybrid_rules.max_foreign_parts
        if max_foreign <= 0:
            constraints.append("hybrid_no_foreign_parts")
            return parts, materials

        anatomy = secondary.anatomy

        def legal(values: list[str]) -> list[str]:
            return [
                v for v in self.catalog.allowed(primary.id, values)
                if not self.catalog.is_forbidden(secondary.id, v)
            ]

        candidates = {
            "body": legal(anatomy.body_parts),
            "head": legal(anatomy.head_types),
            "tail": legal(anatomy.tail_types) if parts.tail else [],
            "limbs": legal(anatomy.limb_types) if parts.limbs else [],
            "wings": legal(anatomy.wing_types) if parts.wings else [],
            "materials": legal(secondary.materials),
        }

        foreign_count = rng.next_int(1, max_foreign + 1)
        slots = rng.shuffle([slot for slot in HYBRID_SLOTS if candidates[slot]])[:foreign_count]

        limbs = list(parts.limbs)
        wings = list(parts.wings) if parts.wings else None
        materials = list(materials)
        for slot in slots:
            borrowed = rng.choice(candidates[slot])
            if slot == "body":
                parts.body = borrowed
            elif slot == "head":
                parts.head = borrowed
            elif slot == "tail":
                parts.tail = borrowed
            elif slot == "limbs":
                limbs[rng.next_int(0, len(limbs))] = borrowed
            elif slot == "wings":
                wings = [borrowed, borrowed]
            elif slot == "materials":
                materials[rng.next_int(0, len(materials))] = borrowed
                materials = list(dict.fromkeys(materials))
            steps.append(f"borrowed:{slot}:{borrowed}")
            logger.debug(
                "hybrid_part_borrowed",
                primary_species=primary.id,
                secondary_species=secondary.id,
                slot=slot,
                part=borrowed,
            )

        constraints.append(f"hybrid_foreign_parts:{len(slots)}")
        parts.limbs = limbs
        parts.wings = wings
        return parts, materials

    # ------------------------------------------------------------------
    # Offspring
    # ------------------------------------------------------------------

    def build_offspring(
        self,
        blueprint: OffspringBlueprint,
        *,
        creature_id: str,
        owner_id: Optional[str] = None,
        born_at: int = 0,
        lineage: Optional[list[LineageNode]] = None,
    ) -> Creature:
        """Materialise a bred creature from a genetics blueprint."""
        self.catalog.get(blueprint.primary_species)
        return Creature(
            id=creature_id,
            seed=blueprint.seed,
            primary_species=blueprint.primary_species,
            secondary_species=blueprint.secondary_species,
            genome=blueprint.genome,
            appearance=blueprint.appearance,
            owner_id=owner_id,
            status=CreatureStatus.CAPTURED if owner_id else CreatureStatus.WILD,
            lineage=list(lineage or []),
            birth_timestamp=born_at,
        )


def generate_wild_creature(
    catalog: SpeciesCatalog,
    seed: int,
    species_id: str,
    secondary_species: Optional[str] = None,
    *,
    born_at: int = 0,
    settings: Optional[Settings] = None,
) -> Creature:
    """Generate a wild creature with a throwaway generator."""
    return CreatureGenerator(catalog, settings).generate(
        seed, species_id, secondary_species, born_at=born_at
    )
