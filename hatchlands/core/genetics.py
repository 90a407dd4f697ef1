"""Genetics recombination engine — deterministic offspring from two parents.

Every draw for one breeding comes from a single ``SeededRandom`` seeded from
both parents' ids and seeds plus the breeding seed, so the same triple always
yields the same blueprint. Draw order is fixed: gene blending, mutation,
species coin flip, part picks.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import structlog

from hatchlands.config import Settings
from hatchlands.core.models import (
    AppearanceParams,
    AppearanceParts,
    Creature,
    GeneticStatProfile,
    GenomeSignature,
    OffspringBlueprint,
)
from hatchlands.core.prng import SeededRandom, hash_seed
from hatchlands.core.species import SpeciesCatalog

logger = structlog.get_logger()

STAT_NAMES = ("vitality", "power", "defense", "agility", "intellect", "spirit")
STAT_CAP = 1.25
MAX_INHERITED_LIMBS = 4
MAX_INHERITED_MATERIALS = 4


def _round(value: float) -> int:
    """Round half up, matching the stored genomes of bred creatures."""
    return math.floor(value + 0.5)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _dedupe(values: Sequence[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def gene_pool(creature: Creature) -> list[int]:
    """Genes a parent contributes, with a fallback for gene-less records."""
    genes = creature.genome.all_genes()
    if genes:
        return genes
    return [
        creature.seed % 97,
        creature.level * 3,
        math.floor(creature.appearance.scale * 100),
    ]


def extract_stats(genes: Sequence[int]) -> GeneticStatProfile:
    """Average gene triplets (i, i+6, i+12) into six normalized stats."""
    safe = list(genes) or [1]

    def sample(index: int) -> int:
        return safe[index % len(safe)]

    values = []
    for i in range(len(STAT_NAMES)):
        mean = (sample(i) + sample(i + 6) + sample(i + 12)) / 3
        values.append(_clamp(mean / 100, 0.0, STAT_CAP))
    return GeneticStatProfile(*values)


class GeneticsEngine:
    """Derives offspring blueprints from two parent creatures.

    Species compatibility is checked by the caller before breeding; the
    engine itself never fails on well-formed parents.
    """

    def __init__(self, catalog: SpeciesCatalog, settings: Optional[Settings] = None) -> None:
        self.catalog = catalog
        settings = settings or Settings()
        self.gene_count = settings.offspring_gene_count
        self.mutation_rate = settings.mutation_rate
        self.max_mutations = settings.max_mutations
        self.scale_min = settings.scale_min
        self.scale_max = settings.scale_max

    # ------------------------------------------------------------------
    # Genome
    # ------------------------------------------------------------------

    def recombine(
        self,
        genome_a: GenomeSignature,
        genome_b: GenomeSignature,
        rng: SeededRandom,
    ) -> GenomeSignature:
        """Blend and mutate two genomes using the caller's stream.

        Args:
            genome_a: First parent genome.
            genome_b: Second parent genome.
            rng: Stream to draw from; advanced by the blend and mutation steps.

        Returns:
            Genome with the first half as primary genes, the second half as
            secondary genes and generation ``max(parents) + 1``.
        """
        genes, mutations = self._blend_genes(
            genome_a.all_genes() or [0],
            genome_b.all_genes() or [0],
            rng,
        )
        half = len(genes) // 2
        return GenomeSignature(
            primary_genes=genes[:half],
            secondary_genes=genes[half:],
            mutations=mutations,
            generation=max(genome_a.generation, genome_b.generation) + 1,
        )

    def _blend_genes(
        self,
        pool_a: list[int],
        pool_b: list[int],
        rng: SeededRandom,
    ) -> tuple[list[int], list[int]]:
        genes: list[int] = []
        for i in range(self.gene_count):
            a = pool_a[i % len(pool_a)]
            b = pool_b[(i * 3 + 1) % len(pool_b)]
            blend = _round(a * (0.35 + rng.next() * 0.3) + b * (0.35 + rng.next() * 0.3))
            drift = _round((rng.next() - 0.5) * 14)
            genes.append(max(0, blend + drift))

        mutations: list[int] = []
        for i in range(self.gene_count):
            roll = rng.next()
            if roll < self.mutation_rate and len(mutations) < self.max_mutations:
                genes[i] = self._perturb(genes[i], rng)
                mutations.append(i)

        # Every breeding carries at least one marker
        if not mutations and self.max_mutations > 0:
            index = rng.next_int(0, self.gene_count)
            genes[index] = self._perturb(genes[index], rng)
            mutations.append(index)

        return genes, mutations

    @staticmethod
    def _perturb(gene: int, rng: SeededRandom) -> int:
        return max(0, gene + _round((rng.next() - 0.5) * 24))

    # ------------------------------------------------------------------
    # Offspring
    # ------------------------------------------------------------------

    def derive_offspring(
        self,
        parent_a: Creature,
        parent_b: Creature,
        breeding_seed: int,
    ) -> OffspringBlueprint:
        """Derive the offspring blueprint for a breeding.

        Args:
            parent_a: First parent.
            parent_b: Second parent.
            breeding_seed: Seed recorded on the breeding request.

        Returns:
            OffspringBlueprint with genome, appearance and stat profile.
        """
        seed = hash_seed(parent_a.id, parent_a.seed, parent_b.id, parent_b.seed, breeding_seed)
        rng = SeededRandom(seed)

        genes, mutations = self._blend_genes(gene_pool(parent_a), gene_pool(parent_b), rng)
        half = len(genes) // 2
        genome = GenomeSignature(
            primary_genes=genes[:half],
            secondary_genes=genes[half:],
            mutations=mutations,
            generation=max(parent_a.generation, parent_b.generation) + 1,
        )
        stats = extract_stats(genes)

        if rng.next() > 0.5:
            primary, other = parent_a.primary_species, parent_b.primary_species
        else:
            primary, other = parent_b.primary_species, parent_a.primary_species
        secondary = other if other != primary else None

        appearance_a = parent_a.appearance
        appearance_b = parent_b.appearance
        parts = self._blend_parts(appearance_a.parts, appearance_b.parts, primary, rng)
        materials = self._blend_materials(appearance_a.materials, appearance_b.materials, primary)

        colors_a = appearance_a.color_indices or [0, 1, 2]
        colors_b = appearance_b.color_indices or [0, 1, 2]
        color_indices = [
            colors_a[0],
            colors_b[1] if len(colors_b) > 1 else (colors_a[1] if len(colors_a) > 1 else 1),
            ((colors_a[2] if len(colors_a) > 2 else 2)
             + (colors_b[2] if len(colors_b) > 2 else 2)
             + math.floor(stats.spirit * 3)) % 3,
        ]

        proc_a = appearance_a.procedural
        proc_b = appearance_b.procedural
        procedural = {
            "roughness": _clamp(
                (proc_a.get("roughness", 0.5) + proc_b.get("roughness", 0.5)) / 2, 0.12, 0.92
            ),
            "metalness": _clamp(
                (proc_a.get("metalness", 0.1) + proc_b.get("metalness", 0.1)) / 2, 0.0, 0.85
            ),
        }
        if "palette" in proc_a:
            procedural["palette"] = proc_a["palette"]
        for name, value in zip(STAT_NAMES, (
            stats.vitality, stats.power, stats.defense,
            stats.agility, stats.intellect, stats.spirit,
        )):
            procedural["gene" + name.capitalize()] = value

        scale = _clamp(
            (appearance_a.scale + appearance_b.scale) / 2 + (stats.vitality - 0.5) * 0.16,
            self.scale_min,
            self.scale_max,
        )

        logger.debug(
            "offspring_derived",
            parent_a=parent_a.id,
            parent_b=parent_b.id,
            primary_species=primary,
            secondary_species=secondary,
            generation=genome.generation,
            mutations=len(mutations),
        )

        return OffspringBlueprint(
            seed=seed,
            primary_species=primary,
            secondary_species=secondary,
            genome=genome,
            appearance=AppearanceParams(
                parts=parts,
                color_indices=color_indices,
                materials=materials,
                scale=scale,
                procedural=procedural,
            ),
            stats=stats,
        )

    def _blend_parts(
        self,
        parts_a: AppearanceParts,
        parts_b: AppearanceParts,
        species_id: str,
        rng: SeededRandom,
    ) -> AppearanceParts:
        anatomy = self.catalog.get(species_id).anatomy
        legal_bodies = self.catalog.allowed(species_id, anatomy.body_parts)
        legal_heads = self.catalog.allowed(species_id, anatomy.head_types)
        legal_limbs = self.catalog.allowed(species_id, anatomy.limb_types)
        legal_tails = self.catalog.allowed(species_id, anatomy.tail_types)

        def pick(a: Optional[str], b: Optional[str], fallback: Optional[str]) -> Optional[str]:
            if a is not None and b is not None:
                chosen = a if rng.next() > 0.5 else b
            else:
                chosen = a if a is not None else b
            if chosen is None:
                return fallback
            if self.catalog.is_forbidden(species_id, chosen):
                self._log_replaced(species_id, chosen, fallback)
                return fallback
            return chosen

        body = pick(parts_a.body, parts_b.body, legal_bodies[0])
        head = pick(parts_a.head, parts_b.head, legal_heads[0])
        tail = pick(parts_a.tail, parts_b.tail, legal_tails[0] if legal_tails else None)

        limbs = [*parts_a.limbs[:2], *parts_b.limbs[:2]][:MAX_INHERITED_LIMBS]
        limbs = self._filter(species_id, limbs)
        if not limbs and legal_limbs:
            limbs = [legal_limbs[0], legal_limbs[0]]

        wings = self._filter(species_id, _dedupe([*(parts_a.wings or [])[:1], *(parts_b.wings or [])[:1]]))
        fins = self._filter(species_id, _dedupe([*(parts_a.fins or [])[:1], *(parts_b.fins or [])[:1]]))

        return AppearanceParts(
            body=body,
            head=head,
            limbs=limbs,
            tail=tail,
            wings=wings or None,
            fins=fins or None,
        )

    def _blend_materials(self, materials_a: list[str], materials_b: list[str], species_id: str) -> list[str]:
        materials = self._filter(species_id, _dedupe([*materials_a, *materials_b])[:MAX_INHERITED_MATERIALS])
        if not materials:
            materials = self.catalog.allowed(species_id, self.catalog.get(species_id).materials)[:1]
        return materials

    def _filter(self, species_id: str, values: list[str]) -> list[str]:
        kept = self.catalog.allowed(species_id, values)
        for value in values:
            if value not in kept:
                self._log_replaced(species_id, value, None)
        return kept

    @staticmethod
    def _log_replaced(species_id: str, value: str, replacement: Optional[str]) -> None:
        logger.warning(
            "inherited_trait_forbidden",
            species_id=species_id,
            trait=value,
            replacement=replacement,
        )


def derive_offspring_blueprint(
    catalog: SpeciesCatalog,
    parent_a: Creature,
    parent_b: Creature,
    breeding_seed: int,
    settings: Optional[Settings] = None,
) -> OffspringBlueprint:
    """Convenience wrapper around ``GeneticsEngine.derive_offspring``."""
    return GeneticsEngine(catalog, settings).derive_offspring(parent_a, parent_b, breeding_seed)
