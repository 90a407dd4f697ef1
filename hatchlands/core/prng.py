"""Seeded pseudo-random stream and stable seed derivation.

Everything random in the world core flows through ``SeededRandom``. The
generator is mulberry32 over 32-bit unsigned integers, so a given seed and
call sequence yields the same values on every platform and in every process.
Seeds are derived with SHA-256, never with the built-in ``hash()`` which is
salted per process.
"""

from __future__ import annotations

import hashlib
import uuid
from typing import Sequence, TypeVar

T = TypeVar("T")

_MASK32 = 0xFFFFFFFF
_TWO_POW_32 = 4294967296.0

# Namespace for deterministic creature/spawn identifiers
ID_NAMESPACE = uuid.UUID("6f1d3c52-8a2e-4b0f-9d57-3e1c0a9b7f44")


def _imul(a: int, b: int) -> int:
    """32-bit wrapping multiply."""
    return (a * b) & _MASK32


class SeededRandom:
    """Deterministic random stream seeded from a single integer.

    Attributes:
        seed: The seed the stream was created from (reduced to 32 bits).
    """

    def __init__(self, seed: int) -> None:
        self.seed = int(seed) & _MASK32
        self._state = self.seed

    def next(self) -> float:
        """Return the next float in [0, 1)."""
        self._state = (self._state + 0x6D2B79F5) & _MASK32
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / _TWO_POW_32

    def next_int(self, lo: int, hi: int) -> int:
        """Return an integer in [lo, hi)."""
        return int(self.next() * (hi - lo)) + lo

    def uniform(self, lo: float, hi: float) -> float:
        """Return a float in [lo, hi)."""
        return lo + self.next() * (hi - lo)

    def choice(self, seq: Sequence[T]) -> T:
        """Pick one element. ``seq`` must not be empty."""
        return seq[self.next_int(0, len(seq))]

    def shuffle(self, seq: Sequence[T]) -> list[T]:
        """Return a Fisher-Yates permutation of ``seq`` (input is not modified)."""
        result = list(seq)
        for i in range(len(result) - 1, 0, -1):
            j = self.next_int(0, i + 1)
            result[i], result[j] = result[j], result[i]
        return result

    def weighted_choice(self, items: Sequence[T], weights: Sequence[float]) -> T:
        """Pick one element with probability proportional to its weight.

        Falls back to a uniform pick when every weight is zero.
        """
        total = sum(weights)
        if total <= 0:
            return self.choice(items)
        target = self.next() * total
        cumulative = 0.0
        for item, weight in zip(items, weights):
            cumulative += weight
            if target < cumulative:
                return item
        return items[-1]


def hash_seed(*parts: object) -> int:
    """Derive a stable 32-bit seed from arbitrary parts."""
    raw = "|".join(str(p) for p in parts)
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def generate_spawn_seed(region_id: str, window_start: int, index: int) -> int:
    """Seed for the ``index``-th spawn of a region in the window starting at ``window_start``."""
    return hash_seed("spawn", region_id, window_start, index)


def derive_offspring_seed(
    parent_a_id: str,
    parent_a_seed: int,
    parent_b_id: str,
    parent_b_seed: int,
    nonce: int = 0,
) -> int:
    """Breeding seed for a pair of parents; ``nonce`` separates repeat pairings."""
    return hash_seed("breed", parent_a_id, parent_a_seed, parent_b_id, parent_b_seed, nonce)


def window_start(now_ms: int, duration_ms: int) -> int:
    """Start of the fixed-duration window containing ``now_ms``."""
    return (now_ms // duration_ms) * duration_ms


def stable_id(kind: str, *parts: object) -> str:
    """Deterministic UUID string for a record identified by ``parts``."""
    name = ":".join([kind, *(str(p) for p in parts)])
    return str(uuid.uuid5(ID_NAMESPACE, name))
