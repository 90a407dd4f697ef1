"""Persistence — store contract, PostgreSQL adapter and in-memory store."""

from hatchlands.db.memory import MemoryStore
from hatchlands.db.store import WorldStore

__all__ = ["MemoryStore", "WorldStore"]
