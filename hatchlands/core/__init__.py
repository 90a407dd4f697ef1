"""Core world logic — seeded randomness, species catalog, generation and genetics."""
