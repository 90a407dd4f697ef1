"""Hatchlands world core — deterministic creature generation, spawning and breeding."""

__version__ = "0.3.0"
