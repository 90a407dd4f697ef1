"""Error taxonomy for the world core.

Only configuration and validation problems are raised. Constraint violations
are repaired in place and logged; concurrency conflicts and expiry come back
as typed results (see ``hatchlands.world``).
"""

from __future__ import annotations


class HatchlandsError(Exception):
    """Base class for all Hatchlands errors."""


class ConfigurationError(HatchlandsError):
    """Unknown species id or malformed constraint data. Never retried."""


class ResourceError(HatchlandsError):
    """Caller-facing validation failure checked before generation runs.

    Attributes:
        code: Stable machine-readable reason, e.g. ``"INCOMPATIBLE_ANCHORS"``.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
