"""
Error types shared by the scoring core, the store and the web layer.
"""


class VolleyTrackError(Exception):
    """Base class for all application errors."""


class ValidationError(VolleyTrackError):
    """Input rejected before any store call was made."""


class StoreError(VolleyTrackError):
    """The persistence layer failed; message is shown to the user as-is."""


class NotFoundError(StoreError):
    """A row referenced by id does not exist."""


class ConsistencyError(VolleyTrackError):
    """Stored data does not allow the requested operation to proceed."""


class SeedingError(ConsistencyError):
    """Semifinals cannot be seeded from the current pools."""
