"""
Error types for price synchronization.

Expected per-item failures (a source being down, a page without a price,
a failed write) are raised close to where they happen and turned into
result values by the caller. Only unexpected errors travel further.
"""

from typing import Optional


class PriceSyncError(Exception):
    """Base class for price synchronization errors."""


class SourceUnavailable(PriceSyncError):
    """Network error, timeout or non-200 response from a price source."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(message)


class ParseFailure(PriceSyncError):
    """A price source answered but no positive price could be read."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(message)


class PersistenceFailure(PriceSyncError):
    """A database write for one ingredient failed."""

    def __init__(self, message: str, ingredient_id: Optional[int] = None):
        self.ingredient_id = ingredient_id
        super().__init__(message)


class ConfigurationMissing(PriceSyncError):
    """The price update settings row does not exist."""


class Unauthorized(PriceSyncError):
    """Admin check failed."""

    def __init__(self, message: str, status_code: int = 401):
        self.status_code = status_code
        super().__init__(message)


class DuplicateIngredient(PriceSyncError):
    """An ingredient with the same name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Ingredient already exists: {name}")
