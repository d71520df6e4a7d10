"""Exception types shared by the engine, repository and service layers.

Invalid arguments (a bad reference exercise, a negative miss limit) are
plain `ValueError`s and are not listed here.
"""


class AnalyticsError(Exception):
    """Base class for analytics failures."""


class DataIntegrityError(AnalyticsError):
    """An Event references a User or Exercise that doesn't exist."""


class StorageError(AnalyticsError):
    """The storage provider refused or failed an operation."""


class FatalStorageError(AnalyticsError):
    """Storage is unusable; callers should stop rather than continue."""
