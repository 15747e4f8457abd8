"""
Bookmark Analytics — error taxonomy.

Storage errors carry ``retryable`` so callers can tell a transient outage
from a request that will never succeed. Reads of unknown subjects are not
errors; they return zero-valued counters.
"""


class AnalyticsError(Exception):
    retryable = False


class InvalidRequest(AnalyticsError):
    """Missing identifier or unrecognized action."""


class StorageError(AnalyticsError):
    """The selected backend rejected an operation."""


class StorageUnavailable(StorageError):
    """The backend could not be reached."""

    retryable = True


class SchemaMismatch(StorageError):
    """Hosted table is missing columns the application writes."""

    def __init__(self, message: str, columns: list[str] | None = None):
        super().__init__(message)
        self.columns = columns or []
