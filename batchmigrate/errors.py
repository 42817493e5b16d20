"""Exception types raised by the migration engine."""

from typing import Any, Optional


class MigrationError(Exception):
    """Base class for all migration errors."""


class ConfigurationError(MigrationError):
    """Invalid or incomplete configuration."""


class PreconditionError(MigrationError):
    """A required source or destination table is missing."""


class StoreError(MigrationError):
    """A data store call failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} ({self.code})"
        return self.message


class PageReadError(MigrationError):
    """A page of source rows could not be fetched."""

    def __init__(self, table: str, after: Any, limit: int, cause: Exception):
        super().__init__(
            f"Failed to read {table} page after={after!r} limit={limit}: {cause}"
        )
        self.table = table
        self.after = after
        self.limit = limit
        self.cause = cause


class RecordSkipped(MigrationError):
    """Raised by a transformer when a row cannot be mapped at all."""


class IterationCapReached(MigrationError):
    """The configured page or row cap was hit and the policy is to fail."""


class MigrationAborted(MigrationError):
    """The operator cancelled the run."""
