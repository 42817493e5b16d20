"""Data models for the migration engine."""

from .record import (
    SourceRecord,
    DestinationRecord,
    WriteOperation,
    Cursor,
    Page,
    WriteFailure,
    BatchWriteResult,
)
from .migration import (
    MigrationStatus,
    MigrationStats,
    MigrationRun,
    VerificationResult,
)
from .email import (
    EmailRow,
    EmailIndexRow,
    EmailContentCacheRow,
)

__all__ = [
    "SourceRecord",
    "DestinationRecord",
    "WriteOperation",
    "Cursor",
    "Page",
    "WriteFailure",
    "BatchWriteResult",
    "MigrationStatus",
    "MigrationStats",
    "MigrationRun",
    "VerificationResult",
    "EmailRow",
    "EmailIndexRow",
    "EmailContentCacheRow",
]
