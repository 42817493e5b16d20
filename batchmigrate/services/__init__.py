"""Service layer for the migration engine."""

from .job_registry import JobRegistry, MigrationJob
from .transformer import (
    RowTransformer,
    EmailIndexTransformer,
    DeleteKeyTransformer,
    preview_rows,
)

__all__ = [
    "JobRegistry",
    "MigrationJob",
    "RowTransformer",
    "EmailIndexTransformer",
    "DeleteKeyTransformer",
    "preview_rows",
]
