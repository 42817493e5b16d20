"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class WriteOperation(str, Enum):
    """What the writer does with a destination record."""
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass
class SourceRecord:
    """A row read from the source table."""
    id: str
    table: str
    data: Dict[str, Any]


@dataclass
class DestinationRecord:
    """A record produced by a transformer for one destination table."""
    table: str
    key: str  # Natural key column
    data: Dict[str, Any]
    source_id: Optional[str] = None
    operation: WriteOperation = WriteOperation.UPSERT
    best_effort: bool = False  # Failures are warnings, not errors

    @property
    def natural_key(self) -> Any:
        """Value of the natural key column."""
        if not isinstance(self.data, dict):
            return None
        return self.data.get(self.key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "key": self.key,
            "natural_key": self.natural_key,
            "source_id": self.source_id,
            "operation": self.operation.value,
            "best_effort": self.best_effort,
            "data": self.data,
        }


@dataclass(frozen=True)
class Cursor:
    """
    Keyset position in the source table.

    ``after`` is the last key value already read; ``None`` means the start.
    """
    after: Any = None

    @classmethod
    def start(cls) -> "Cursor":
        return cls()


@dataclass
class Page:
    """An ordered, bounded slice of source rows."""
    records: List[SourceRecord]
    cursor: Cursor  # Cursor the page was read from
    next_cursor: Cursor
    done: bool = False

    def __len__(self) -> int:
        return len(self.records)

    @property
    def first_key(self) -> Optional[str]:
        return self.records[0].id if self.records else None

    @property
    def last_key(self) -> Optional[str]:
        return self.records[-1].id if self.records else None


@dataclass
class WriteFailure:
    """A destination record the writer could not persist."""
    record: DestinationRecord
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.record.table,
            "natural_key": self.record.natural_key,
            "source_id": self.record.source_id,
            "reason": self.reason,
        }


@dataclass
class BatchWriteResult:
    """Result of writing one batch of destination records."""
    succeeded: int = 0
    failed: List[WriteFailure] = field(default_factory=list)
    chunks_written: int = 0
    fallbacks: int = 0  # Chunks retried record by record

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def merge(self, other: "BatchWriteResult") -> None:
        """Fold another result into this one."""
        self.succeeded += other.succeeded
        self.failed.extend(other.failed)
        self.chunks_written += other.chunks_written
        self.fallbacks += other.fallbacks

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "succeeded": self.succeeded,
            "failed": [f.to_dict() for f in self.failed],
            "chunks_written": self.chunks_written,
            "fallbacks": self.fallbacks,
        }
