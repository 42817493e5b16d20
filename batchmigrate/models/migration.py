"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime, timezone
import uuid


class MigrationStatus(str, Enum):
    """State of a migration run."""
    INIT = "init"
    READING = "reading"
    TRANSFORMING = "transforming"
    WRITING = "writing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationStatus.DONE, MigrationStatus.FAILED, MigrationStatus.ABORTED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MigrationStats:
    """Counters for one run. Owned and updated by the driver only."""
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    errored: int = 0
    pages_read: int = 0
    batches_written: int = 0
    iterations: int = 0
    expected_total: Optional[int] = None  # Scoped source count from preflight
    source_bytes: int = 0
    destination_bytes: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    skipped_records: List[Dict[str, Any]] = field(default_factory=list)
    errored_records: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record_migrated(self, source_bytes: int = 0, destination_bytes: int = 0) -> None:
        self.total += 1
        self.migrated += 1
        self.source_bytes += source_bytes
        self.destination_bytes += destination_bytes

    def record_skipped(self, source_id: Optional[str], reason: str) -> None:
        self.total += 1
        self.skipped += 1
        self.skipped_records.append({"source_id": source_id, "reason": reason})

    def record_errored(
        self,
        source_id: Optional[str],
        natural_key: Any,
        table: str,
        reason: str
    ) -> None:
        self.total += 1
        self.errored += 1
        self.errored_records.append({
            "source_id": source_id,
            "natural_key": natural_key,
            "table": table,
            "reason": reason,
        })

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def finish(self) -> None:
        self.finished_at = utcnow()

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    @property
    def estimated_storage_delta_bytes(self) -> int:
        """Bytes freed (positive) or added (negative) by the migrated rows."""
        return self.source_bytes - self.destination_bytes

    @property
    def is_complete(self) -> bool:
        """Every counted row landed in exactly one outcome bucket."""
        return self.migrated + self.skipped + self.errored == self.total

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errored": self.errored,
            "pages_read": self.pages_read,
            "batches_written": self.batches_written,
            "iterations": self.iterations,
            "expected_total": self.expected_total,
            "source_bytes": self.source_bytes,
            "destination_bytes": self.destination_bytes,
            "estimated_storage_delta_bytes": self.estimated_storage_delta_bytes,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "skipped_records": self.skipped_records,
            "errored_records": self.errored_records,
            "warnings": self.warnings,
        }


@dataclass
class VerificationResult:
    """Outcome of the post-run destination recount."""
    table: str
    expected: int
    actual: int

    @property
    def matched(self) -> bool:
        return self.expected == self.actual

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "expected": self.expected,
            "actual": self.actual,
            "matched": self.matched,
        }


@dataclass
class MigrationRun:
    """The result of one driver invocation."""
    job: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.INIT
    dry_run: bool = False
    stats: MigrationStats = field(default_factory=MigrationStats)
    config: Dict[str, Any] = field(default_factory=dict)
    created_tables: List[str] = field(default_factory=list)
    rolled_back_tables: List[str] = field(default_factory=list)
    verification: Optional[VerificationResult] = None
    capped: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        if self.status == MigrationStatus.DONE:
            return 0
        if self.status == MigrationStatus.ABORTED:
            return 130
        return 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "job": self.job,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "capped": self.capped,
            "config": self.config,
            "stats": self.stats.to_dict(),
            "created_tables": self.created_tables,
            "rolled_back_tables": self.rolled_back_tables,
            "verification": self.verification.to_dict() if self.verification else None,
            "error": self.error,
            "error_type": self.error_type,
            "exit_code": self.exit_code,
        }
