"""Base batched writer."""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Tuple
import logging

from ..errors import StoreError
from ..models.record import (
    BatchWriteResult,
    DestinationRecord,
    WriteFailure,
    WriteOperation,
)

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, str, WriteOperation]


class BaseBatchWriter(ABC):
    """
    Base class for batched writers.

    Records are grouped per destination table and written in chunks of
    ``batch_size``. When a chunk is rejected the writer falls back to one
    call per record so a single bad row only costs itself. In dry-run mode
    records are validated but nothing is sent to the backend.
    """

    def __init__(self, dry_run: bool = False, batch_size: int = 50):
        """
        Initialize the writer.

        Args:
            dry_run: If True, validate only and report everything as written
            batch_size: Maximum records per backend call
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.dry_run = dry_run
        self.batch_size = batch_size

    @abstractmethod
    def write_chunk(
        self,
        table: str,
        key: str,
        operation: WriteOperation,
        records: List[DestinationRecord]
    ) -> None:
        """
        Persist one chunk in a single backend call.

        Raises:
            StoreError: if the backend rejects the chunk
        """
        pass

    def write_batch(self, records: List[DestinationRecord]) -> BatchWriteResult:
        """
        Write a batch of destination records.

        Args:
            records: Records for any number of destination tables

        Returns:
            BatchWriteResult with the success count and per-record failures
        """
        result = BatchWriteResult()

        for (table, key, operation), group in self._group(records).items():
            valid = []
            for record in group:
                problem = self.validate_record(record)
                if problem:
                    logger.error(f"[WRITE] Rejected {table} record from source {record.source_id}: {problem}")
                    result.failed.append(WriteFailure(record=record, reason=problem))
                else:
                    valid.append(record)

            for chunk in self._chunks(valid):
                result.merge(self._write_with_fallback(table, key, operation, chunk))

        return result

    def validate_record(self, record: DestinationRecord) -> str:
        """Shape check run in both live and dry-run mode. Returns a problem or ''."""
        if not isinstance(record.data, dict):
            return f"record data must be a mapping, got {type(record.data).__name__}"
        if record.natural_key is None:
            return f"natural key {record.key!r} is missing"
        return ""

    def _group(self, records: List[DestinationRecord]) -> Dict[GroupKey, List[DestinationRecord]]:
        groups: Dict[GroupKey, List[DestinationRecord]] = {}
        for record in records:
            groups.setdefault((record.table, record.key, record.operation), []).append(record)
        return groups

    def _chunks(self, records: List[DestinationRecord]) -> Iterator[List[DestinationRecord]]:
        """Split into chunks of at most batch_size with no repeated natural key."""
        chunk: List[DestinationRecord] = []
        seen = set()
        for record in records:
            natural_key = record.natural_key
            if len(chunk) >= self.batch_size or natural_key in seen:
                yield chunk
                chunk, seen = [], set()
            chunk.append(record)
            seen.add(natural_key)
        if chunk:
            yield chunk

    def _write_with_fallback(
        self,
        table: str,
        key: str,
        operation: WriteOperation,
        chunk: List[DestinationRecord]
    ) -> BatchWriteResult:
        if self.dry_run:
            logger.debug(f"DRY RUN: would {operation.value} {len(chunk)} records in {table}")
            return BatchWriteResult(succeeded=len(chunk), chunks_written=1)

        try:
            self.write_chunk(table, key, operation, chunk)
            return BatchWriteResult(succeeded=len(chunk), chunks_written=1)
        except StoreError as e:
            if len(chunk) == 1:
                return self._failed(table, chunk[0], e)
            logger.warning(
                f"[WRITE] {operation.value} of {len(chunk)} records to {table} failed, "
                f"falling back to individual writes: {e}"
            )

        result = BatchWriteResult(chunks_written=1, fallbacks=1)
        for record in chunk:
            try:
                self.write_chunk(table, key, operation, [record])
                result.succeeded += 1
            except StoreError as e:
                result.merge(self._failed(table, record, e))
        return result

    def _failed(self, table: str, record: DestinationRecord, error: StoreError) -> BatchWriteResult:
        logger.error(f"[WRITE] {table} {record.key}={record.natural_key!r} failed: {error}")
        return BatchWriteResult(failed=[WriteFailure(record=record, reason=str(error))], chunks_written=1)
