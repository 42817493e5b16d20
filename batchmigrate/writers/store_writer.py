"""Writer that persists destination records through a DataStore."""

import logging
from typing import List

from .base import BaseBatchWriter
from ..models.record import DestinationRecord, WriteOperation
from ..stores.base import DataStore

logger = logging.getLogger(__name__)


class StoreWriter(BaseBatchWriter):
    """Upserts by natural key or deletes by key list."""

    def __init__(self, store: DataStore, dry_run: bool = False, batch_size: int = 50):
        super().__init__(dry_run=dry_run, batch_size=batch_size)
        self.store = store
        self.rows_deleted = 0

    def write_chunk(
        self,
        table: str,
        key: str,
        operation: WriteOperation,
        records: List[DestinationRecord]
    ) -> None:
        if operation == WriteOperation.DELETE:
            deleted = self.store.delete(table, key, [r.natural_key for r in records])
            self.rows_deleted += deleted
            logger.debug(f"Deleted {deleted}/{len(records)} rows from {table}")
        else:
            self.store.upsert(table, [r.data for r in records], on_conflict=key)
            logger.debug(f"Upserted {len(records)} rows into {table}")
