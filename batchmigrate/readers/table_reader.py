"""Keyset-paginated reader over a data store table."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import BasePagedReader
from ..errors import PageReadError, StoreError
from ..models.record import Cursor, Page, SourceRecord
from ..stores.base import DataStore, Filter, FilterSpec, normalize_filters

logger = logging.getLogger(__name__)


class TablePagedReader(BasePagedReader):
    """
    Reads a table in ascending order of a unique key.

    Each page asks for ``key > last key seen``, so pages never overlap or
    leave gaps, even while the run deletes rows it has already read.
    """

    def __init__(
        self,
        store: DataStore,
        table: str,
        key: str = "id",
        page_size: int = 100,
        filters: Optional[Sequence[FilterSpec]] = None,
        columns: Optional[Sequence[str]] = None
    ):
        """
        Initialize the reader.

        Args:
            store: Data store to read from
            table: Source table
            key: Unique, ordered key column used as the cursor
            page_size: Rows per page
            filters: Scoping conditions (cutoff date, user id, ...)
            columns: Columns to fetch (None = all)
        """
        super().__init__(table, page_size)
        self.store = store
        self.key = key
        self.filters: List[Filter] = normalize_filters(filters)
        self.columns = list(columns) if columns else None
        if self.columns and key not in self.columns:
            self.columns.insert(0, key)

    def _select(
        self,
        cursor: Cursor,
        columns: Optional[List[str]],
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        limit = limit or self.page_size
        try:
            return self.store.select_page(
                self.table,
                order_by=self.key,
                limit=limit,
                after=cursor.after,
                filters=self.filters,
                columns=columns,
            )
        except (StoreError, ValueError) as e:
            raise PageReadError(self.table, cursor.after, limit, e) from e

    def _page(self, cursor: Cursor, rows: List[Dict[str, Any]]) -> Page:
        records = []
        for row in rows:
            records.append(SourceRecord(id=str(row.get(self.key)), table=self.table, data=row))

        next_cursor = Cursor(rows[-1].get(self.key)) if rows else cursor
        done = len(rows) < self.page_size
        logger.debug(
            f"Read {len(rows)} rows from {self.table} after={cursor.after!r} "
            f"next={next_cursor.after!r} done={done}"
        )
        return Page(records=records, cursor=cursor, next_cursor=next_cursor, done=done)

    def next_page(self, cursor: Cursor) -> Page:
        return self._page(cursor, self._select(cursor, self.columns))

    def probe_page(self, cursor: Cursor) -> Page:
        return self._page(cursor, self._select(cursor, [self.key]))

    def has_more(self, cursor: Cursor) -> bool:
        return bool(self._select(cursor, [self.key], limit=1))

    def count(self) -> int:
        return self.store.count(self.table, self.filters)

    def describe(self) -> str:
        scope = ", ".join(f"{f.column} {f.op} {f.value!r}" for f in self.filters) or "all rows"
        return f"{self.table} ordered by {self.key} ({scope}), page_size={self.page_size}"
