"""In-process data store for rehearsal runs and tests."""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .base import DataStore, Filter, FilterSpec, normalize_filters
from ..errors import StoreError
from ..models.email import parse_timestamp

logger = logging.getLogger(__name__)

CREATE_TABLE_RE = re.compile(
    r"create\s+table\s+(?:if\s+not\s+exists\s+)?(?:\"?public\"?\.)?\"?(\w+)\"?",
    re.IGNORECASE,
)


def _comparable(value: Any) -> Any:
    """Make timestamps stored as strings compare chronologically."""
    if isinstance(value, str):
        parsed = parse_timestamp(value) if re.match(r"^\d{4}-\d{2}-\d{2}", value) else None
        return parsed if parsed is not None else value
    if hasattr(value, "tzinfo"):
        return parse_timestamp(value)
    return value


def _matches(row: Dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    if flt.op == "is":
        return value is None if flt.value is None else value is flt.value
    if flt.op == "in":
        return value in list(flt.value)
    if flt.op == "eq":
        return value == flt.value
    if flt.op == "neq":
        return value != flt.value
    if value is None:
        return False
    left, right = _comparable(value), _comparable(flt.value)
    try:
        if flt.op == "gt":
            return left > right
        if flt.op == "gte":
            return left >= right
        if flt.op == "lt":
            return left < right
        if flt.op == "lte":
            return left <= right
    except TypeError:
        return False
    return False


class MemoryStore(DataStore):
    """
    Dictionary-backed tables.

    Rows keep insertion order; reads sort by the requested key. Every
    mutating call increments ``mutations`` so callers can assert that a dry
    run left the store untouched.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.mutations = 0
        self.applied_sql: List[str] = []
        for name, rows in (tables or {}).items():
            self.create_table(name, rows)

    @classmethod
    def from_fixture(cls, path: str) -> "MemoryStore":
        """Load tables from a JSON file shaped ``{"table": [rows...]}``."""
        with open(Path(path)) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Fixture {path} must contain an object of table -> rows")
        logger.info(f"Loaded fixture {path} with tables: {', '.join(data.keys())}")
        return cls(data)

    def save_fixture(self, path: str) -> None:
        """Write all tables back out in the fixture format."""
        with open(Path(path), "w") as f:
            json.dump(self.tables, f, indent=2, default=str)
        logger.info(f"Saved {len(self.tables)} tables to {path}")

    def create_table(self, name: str, rows: Optional[List[Dict[str, Any]]] = None) -> None:
        self.tables[name] = [dict(r) for r in (rows or [])]

    def rows(self, table: str) -> List[Dict[str, Any]]:
        """Copy of a table's rows."""
        return copy.deepcopy(self._table(table))

    def _table(self, table: str) -> List[Dict[str, Any]]:
        if table not in self.tables:
            raise StoreError(f'relation "public.{table}" does not exist', 404, "42P01")
        return self.tables[table]

    def _filtered(self, table: str, filters: Optional[Sequence[FilterSpec]]) -> List[Dict[str, Any]]:
        flts = normalize_filters(filters)
        return [r for r in self._table(table) if all(_matches(r, f) for f in flts)]

    def select_page(
        self,
        table: str,
        order_by: str,
        limit: int,
        after: Any = None,
        filters: Optional[Sequence[FilterSpec]] = None,
        columns: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        rows = self._filtered(table, filters)
        rows = [r for r in rows if r.get(order_by) is not None]
        if after is not None:
            rows = [r for r in rows if _matches(r, Filter(order_by, "gt", after))]
        rows.sort(key=lambda r: _comparable(r[order_by]))
        rows = rows[:limit]
        if columns:
            return [{c: copy.deepcopy(r.get(c)) for c in columns} for r in rows]
        return copy.deepcopy(rows)

    def upsert(self, table: str, rows: List[Dict[str, Any]], on_conflict: str) -> None:
        existing = self._table(table)
        self.mutations += 1
        for row in rows:
            if row.get(on_conflict) is None:
                raise StoreError(
                    f'null value in column "{on_conflict}" violates not-null constraint',
                    400,
                    "23502",
                )
        index = {r.get(on_conflict): i for i, r in enumerate(existing)}
        for row in rows:
            key = row[on_conflict]
            if key in index:
                existing[index[key]].update(copy.deepcopy(row))
            else:
                existing.append(copy.deepcopy(row))
                index[key] = len(existing) - 1

    def delete(self, table: str, key: str, values: List[Any]) -> int:
        existing = self._table(table)
        self.mutations += 1
        targets = set(values)
        kept = [r for r in existing if r.get(key) not in targets]
        deleted = len(existing) - len(kept)
        self.tables[table] = kept
        return deleted

    def count(self, table: str, filters: Optional[Sequence[FilterSpec]] = None) -> int:
        return len(self._filtered(table, filters))

    def table_exists(self, table: str) -> bool:
        return table in self.tables

    def apply_sql(self, sql: str) -> None:
        self.mutations += 1
        self.applied_sql.append(sql)
        for name in CREATE_TABLE_RE.findall(sql):
            if name not in self.tables:
                self.create_table(name)

    def drop_table(self, table: str) -> None:
        self.mutations += 1
        self.tables.pop(table, None)

    def describe(self) -> str:
        return f"MemoryStore({len(self.tables)} tables)"
