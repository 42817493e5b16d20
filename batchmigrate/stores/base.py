"""Base data store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union


FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "is")


@dataclass(frozen=True)
class Filter:
    """A single ``column <op> value`` condition."""
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def to_dict(self) -> Dict[str, Any]:
        return {"column": self.column, "op": self.op, "value": self.value}


FilterSpec = Union[Filter, Tuple[str, str, Any]]


def normalize_filters(filters: Optional[Iterable[FilterSpec]]) -> List[Filter]:
    """Accept Filter objects or ``(column, op, value)`` tuples."""
    result = []
    for item in filters or []:
        if isinstance(item, Filter):
            result.append(item)
        else:
            column, op, value = item
            result.append(Filter(column, op, value))
    return result


class DataStore(ABC):
    """
    Query/mutate interface the engine depends on.

    The engine only needs four operations (paged select, keyed upsert, keyed
    delete, count) plus a few preflight helpers. Backends raise
    ``StoreError`` for anything the backend rejects.
    """

    @abstractmethod
    def select_page(
        self,
        table: str,
        order_by: str,
        limit: int,
        after: Any = None,
        filters: Optional[Sequence[FilterSpec]] = None,
        columns: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch up to ``limit`` rows ordered ascending by ``order_by``.

        Args:
            table: Table name
            order_by: Unique, ordered key column
            limit: Maximum rows to return
            after: Only rows with ``order_by > after`` (None = from the start)
            filters: Extra conditions
            columns: Columns to return (None = all)

        Returns:
            List of row dictionaries
        """
        pass

    @abstractmethod
    def upsert(self, table: str, rows: List[Dict[str, Any]], on_conflict: str) -> None:
        """Insert rows, updating existing ones that share ``on_conflict``."""
        pass

    @abstractmethod
    def delete(self, table: str, key: str, values: List[Any]) -> int:
        """Delete rows whose ``key`` is in ``values``. Returns rows deleted."""
        pass

    @abstractmethod
    def count(self, table: str, filters: Optional[Sequence[FilterSpec]] = None) -> int:
        """Count rows matching the filters."""
        pass

    @abstractmethod
    def table_exists(self, table: str) -> bool:
        """Check whether a table is reachable."""
        pass

    @abstractmethod
    def apply_sql(self, sql: str) -> None:
        """Execute DDL supplied by the operator."""
        pass

    @abstractmethod
    def drop_table(self, table: str) -> None:
        """Drop a table if it exists."""
        pass

    def describe(self) -> str:
        """Short description for logs and reports."""
        return self.__class__.__name__
