"""Supabase data store built on the supabase-py client."""

import logging
import re
import time
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from .base import DataStore, FilterSpec, normalize_filters
from ..errors import StoreError

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MISSING_TABLE_CODES = {"42P01", "PGRST205", "PGRST106"}
RETRY_STATUSES = {429, 500, 502, 503, 504}


def _check_identifier(name: str) -> str:
    if not IDENTIFIER_RE.match(name or ""):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def format_value(value: Any) -> str:
    """Render a filter value the way PostgREST expects it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def apply_filters(query: Any, filters: Optional[Sequence[FilterSpec]]) -> Any:
    """Chain filter calls (``eq``, ``gte``, ``in_``, ``is_`` ...) onto a query builder."""
    for flt in normalize_filters(filters):
        column = _check_identifier(flt.column)
        if flt.op == "in":
            query = query.in_(column, [format_value(v) for v in flt.value])
        elif flt.op == "is":
            query = query.is_(column, format_value(flt.value))
        else:
            query = getattr(query, flt.op)(column, format_value(flt.value))
    return query


def _status_from_code(code: Any) -> Optional[int]:
    # Non-JSON error bodies (gateway errors) carry the HTTP status as the code
    text = str(code) if code is not None else ""
    return int(text) if text.isdigit() and len(text) == 3 else None


class SupabaseStore(DataStore):
    """
    Data store backed by a Supabase project.

    Supports:
    - Keyset-paginated selects (``order`` + ``gt`` + ``limit``)
    - Upserts with ``on_conflict``
    - Deletes by key list (``in_``)
    - Exact counts (``count="exact"``)
    - DDL through an ``exec_sql`` RPC function
    - Retry with exponential backoff on 429/5xx and connection errors
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        schema: str = "public",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        sql_function: str = "exec_sql",
        client: Optional[Client] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the store.

        Args:
            url: Project URL (``https://<ref>.supabase.co``)
            api_key: Service role key
            schema: Postgres schema exposed by the REST API
            timeout: Per-request timeout in seconds
            max_retries: Retries for transient failures
            backoff_factor: Base of the exponential wait between retries
            sql_function: RPC function that executes raw SQL
            client: Pre-built client (tests)
            sleep: Wait function used between retries
        """
        self.url = url.rstrip("/") if url else None
        self.schema = schema
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.sql_function = sql_function
        self.sleep = sleep

        if client is not None:
            self.client = client
            return

        if not url or not api_key:
            raise ValueError("Supabase URL and API key are required")
        try:
            self.client = create_client(
                self.url,
                api_key,
                options=ClientOptions(schema=schema, postgrest_client_timeout=timeout),
            )
        except Exception as e:
            raise StoreError(f"Could not create Supabase client for {self.url}: {e}") from e

    def _store_error(self, action: str, error: Exception) -> StoreError:
        if isinstance(error, APIError):
            message = error.message or "request failed"
            if error.details:
                message = f"{message}: {error.details}"
            code = str(error.code) if error.code is not None else None
            return StoreError(
                f"{action} failed: {message}",
                status_code=_status_from_code(error.code),
                code=code,
            )
        return StoreError(f"{action} failed: {error}")

    def _execute(self, action: str, query: Any) -> Any:
        """Execute a query builder, retrying transient failures."""
        attempt = 0
        while True:
            try:
                return query.execute()
            except (APIError, httpx.HTTPError) as e:
                error = self._store_error(action, e)
                transient = isinstance(e, httpx.TransportError) or error.status_code in RETRY_STATUSES
                if not transient or attempt >= self.max_retries:
                    raise error from e

                wait_time = self.backoff_factor * (2 ** attempt)
                attempt += 1
                logger.warning(
                    f"{action} failed ({error.message}); "
                    f"retry {attempt}/{self.max_retries} in {wait_time:.1f}s"
                )
                self.sleep(wait_time)

    def select_page(
        self,
        table: str,
        order_by: str,
        limit: int,
        after: Any = None,
        filters: Optional[Sequence[FilterSpec]] = None,
        columns: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        table = _check_identifier(table)
        order_by = _check_identifier(order_by)
        select = [_check_identifier(c) for c in columns] if columns else ["*"]

        query = apply_filters(self.client.table(table).select(*select), filters)
        if after is not None:
            query = query.gt(order_by, format_value(after))
        query = query.order(order_by).limit(limit)

        response = self._execute(f"select from {table}", query)
        if not isinstance(response.data, list):
            raise StoreError(f"Unexpected select response for {table}: {str(response.data)[:200]}")
        return response.data

    def upsert(self, table: str, rows: List[Dict[str, Any]], on_conflict: str) -> None:
        if not rows:
            return
        table = _check_identifier(table)
        query = self.client.table(table).upsert(rows, on_conflict=_check_identifier(on_conflict))
        self._execute(f"upsert into {table}", query)

    def delete(self, table: str, key: str, values: List[Any]) -> int:
        if not values:
            return 0
        table = _check_identifier(table)
        key = _check_identifier(key)
        query = self.client.table(table).delete().in_(key, [format_value(v) for v in values])
        response = self._execute(f"delete from {table}", query)
        return len(response.data) if isinstance(response.data, list) else 0

    def count(self, table: str, filters: Optional[Sequence[FilterSpec]] = None) -> int:
        table = _check_identifier(table)
        query = apply_filters(self.client.table(table).select("*", count="exact", head=True), filters)
        response = self._execute(f"count of {table}", query)
        if response.count is None:
            raise StoreError(f"Count unavailable for {table}")
        return response.count

    def table_exists(self, table: str) -> bool:
        table = _check_identifier(table)
        try:
            self._execute(f"lookup of {table}", self.client.table(table).select("*").limit(0))
            return True
        except StoreError as e:
            if e.status_code == 404 or e.code in MISSING_TABLE_CODES:
                return False
            raise

    def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        """Call a Postgres function exposed through the REST API."""
        function = _check_identifier(function)
        response = self._execute(f"rpc {function}", self.client.rpc(function, params))
        return response.data

    def apply_sql(self, sql: str) -> None:
        logger.info(f"Applying {len(sql)} bytes of SQL via rpc {self.sql_function}")
        self.rpc(self.sql_function, {"sql": sql})

    def drop_table(self, table: str) -> None:
        table = _check_identifier(table)
        self.apply_sql(f"DROP TABLE IF EXISTS {self.schema}.{table} CASCADE;")

    def describe(self) -> str:
        return f"SupabaseStore({self.url or 'custom client'})"
