"""Supabase store tests using a stub client (no network)."""

from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

from batchmigrate.errors import StoreError
from batchmigrate.stores.base import Filter
from batchmigrate.stores.supabase_store import SupabaseStore, format_value


class StubQuery:
    """Records builder calls; ``execute`` replays the client's queued outcomes."""

    def __init__(self, client, target):
        self.client = client
        self.target = target
        self.calls = []

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def execute(self):
        self.client.executed.append(self)
        outcome = self.client.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StubClient:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.executed = []

    def table(self, name):
        return StubQuery(self, name)

    def rpc(self, function, params):
        query = StubQuery(self, f"rpc:{function}")
        query.calls.append(("rpc", (function, params), {}))
        return query


def response(data=None, count=None):
    return SimpleNamespace(data=data, count=count)


def api_error(code, message="error", details=None):
    return APIError({"message": message, "code": code, "details": details, "hint": None})


def make_store(*outcomes, max_retries=3):
    client = StubClient(*outcomes)
    waits = []
    store = SupabaseStore(client=client, max_retries=max_retries, sleep=waits.append)
    return store, client, waits


def test_select_page_builds_keyset_query():
    store, client, _ = make_store(response([{"id": "e-11"}]))

    rows = store.select_page(
        "emails",
        order_by="id",
        limit=100,
        after="e-10",
        filters=[Filter("created_at", "gte", "2025-01-01T00:00:00+00:00")],
        columns=["id", "subject"],
    )

    assert rows == [{"id": "e-11"}]
    query = client.executed[0]
    assert query.target == "emails"
    assert query.calls == [
        ("select", ("id", "subject"), {}),
        ("gte", ("created_at", "2025-01-01T00:00:00+00:00"), {}),
        ("gt", ("id", "e-10"), {}),
        ("order", ("id",), {}),
        ("limit", (100,), {}),
    ]


def test_first_page_has_no_lower_bound():
    store, client, _ = make_store(response([]))

    store.select_page("emails", "id", 10)

    assert [name for name, _, _ in client.executed[0].calls] == ["select", "order", "limit"]


def test_filter_operators():
    store, client, _ = make_store(response([]))

    store.select_page(
        "emails",
        "id",
        10,
        filters=[
            Filter("deleted_at", "is", None),
            Filter("is_read", "eq", False),
            Filter("agent_priority", "in", ["high", "urgent"]),
        ],
    )

    calls = client.executed[0].calls
    assert ("is_", ("deleted_at", "null"), {}) in calls
    assert ("eq", ("is_read", "false"), {}) in calls
    assert ("in_", ("agent_priority", ["high", "urgent"]), {}) in calls


def test_format_value():
    assert format_value(None) == "null"
    assert format_value(True) == "true"
    assert format_value(3) == "3"


def test_upsert_uses_on_conflict():
    store, client, _ = make_store(response([{"message_id": "m-1"}]))

    store.upsert("email_index", [{"message_id": "m-1"}], on_conflict="message_id")

    query = client.executed[0]
    assert query.target == "email_index"
    assert query.calls == [("upsert", ([{"message_id": "m-1"}],), {"on_conflict": "message_id"})]


def test_upsert_error_becomes_store_error():
    store, _, waits = make_store(api_error("23502", "null value in column", "Failing row contains (...)"))

    with pytest.raises(StoreError) as excinfo:
        store.upsert("email_index", [{"message_id": None}], on_conflict="message_id")

    assert excinfo.value.code == "23502"
    assert "Failing row" in str(excinfo.value)
    assert waits == []


def test_delete_returns_deleted_count():
    store, client, _ = make_store(response([{"id": 1}, {"id": 2}]))

    deleted = store.delete("emails", "id", [1, 2, 3])

    assert deleted == 2
    assert client.executed[0].calls == [("delete", (), {}), ("in_", ("id", ["1", "2", "3"]), {})]
    assert store.delete("emails", "id", []) == 0


def test_count_is_exact_and_head_only():
    store, client, _ = make_store(response([], count=1250))

    assert store.count("emails", [("user_id", "eq", "u1")]) == 1250
    assert client.executed[0].calls[0] == ("select", ("*",), {"count": "exact", "head": True})


def test_count_without_total_is_an_error():
    store, _, _ = make_store(response([], count=None))

    with pytest.raises(StoreError):
        store.count("emails")


def test_table_exists():
    store, _, _ = make_store(
        response([]),
        api_error("PGRST205", "Could not find the table"),
        api_error("PGRST301", "JWT expired"),
    )

    assert store.table_exists("emails") is True
    assert store.table_exists("email_index") is False
    with pytest.raises(StoreError):
        store.table_exists("emails")


def test_transient_errors_are_retried_with_backoff():
    store, client, waits = make_store(
        httpx.ConnectError("connection reset"),
        api_error(503, "JSON could not be generated"),
        response([{"id": "e-1"}]),
    )

    assert store.select_page("emails", "id", 10) == [{"id": "e-1"}]
    assert len(client.executed) == 3
    assert waits == [1.0, 2.0]


def test_retries_give_up_after_max_retries():
    store, _, waits = make_store(
        httpx.ConnectError("connection reset"),
        httpx.ConnectError("connection reset"),
        max_retries=1,
    )

    with pytest.raises(StoreError) as excinfo:
        store.select_page("emails", "id", 10)

    assert "connection reset" in str(excinfo.value)
    assert waits == [1.0]


def test_apply_sql_and_drop_table_use_rpc():
    store, client, _ = make_store(response(None), response(None))

    store.apply_sql("CREATE TABLE x (id int);")
    store.drop_table("email_index")

    assert client.executed[0].calls == [("rpc", ("exec_sql", {"sql": "CREATE TABLE x (id int);"}), {})]
    assert client.executed[1].calls == [
        ("rpc", ("exec_sql", {"sql": "DROP TABLE IF EXISTS public.email_index CASCADE;"}), {})
    ]


def test_identifiers_are_checked():
    store, _, _ = make_store()
    with pytest.raises(ValueError):
        store.select_page("emails; drop table users", "id", 10)


def test_requires_credentials():
    with pytest.raises(ValueError):
        SupabaseStore("", "key")
