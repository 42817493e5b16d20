"""Shared fixtures: email rows and in-memory stores."""

from datetime import datetime, timedelta, timezone

import pytest

from batchmigrate.config import MigrationConfig
from batchmigrate.stores.memory import MemoryStore

NOW = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)


def make_email(i: int, **overrides):
    row = {
        "id": f"email-{i:05d}",
        "user_id": "user-1",
        "message_id": f"<msg-{i:05d}@mail.example.com>",
        "thread_id": f"thread-{i // 3}",
        "from_address": f"Sender {i} <sender{i}@example.com>",
        "to_address": "sales@crm.example",
        "subject": f"Subject {i}",
        "text_content": f"Body of message {i}",
        "is_read": True,
        "received_date": (NOW - timedelta(days=30 + i % 60)).isoformat(),
        "created_at": (NOW - timedelta(days=30 + i % 60)).isoformat(),
    }
    row.update(overrides)
    return row


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def email_store():
    """Factory: MemoryStore with ``n`` emails and empty destination tables."""
    def _make(n: int, rows=None, destinations=True):
        tables = {"emails": rows if rows is not None else [make_email(i) for i in range(n)]}
        if destinations:
            tables["email_index"] = []
            tables["email_content_cache"] = []
        return MemoryStore(tables)
    return _make


@pytest.fixture
def make_config():
    def _make(job: str = "optimize-emails", **overrides):
        overrides.setdefault("batch_delay", 0)
        return MigrationConfig(job=job, **overrides)
    return _make
