"""Configuration tests."""

from datetime import datetime, timezone

import pytest

from batchmigrate.config import MigrationConfig, StoreConfig, env_options, load_env_files, parse_filter
from batchmigrate.errors import ConfigurationError
from batchmigrate.stores.base import Filter
from batchmigrate.stores import supabase_store
from batchmigrate.stores.supabase_store import SupabaseStore


def test_defaults():
    config = MigrationConfig(job="optimize-emails")

    assert config.batch_size == 100
    assert config.effective_write_batch_size == 50
    assert config.batch_delay == 0.1
    assert config.on_read_error == "abort"
    assert config.on_cap == "stop"
    assert config.verify
    assert config.validate() == []


def test_write_batch_size_follows_small_pages():
    assert MigrationConfig(job="x", batch_size=10).effective_write_batch_size == 10
    assert MigrationConfig(job="x", batch_size=10, write_batch_size=3).effective_write_batch_size == 3


def test_from_env():
    config = MigrationConfig.from_env({
        "DRY_RUN": "true",
        "BATCH_SIZE": "250",
        "MAX_ITERATIONS": "40",
        "ON_READ_ERROR": "skip",
        "VERIFY": "false",
        "CUTOFF_DATE": "2025-01-01",
        "UNRELATED": "x",
    })

    assert config.dry_run is True
    assert config.batch_size == 250
    assert config.max_iterations == 40
    assert config.on_read_error == "skip"
    assert config.verify is False
    assert config.cutoff_date == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_env_options_ignores_blank_values():
    assert env_options({"BATCH_SIZE": "", "MONTHS_BACK": "3"}) == {"months_back": "3"}


def test_bad_number_is_configuration_error():
    with pytest.raises(ConfigurationError):
        MigrationConfig.from_env({"BATCH_SIZE": "lots"})


def test_validate_collects_problems():
    config = MigrationConfig(
        job="",
        batch_size=0,
        on_cap="explode",
        on_read_error="retry",
        batch_delay=-1,
        setup_sql="/does/not/exist.sql",
    )

    problems = config.validate()

    assert len(problems) == 6
    assert any("ON_READ_ERROR" in p for p in problems)


def test_resolve_cutoff_from_months_back():
    now = datetime(2025, 10, 31, tzinfo=timezone.utc)

    assert MigrationConfig(job="x", months_back=1).resolve_cutoff(now) == datetime(2025, 9, 30, tzinfo=timezone.utc)
    assert MigrationConfig(job="x").resolve_cutoff(now) is None

    explicit = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert MigrationConfig(job="x", months_back=1, cutoff_date=explicit).resolve_cutoff(now) == explicit


def test_merged_applies_only_given_values():
    base = MigrationConfig(job="optimize-emails", batch_size=200, filters=[Filter("user_id", "eq", "a")])

    merged = base.merged({"batch_size": None, "dry_run": True, "filters": [Filter("folder", "eq", "INBOX")]})

    assert merged.batch_size == 200
    assert merged.dry_run is True
    assert [f.column for f in merged.filters] == ["user_id", "folder"]
    assert base.dry_run is False

    with pytest.raises(ConfigurationError):
        base.merged({"nope": 1})


def test_parse_filter():
    assert parse_filter("user_id=abc") == Filter("user_id", "eq", "abc")
    assert parse_filter("created_at:lt=2024-01-01") == Filter("created_at", "lt", "2024-01-01")
    assert parse_filter("id:in=a, b,c") == Filter("id", "in", ["a", "b", "c"])
    assert parse_filter("deleted_at:is=null") == Filter("deleted_at", "is", None)

    with pytest.raises(ConfigurationError):
        parse_filter("user_id")
    with pytest.raises(ConfigurationError):
        parse_filter("user_id:like=a%")


def test_from_dict_round_trip_of_filters():
    config = MigrationConfig.from_dict({"job": "purge-table", "table": "contacts", "filters": ["user_id=u1"]})
    assert config.to_dict()["filters"] == [{"column": "user_id", "op": "eq", "value": "u1"}]


def test_store_config_fallback_names(monkeypatch):
    created = {}

    def fake_create_client(url, key, options=None):
        created.update(url=url, key=key, schema=options.schema)
        return object()

    monkeypatch.setattr(supabase_store, "create_client", fake_create_client)
    config = StoreConfig.from_env({"NEXT_PUBLIC_SUPABASE_URL": "https://x.supabase.co", "SUPABASE_KEY": "k"})

    assert config.url == "https://x.supabase.co"
    assert config.api_key == "k"
    assert isinstance(config.create_store(), SupabaseStore)
    assert created == {"url": "https://x.supabase.co", "key": "k", "schema": "public"}


def test_store_config_missing_credentials():
    with pytest.raises(ConfigurationError):
        StoreConfig.from_env({}).create_store()


def test_load_env_files(tmp_path, monkeypatch):
    (tmp_path / ".env.local").write_text("BATCH_SIZE=42\n")
    (tmp_path / ".env").write_text("BATCH_SIZE=7\nMONTHS_BACK=3\n")
    for name in ("BATCH_SIZE", "MONTHS_BACK"):
        # setenv first so monkeypatch restores the variable to unset afterwards
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)

    loaded = load_env_files(str(tmp_path))

    assert len(loaded) == 2
    config = MigrationConfig.from_env()
    assert config.batch_size == 42
    assert config.months_back == 3
