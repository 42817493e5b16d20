"""CLI tests against fixture files."""

import json

import pytest

from batchmigrate.cli import build_config, build_parser, main
from batchmigrate.stores.memory import MemoryStore

from .conftest import make_email


@pytest.fixture
def fixture_file(tmp_path):
    rows = [make_email(i) for i in range(12)]
    rows[3]["message_id"] = None
    path = tmp_path / "fixture.json"
    path.write_text(json.dumps({"emails": rows, "email_index": [], "email_content_cache": []}))
    return path


def test_jobs_lists_builtin_jobs(capsys):
    assert main(["jobs"]) == 0
    out = capsys.readouterr().out
    assert "optimize-emails" in out
    assert "purge-emails" in out
    assert "purge-table" in out


def test_run_against_fixture(fixture_file, tmp_path, capsys):
    output = tmp_path / "after.json"
    report_dir = tmp_path / "reports"

    code = main([
        "run", "optimize-emails",
        "--fixture", str(fixture_file),
        "--batch-size", "5",
        "--batch-delay", "0",
        "--report-dir", str(report_dir),
        "--save-fixture", str(output),
    ])

    assert code == 0
    out = capsys.readouterr().out
    assert "Migrated: 11" in out
    assert "Skipped: 1" in out
    assert len(json.loads(output.read_text())["email_index"]) == 11
    assert len(list(report_dir.glob("migration_report_optimize-emails_*.json"))) == 1


def test_dry_run_writes_nothing(fixture_file, tmp_path):
    output = tmp_path / "after.json"

    code = main([
        "run", "optimize-emails", "--fixture", str(fixture_file),
        "--dry-run", "--batch-delay", "0", "--save-fixture", str(output),
    ])

    assert code == 0
    assert json.loads(output.read_text())["email_index"] == []


def test_failed_run_exits_1(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text(json.dumps({"emails": []}))

    assert main(["run", "optimize-emails", "--fixture", str(path), "--batch-delay", "0"]) == 1


def test_forced_interrupt_still_prints_report(fixture_file, monkeypatch, capsys):
    def interrupt(self, table, rows, on_conflict):
        raise KeyboardInterrupt

    monkeypatch.setattr(MemoryStore, "upsert", interrupt)

    code = main(["run", "optimize-emails", "--fixture", str(fixture_file), "--batch-delay", "0"])

    assert code == 130
    out = capsys.readouterr().out
    assert "MIGRATION ABORTED" in out
    assert "Status: aborted" in out


def test_check(fixture_file, capsys):
    assert main(["check", "optimize-emails", "--fixture", str(fixture_file)]) == 0
    out = capsys.readouterr().out
    assert "Rows in scope: 12" in out
    assert "Ready to run" in out


def test_bad_filter_is_configuration_error(fixture_file, capsys):
    code = main(["check", "purge-table", "--fixture", str(fixture_file), "--table", "emails", "--filter", "oops"])
    assert code == 1
    assert "Configuration error" in capsys.readouterr().err


def test_preview(tmp_path, capsys):
    path = tmp_path / "sample.json"
    path.write_text(json.dumps(make_email(1, html_content="<b>Hello</b>", text_content=None)))

    assert main(["preview", "optimize-emails", "--input", str(path)]) == 0
    out = capsys.readouterr().out
    assert '"preview_text": "Hello"' in out


def test_flags_override_config_file_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"batch_size": 300, "on_cap": "fail", "months_back": 6}))
    monkeypatch.setenv("BATCH_SIZE", "20")
    monkeypatch.setenv("MAX_ROWS", "1000")

    args = build_parser().parse_args([
        "run", "optimize-emails", "--config", str(config_file), "--months-back", "2",
    ])
    config = build_config(args)

    assert config.batch_size == 300
    assert config.max_rows == 1000
    assert config.on_cap == "fail"
    assert config.months_back == 2
    assert config.job == "optimize-emails"
