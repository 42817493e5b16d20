"""Run summaries: console output and persisted JSON reports."""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from .models.migration import MigrationRun

logger = logging.getLogger(__name__)

MAX_LISTED_ERRORS = 20


def report_filename(run: MigrationRun) -> str:
    stamp = run.stats.started_at.strftime("%Y%m%d_%H%M%S")
    return f"migration_report_{run.job}_{stamp}.json"


def format_bytes(size: int) -> str:
    sign = "-" if size < 0 else ""
    value = float(abs(size))
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{sign}{value:.0f} {unit}" if unit == "B" else f"{sign}{value:.2f} {unit}"
        value /= 1024
    return f"{sign}{value:.2f} GB"


def format_report(run: MigrationRun) -> List[str]:
    """Human-readable summary lines for a finished run."""
    stats = run.stats
    title = "DRY RUN COMPLETE" if run.dry_run else "MIGRATION COMPLETE"
    if run.status.value != "done":
        title = f"MIGRATION {run.status.value.upper()}"

    lines = [
        "=" * 60,
        f"{title}: {run.job}",
        "=" * 60,
        f"Status: {run.status.value}",
        f"Total rows: {stats.total}",
        f"Migrated: {stats.migrated}",
        f"Skipped: {stats.skipped}",
        f"Errored: {stats.errored}",
        f"Pages read: {stats.pages_read}",
        f"Write batches: {stats.batches_written}",
        f"Duration: {stats.elapsed_seconds:.2f} seconds",
        f"Estimated storage delta: {format_bytes(stats.estimated_storage_delta_bytes)}",
    ]

    if stats.expected_total is not None:
        lines.append(f"Rows in scope at start: {stats.expected_total}")
    if run.capped:
        lines.append("Stopped at the configured iteration/row cap")
    if run.created_tables:
        lines.append(f"Created tables: {', '.join(run.created_tables)}")
    if run.rolled_back_tables:
        lines.append(f"Rolled back tables: {', '.join(run.rolled_back_tables)}")

    if run.verification:
        v = run.verification
        state = "OK" if v.matched else "MISMATCH"
        lines.append(f"Verification ({v.table}): expected {v.expected}, found {v.actual} [{state}]")

    if run.error:
        lines.append(f"Error: {run.error_type}: {run.error}")

    if stats.errored_records:
        lines.append("-" * 40)
        lines.append("Errored records:")
        for item in stats.errored_records[:MAX_LISTED_ERRORS]:
            lines.append(f"  {item['table']} {item['natural_key']!r}: {item['reason']}")
        hidden = len(stats.errored_records) - MAX_LISTED_ERRORS
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")

    if stats.warnings:
        lines.append("-" * 40)
        lines.append("Warnings:")
        for warning in stats.warnings[:MAX_LISTED_ERRORS]:
            lines.append(f"  {warning}")

    return lines


def print_report(run: MigrationRun, stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stdout
    print("\n" + "\n".join(format_report(run)), file=stream)


def save_report(run: MigrationRun, directory: str) -> Path:
    """
    Write the run as JSON into ``directory``.

    Returns:
        Path of the written report
    """
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    filepath = path / report_filename(run)
    with open(filepath, "w") as f:
        json.dump(run.to_dict(), f, indent=2, default=str)
    logger.info(f"Saved migration report to {filepath}")
    return filepath
