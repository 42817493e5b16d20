"""Command line interface for running migration jobs."""

import argparse
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from .config import (
    MigrationConfig,
    StoreConfig,
    env_options,
    load_env_files,
    parse_filter,
)
from .errors import ConfigurationError, MigrationError
from .models.email import parse_timestamp
from .orchestrator import CancellationToken, MigrationDriver
from .report import print_report
from .services.job_registry import JobRegistry
from .services.transformer import preview_rows
from .stores.base import DataStore
from .stores.memory import MemoryStore

logger = logging.getLogger(__name__)


def _add_run_options(parser: argparse.ArgumentParser):
    """Options shared by ``run`` and ``check``."""
    parser.add_argument("job", help="Job name (see 'jobs')")
    parser.add_argument("--config", help="JSON config file")
    parser.add_argument("--fixture", help="JSON file of {table: [rows]} to run against in memory")
    parser.add_argument("--table", help="Source table for generic jobs")
    parser.add_argument("--key", help="Unique key column to paginate on")
    parser.add_argument(
        "--filter", action="append", default=[], metavar="COL[:OP]=VALUE",
        help="Scope rows, e.g. user_id=abc or created_at:lt=2024-01-01 (repeatable)",
    )
    parser.add_argument("--months-back", type=int, help="Cutoff is now minus N months")
    parser.add_argument("--cutoff-date", help="Explicit cutoff date (ISO 8601)")
    parser.add_argument("--batch-size", type=int, help="Rows per page (default 100)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batch-migrate",
        description="Batch Migration Tool - paginated, idempotent table migrations for Supabase",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    jobs_parser = subparsers.add_parser("jobs", help="List available jobs")
    jobs_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Run a job
    run_parser = subparsers.add_parser("run", help="Run a migration job")
    _add_run_options(run_parser)
    run_parser.add_argument("--dry-run", action="store_true", help="Read and transform only, write nothing")
    run_parser.add_argument("--write-batch-size", type=int, help="Records per write call")
    run_parser.add_argument("--max-iterations", type=int, help="Stop after N pages")
    run_parser.add_argument("--max-rows", type=int, help="Stop after N rows")
    run_parser.add_argument("--on-cap", choices=["stop", "fail"], help="What to do when a cap is hit")
    run_parser.add_argument("--on-read-error", choices=["abort", "skip"], help="What to do when a page cannot be read")
    run_parser.add_argument("--batch-delay", type=float, help="Seconds to wait between pages")
    run_parser.add_argument("--no-verify", action="store_true", help="Skip post-run verification")
    run_parser.add_argument("--report-dir", help="Directory for the JSON report")
    run_parser.add_argument("--setup-sql", help="SQL file that creates missing destination tables")
    run_parser.add_argument("--save-fixture", help="After a --fixture run, write the resulting tables here")

    # Preflight only
    check_parser = subparsers.add_parser("check", help="Check tables and count rows in scope")
    _add_run_options(check_parser)

    # Preview transformation
    preview_parser = subparsers.add_parser("preview", help="Preview the transformation of sample rows")
    preview_parser.add_argument("job", help="Job name")
    preview_parser.add_argument("--input", required=True, help="Path to input JSON file")
    preview_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    load_env_files()

    try:
        if args.command == "jobs":
            return list_jobs(args)
        elif args.command == "run":
            return run_job(args)
        elif args.command == "check":
            return check_job(args)
        elif args.command == "preview":
            return run_preview(args)
        else:
            parser.print_help()
            return 1
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except MigrationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Config options given on the command line (None = not given)."""
    cutoff_date = None
    if args.cutoff_date:
        cutoff_date = parse_timestamp(args.cutoff_date)
        if cutoff_date is None:
            raise ConfigurationError(f"--cutoff-date is not a valid date: {args.cutoff_date}")

    overrides = {
        "job": args.job,
        "table": args.table,
        "key": args.key,
        "filters": [parse_filter(f) for f in args.filter] or None,
        "months_back": args.months_back,
        "cutoff_date": cutoff_date,
        "batch_size": args.batch_size,
    }
    if args.command == "run":
        overrides.update({
            "dry_run": True if args.dry_run else None,
            "write_batch_size": args.write_batch_size,
            "max_iterations": args.max_iterations,
            "max_rows": args.max_rows,
            "on_cap": args.on_cap,
            "on_read_error": args.on_read_error,
            "batch_delay": args.batch_delay,
            "verify": False if args.no_verify else None,
            "report_dir": args.report_dir,
            "setup_sql": args.setup_sql,
        })
    return overrides


def build_config(args: argparse.Namespace) -> MigrationConfig:
    """Environment, then the JSON config file, then CLI flags."""
    data = env_options()
    if args.config:
        with open(args.config) as f:
            data.update(json.load(f))
    return MigrationConfig.from_dict(data).merged(cli_overrides(args))


def create_store(args: argparse.Namespace) -> DataStore:
    if args.fixture:
        logger.info(f"Using in-memory store loaded from {args.fixture}")
        return MemoryStore.from_fixture(args.fixture)
    return StoreConfig.from_env().create_store()


def list_jobs(args) -> int:
    registry = JobRegistry()
    print("\n=== Available Jobs ===")
    for name in registry.list_jobs():
        job = registry.get(name)
        print(f"\n{name} ({job.operation.value})")
        print(f"   {job.description}")
    return 0


def run_job(args) -> int:
    """Run a job and return the process exit code."""
    config = build_config(args)
    store = create_store(args)
    token = CancellationToken()

    def handle_sigint(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        logger.warning("[ABORT] Interrupt received, stopping after the current page (Ctrl-C again to force)")
        token.cancel("interrupted by operator")

    driver = MigrationDriver(config, store, cancel_token=token)
    previous = signal.signal(signal.SIGINT, handle_sigint)
    try:
        result = driver.run_migration()
    except KeyboardInterrupt:
        # Forced stop; the driver has already marked the run aborted
        if driver.run is None:
            raise
        result = driver.run
    finally:
        signal.signal(signal.SIGINT, previous)

    print_report(result)

    if args.save_fixture and isinstance(store, MemoryStore):
        store.save_fixture(args.save_fixture)
        print(f"Tables saved to {args.save_fixture}")

    return result.exit_code


def check_job(args) -> int:
    config = build_config(args)
    store = create_store(args)
    result = MigrationDriver(config, store).check()

    print("\n=== Preflight ===")
    print(f"Job: {result['job']}")
    if result.get("source"):
        print(f"Source: {result['source']}")
    if result.get("cutoff"):
        print(f"Cutoff: {result['cutoff']}")
    for table, exists in result["tables"].items():
        print(f"  {table}: {'ok' if exists else 'MISSING'}")
    if result["rows_in_scope"] is not None:
        print(f"Rows in scope: {result['rows_in_scope']}")

    if result["problems"]:
        print(f"\nFound {len(result['problems'])} problems:")
        for problem in result["problems"]:
            print(f"  - {problem}")
        return 1

    print("\nReady to run")
    return 0


def run_preview(args) -> int:
    """Preview a transformation."""
    registry = JobRegistry()
    job = registry.get(args.job)

    with open(args.input) as f:
        input_data = json.load(f)

    if not isinstance(input_data, list):
        input_data = [input_data]

    config = MigrationConfig(job=job.name, table=job.source_table or "preview")
    transformer = job.create_transformer(config, datetime.now(timezone.utc))

    for item in preview_rows(transformer, input_data, table=job.table_for(config), key=job.key):
        print(json.dumps(item, indent=2, default=str))
        print("-" * 40)
    return 0


if __name__ == "__main__":
    sys.exit(main())
