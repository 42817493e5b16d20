#!/usr/bin/env python3
"""
Example: rehearse the email optimization against a local fixture

Runs the optimize-emails job against an in-memory copy of
sample_emails.json, creating the destination tables from setup.sql the way
a live run would through exec_sql.

Usage:
    # Dry run (nothing written)
    python run_rehearsal.py --dry-run

    # Full rehearsal, then inspect the resulting tables
    python run_rehearsal.py --output rehearsal_tables.json
"""

import argparse
import logging
from pathlib import Path

from batchmigrate.config import MigrationConfig
from batchmigrate.orchestrator import MigrationDriver
from batchmigrate.report import print_report
from batchmigrate.stores.memory import MemoryStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

HERE = Path(__file__).parent


def create_config(dry_run: bool = True) -> MigrationConfig:
    """Create the run configuration programmatically."""
    return MigrationConfig(
        job="optimize-emails",
        dry_run=dry_run,
        batch_size=2,  # Small pages so the fixture spans several
        write_batch_size=50,
        on_read_error="skip",
        batch_delay=0,
        setup_sql=str(HERE / "setup.sql"),
    )


def main():
    parser = argparse.ArgumentParser(description="Rehearse optimize-emails on a fixture")
    parser.add_argument("--dry-run", action="store_true", help="Validate only")
    parser.add_argument("--fixture", default=str(HERE / "sample_emails.json"), help="Source fixture")
    parser.add_argument("--output", help="Write the resulting tables to this file")
    args = parser.parse_args()

    store = MemoryStore.from_fixture(args.fixture)
    config = create_config(dry_run=args.dry_run)

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    run = MigrationDriver(config, store).run_migration()
    print_report(run)

    if args.output and not args.dry_run:
        store.save_fixture(args.output)

    return run.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
