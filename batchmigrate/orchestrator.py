"""Migration driver - runs one job from preflight to verification."""

import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from .config import MigrationConfig
from .errors import (
    ConfigurationError,
    IterationCapReached,
    MigrationAborted,
    MigrationError,
    PageReadError,
    PreconditionError,
    RecordSkipped,
    StoreError,
)
from .models.migration import MigrationRun, MigrationStatus, VerificationResult, utcnow
from .models.record import Cursor, DestinationRecord, Page, SourceRecord, WriteOperation
from .readers.base import BasePagedReader
from .report import save_report
from .services.job_registry import JobRegistry, MigrationJob
from .services.transformer import RowTransformer, skip_reason
from .stores.base import DataStore, Filter
from .writers.base import BaseBatchWriter
from .writers.store_writer import StoreWriter

logger = logging.getLogger(__name__)

VERIFY_CHUNK_SIZE = 100


def json_size(data: Any) -> int:
    """Size of ``data`` serialized as JSON, in bytes."""
    return len(json.dumps(data, default=str).encode("utf-8"))


class CancellationToken:
    """Set from a signal handler or another thread; checked between pages."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by operator") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise MigrationAborted(self.reason or "cancelled")


class MigrationDriver:
    """
    Runs a migration job page by page.

    Handles:
    - Preflight checks and optional schema setup
    - Keyset-paginated reading with abort/skip handling of bad pages
    - Transformation with skipped/errored accounting per source row
    - Batched writes with per-record fallback
    - Iteration and row caps
    - Post-run verification and rollback of tables created on failure
    - Cooperative cancellation
    """

    def __init__(
        self,
        config: MigrationConfig,
        store: DataStore,
        job: Optional[MigrationJob] = None,
        registry: Optional[JobRegistry] = None,
        reader: Optional[BasePagedReader] = None,
        transformer: Optional[RowTransformer] = None,
        writer: Optional[BaseBatchWriter] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[datetime] = None
    ):
        """
        Initialize the driver.

        Args:
            config: Run configuration
            store: Backend for reads, writes and preflight checks
            job: Job to run (looked up by ``config.job`` when omitted)
            registry: Registry used for that lookup
            reader: Override the job's reader
            transformer: Override the job's transformer
            writer: Override the default StoreWriter
            cancel_token: Token checked between pages
            sleep: Delay function used between pages
            now: Reference time for cutoffs (fixed for the whole run)
        """
        self.config = config
        self.store = store
        self.job = job or (registry or JobRegistry()).get(config.job)
        self.now = now or datetime.now(timezone.utc)
        self.cutoff = config.resolve_cutoff(self.now)
        self.cancel_token = cancel_token or CancellationToken()
        self.sleep = sleep

        self._reader = reader
        self._transformer = transformer
        self._writer = writer

        self.run: Optional[MigrationRun] = None
        self._written_keys: Set[Any] = set()

    @property
    def reader(self) -> BasePagedReader:
        if self._reader is None:
            self._reader = self.job.create_reader(self.store, self.config, self.cutoff)
        return self._reader

    @property
    def transformer(self) -> RowTransformer:
        if self._transformer is None:
            self._transformer = self.job.create_transformer(self.config, self.now)
        return self._transformer

    @property
    def writer(self) -> BaseBatchWriter:
        if self._writer is None:
            self._writer = StoreWriter(
                self.store,
                dry_run=self.config.dry_run,
                batch_size=self.config.effective_write_batch_size,
            )
        return self._writer

    def run_migration(self, run: Optional[MigrationRun] = None) -> MigrationRun:
        """
        Run the job to a terminal state.

        Args:
            run: Pre-registered run to fill in (the API hands one out before
                the run starts); a new one is created when omitted

        Returns:
            MigrationRun with status, statistics and verification
        """
        self.run = run or MigrationRun(job=self.job.name)
        self.run.dry_run = self.config.dry_run
        self.run.config = self.config.to_dict()
        self.run.stats.started_at = utcnow()
        self._written_keys = set()
        mode = "DRY RUN" if self.config.dry_run else "LIVE"
        logger.info(f"=== {self.job.name} ({mode}) ===")
        if self.cutoff:
            logger.info(f"Cutoff: {self.cutoff.isoformat()}")

        try:
            self._preflight()
            self._migrate()

            if self.config.verify and not self.config.dry_run:
                self._verify()
            elif self.config.dry_run:
                logger.info("[VERIFY] Skipped in dry-run mode")

            self.run.status = MigrationStatus.DONE
            logger.info("=== MIGRATION COMPLETED ===")

        except MigrationAborted as e:
            self.run.status = MigrationStatus.ABORTED
            self.run.error = str(e)
            self.run.error_type = type(e).__name__
            logger.warning(
                f"[ABORT] Run stopped after {self.run.stats.pages_read} pages; "
                f"rows already written are kept and a rerun resumes safely"
            )

        except KeyboardInterrupt:
            self.run.status = MigrationStatus.ABORTED
            self.run.error = "interrupted in the middle of a page"
            self.run.error_type = "KeyboardInterrupt"
            logger.warning(
                f"[ABORT] Forced stop during page {self.run.stats.iterations}; "
                "the page may be partly written; a rerun picks it up again"
            )
            raise

        except Exception as e:
            self.run.status = MigrationStatus.FAILED
            self.run.error = str(e)
            self.run.error_type = type(e).__name__
            if isinstance(e, MigrationError):
                logger.error(f"Migration failed: {e}")
            else:
                logger.exception(f"Migration failed with unexpected error: {e}")
            self._rollback()

        finally:
            self.run.stats.finish()
            self._log_summary()
            if self.config.report_dir:
                try:
                    save_report(self.run, self.config.report_dir)
                except OSError as e:
                    logger.error(f"Could not save report to {self.config.report_dir}: {e}")

        return self.run

    def check(self) -> Dict[str, Any]:
        """
        Run the read-only part of preflight.

        Nothing is created or written. Returns the configuration problems,
        which tables exist, and how many source rows are in scope.
        """
        problems = self.config.validate() + self.job.validate(self.config)
        if problems:
            return {"job": self.job.name, "problems": problems, "tables": {}, "rows_in_scope": None}

        source = self.reader.table
        tables = {source: self.store.table_exists(source)}
        for table in self.transformer.destination_tables():
            tables[table] = self.store.table_exists(table)

        for table, exists in tables.items():
            if not exists:
                problems.append(f"Table {table} does not exist")

        return {
            "job": self.job.name,
            "source": self.reader.describe(),
            "cutoff": self.cutoff.isoformat() if self.cutoff else None,
            "tables": tables,
            "rows_in_scope": self.reader.count() if tables[source] else None,
            "problems": problems,
        }

    # ------------------------------------------------------------------
    # INIT

    def _preflight(self):
        """Validate config, check tables, optionally apply setup SQL."""
        self.run.status = MigrationStatus.INIT

        problems = self.config.validate() + self.job.validate(self.config)
        if problems:
            raise ConfigurationError("; ".join(problems))

        source = self.reader.table
        if not self.store.table_exists(source):
            logger.error(f"[PRECONDITION] Source table {source} does not exist")
            raise PreconditionError(f"Source table {source} does not exist")

        missing = [t for t in self.transformer.destination_tables() if not self.store.table_exists(t)]
        if missing:
            missing = self._setup_tables(missing)
        if missing:
            logger.error(f"[PRECONDITION] Destination tables missing: {', '.join(missing)}")
            raise PreconditionError(f"Destination tables missing: {', '.join(missing)}")

        self.run.stats.expected_total = self.reader.count()
        logger.info(f"[PRECONDITION] OK: {self.reader.describe()}, {self.run.stats.expected_total} rows in scope")

    def _setup_tables(self, missing: List[str]) -> List[str]:
        """Apply the setup SQL file; returns tables that are still missing."""
        if not self.config.setup_sql:
            return missing

        if self.config.dry_run:
            logger.warning(
                f"[PRECONDITION] DRY RUN: would create {', '.join(missing)} from {self.config.setup_sql}"
            )
            self.run.stats.add_warning(f"Destination tables missing (not created in dry run): {', '.join(missing)}")
            return []

        logger.info(f"[PRECONDITION] Applying {self.config.setup_sql} to create {', '.join(missing)}")
        sql = Path(self.config.setup_sql).read_text()
        try:
            self.store.apply_sql(sql)
        finally:
            for table in missing:
                if self.store.table_exists(table):
                    self.run.created_tables.append(table)

        return [t for t in missing if t not in self.run.created_tables]

    # ------------------------------------------------------------------
    # READING / TRANSFORMING / WRITING

    def _migrate(self):
        stats = self.run.stats
        cursor = Cursor.start()

        while True:
            self.cancel_token.raise_if_cancelled()
            if self._cap_reached(cursor):
                break

            self.run.status = MigrationStatus.READING
            page, unreadable = self._read_page(cursor)
            stats.iterations += 1

            records = self._apply_row_cap(page.records)
            truncated = len(records) < len(page.records)
            if unreadable:
                for record in records:
                    stats.record_skipped(record.id, "page read failed")
            elif records:
                self._process(records)

            self._log_progress()

            if truncated:
                self._cap_hit(f"MAX_ROWS={self.config.max_rows}")
                break
            if page.done or not page.records:
                break
            cursor = page.next_cursor

            if self.config.batch_delay:
                self.sleep(self.config.batch_delay)

    def _read_page(self, cursor: Cursor) -> Tuple[Page, bool]:
        """Read one page. Returns the page and whether it had to be skipped."""
        page_no = self.run.stats.iterations + 1
        try:
            page = self.reader.next_page(cursor)
        except PageReadError as e:
            logger.error(f"[READ] Page {page_no} failed (after={e.after!r}, limit={e.limit}): {e.cause}")
            if self.config.on_read_error != "skip":
                raise

            # A probe that also fails propagates and ends the run.
            page = self.reader.probe_page(cursor)
            logger.warning(
                f"[SKIP] Skipping {len(page)} rows of unreadable page {page_no} "
                f"({page.first_key}..{page.last_key})"
            )
            self.run.stats.add_warning(
                f"Page {page_no} after={cursor.after!r} could not be read; {len(page)} rows skipped"
            )
            return page, True

        self.run.stats.pages_read += 1
        logger.info(f"[READ] Page {page_no}: {len(page)} rows ({page.first_key}..{page.last_key})")
        return page, False

    def _process(self, records: List[SourceRecord]):
        """Transform and write one page, then account for every source row."""
        stats = self.run.stats

        self.run.status = MigrationStatus.TRANSFORMING
        planned: List[Tuple[SourceRecord, List[DestinationRecord]]] = []
        for record in records:
            try:
                planned.append((record, self.transformer.transform(record)))
            except (ValidationError, RecordSkipped) as e:
                reason = skip_reason(e)
                logger.warning(f"[SKIP] {record.table} row {record.id}: {reason}")
                stats.record_skipped(record.id, reason)

        if not planned:
            return

        self.run.status = MigrationStatus.WRITING
        result = self.writer.write_batch([d for _, dests in planned for d in dests])
        stats.batches_written += result.chunks_written
        failures: Dict[int, str] = {id(f.record): f.reason for f in result.failed}

        primary = self.transformer.primary_table
        for record, dests in planned:
            hard_failure = None
            for dest in dests:
                reason = failures.get(id(dest))
                if reason is None:
                    continue
                if dest.best_effort:
                    message = f"{dest.table} {dest.key}={dest.natural_key!r} not written: {reason}"
                    logger.warning(f"[WRITE] {message}")
                    stats.add_warning(message)
                elif hard_failure is None:
                    hard_failure = (dest, reason)

            if hard_failure:
                dest, reason = hard_failure
                stats.record_errored(record.id, dest.natural_key, dest.table, reason)
                continue

            written = [d for d in dests if id(d) not in failures]
            stats.record_migrated(
                source_bytes=json_size(record.data),
                destination_bytes=sum(
                    json_size(d.data) for d in written if d.operation == WriteOperation.UPSERT
                ),
            )
            self._written_keys.update(d.natural_key for d in written if d.table == primary)

    # ------------------------------------------------------------------
    # Caps

    def _cap_reached(self, cursor: Cursor) -> bool:
        stats = self.run.stats
        if self.config.max_iterations and stats.iterations >= self.config.max_iterations:
            which = f"MAX_ITERATIONS={self.config.max_iterations}"
        elif self.config.max_rows and stats.total >= self.config.max_rows:
            which = f"MAX_ROWS={self.config.max_rows}"
        else:
            return False

        if self._source_exhausted(cursor):
            logger.info(f"[CAP] {which} reached as the source ran out; nothing left to read")
            return True
        self._cap_hit(which)
        return True

    def _source_exhausted(self, cursor: Cursor) -> bool:
        """A full last page leaves the reader undecided; look one row ahead."""
        try:
            return not self.reader.has_more(cursor)
        except PageReadError as e:
            logger.warning(f"[CAP] Could not tell whether rows remain after {cursor.after!r}: {e.cause}")
            return False

    def _apply_row_cap(self, records: List[SourceRecord]) -> List[SourceRecord]:
        if not self.config.max_rows:
            return records
        remaining = max(0, self.config.max_rows - self.run.stats.total)
        return records[:remaining]

    def _cap_hit(self, which: str):
        self.run.capped = True
        message = f"Reached {which} before the source was exhausted"
        if self.config.on_cap == "fail":
            logger.error(f"[CAP] {message}")
            raise IterationCapReached(message)
        logger.warning(f"[CAP] {message}; stopping. Rerun to continue.")
        self.run.stats.add_warning(message)

    # ------------------------------------------------------------------
    # VERIFYING

    def _verify(self):
        """Recount destination rows for the keys this run wrote or deleted."""
        self.run.status = MigrationStatus.VERIFYING
        table = self.transformer.primary_table
        key = self.transformer.destination_tables()[table]
        keys = sorted(self._written_keys, key=str)
        expected = 0 if self.job.operation == WriteOperation.DELETE else len(keys)

        actual = 0
        try:
            for i in range(0, len(keys), VERIFY_CHUNK_SIZE):
                chunk = keys[i:i + VERIFY_CHUNK_SIZE]
                actual += self.store.count(table, [Filter(key, "in", chunk)])
        except StoreError as e:
            message = f"Verification of {table} could not complete: {e}"
            logger.warning(f"[VERIFY] {message}")
            self.run.stats.add_warning(message)
            return

        self.run.verification = VerificationResult(table=table, expected=expected, actual=actual)
        if self.run.verification.matched:
            logger.info(f"[VERIFY] {table}: {actual}/{expected} as expected")
        else:
            message = f"{table}: expected {expected} rows for written keys, found {actual}"
            logger.warning(f"[VERIFY] Mismatch {message}")
            self.run.stats.add_warning(f"Verification mismatch: {message}")

    # ------------------------------------------------------------------
    # FAILED

    def _rollback(self):
        """Drop tables created by this run's setup step. Never raises."""
        if not self.run.created_tables:
            return

        logger.warning(f"[ROLLBACK] Dropping tables created by this run: {', '.join(self.run.created_tables)}")
        for table in reversed(self.run.created_tables):
            try:
                self.store.drop_table(table)
                self.run.rolled_back_tables.append(table)
                logger.info(f"[ROLLBACK] Dropped {table}")
            except StoreError as e:
                logger.error(f"[ROLLBACK] Failed to drop {table}: {e}")

    # ------------------------------------------------------------------

    def _log_progress(self):
        stats = self.run.stats
        scope = f"/{stats.expected_total}" if stats.expected_total is not None else ""
        logger.info(
            f"Progress: {stats.total}{scope} rows "
            f"(migrated={stats.migrated}, skipped={stats.skipped}, errored={stats.errored})"
        )

    def _log_summary(self):
        stats = self.run.stats
        logger.info(
            f"Finished {self.job.name} with status {self.run.status.value}: "
            f"{stats.migrated} migrated, {stats.skipped} skipped, {stats.errored} errored "
            f"in {stats.elapsed_seconds:.2f}s"
        )
