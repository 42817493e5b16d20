"""Registry of migration jobs the CLI and API can run."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..config import MigrationConfig
from ..errors import ConfigurationError
from ..models.record import WriteOperation
from ..readers.table_reader import TablePagedReader
from ..stores.base import DataStore, Filter
from .transformer import DeleteKeyTransformer, EmailIndexTransformer, RowTransformer

logger = logging.getLogger(__name__)

TransformerFactory = Callable[["MigrationJob", MigrationConfig, datetime], RowTransformer]


@dataclass
class MigrationJob:
    """
    A named source table + transformer pairing.

    ``source_table`` may be left empty for generic jobs, in which case the
    table comes from the run configuration.
    """
    name: str
    description: str
    transformer_factory: TransformerFactory
    operation: WriteOperation = WriteOperation.UPSERT
    source_table: Optional[str] = None
    key: str = "id"
    columns: Optional[List[str]] = None
    cutoff_column: Optional[str] = "created_at"
    cutoff_op: str = "gte"  # Keep rows on this side of the cutoff
    filters: List[Filter] = field(default_factory=list)

    def table_for(self, config: MigrationConfig) -> str:
        table = config.table or self.source_table
        if not table:
            raise ConfigurationError(f"Job {self.name} needs a table (--table)")
        return table

    def key_for(self, config: MigrationConfig) -> str:
        return config.key or self.key

    def validate(self, config: MigrationConfig) -> List[str]:
        """Job-specific configuration problems."""
        errors = []
        if not (config.table or self.source_table):
            errors.append(f"Job {self.name} needs a table (--table)")
        if config.table and self.source_table and config.table != self.source_table:
            errors.append(f"Job {self.name} always reads {self.source_table}")
        return errors

    def build_filters(self, config: MigrationConfig, cutoff: Optional[datetime]) -> List[Filter]:
        """Static job filters, the cutoff condition, then user filters."""
        filters = list(self.filters)
        if cutoff is not None and self.cutoff_column:
            filters.append(Filter(self.cutoff_column, self.cutoff_op, cutoff.isoformat()))
        filters.extend(config.filters)
        return filters

    def create_reader(
        self,
        store: DataStore,
        config: MigrationConfig,
        cutoff: Optional[datetime] = None
    ) -> TablePagedReader:
        return TablePagedReader(
            store,
            table=self.table_for(config),
            key=self.key_for(config),
            page_size=config.batch_size,
            filters=self.build_filters(config, cutoff),
            columns=self.columns,
        )

    def create_transformer(self, config: MigrationConfig, now: datetime) -> RowTransformer:
        return self.transformer_factory(self, config, now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "operation": self.operation.value,
            "source_table": self.source_table,
            "key": self.key,
            "cutoff": f"{self.cutoff_column} {self.cutoff_op} <cutoff>" if self.cutoff_column else None,
        }


def _email_index_transformer(job: MigrationJob, config: MigrationConfig, now: datetime) -> RowTransformer:
    return EmailIndexTransformer(as_of=now)


def _delete_transformer(job: MigrationJob, config: MigrationConfig, now: datetime) -> RowTransformer:
    return DeleteKeyTransformer(job.table_for(config), job.key_for(config))


class JobRegistry:
    """
    Registry for migration jobs.

    Comes with the built-in jobs unless ``include_builtin`` is False; more
    can be registered programmatically.
    """

    def __init__(self, include_builtin: bool = True):
        self.jobs: Dict[str, MigrationJob] = {}
        if include_builtin:
            for job in builtin_jobs():
                self.register(job)

    def register(self, job: MigrationJob) -> None:
        if job.name in self.jobs:
            logger.warning(f"Replacing registered job: {job.name}")
        self.jobs[job.name] = job
        logger.debug(f"Registered job: {job.name}")

    def get(self, name: str) -> MigrationJob:
        """
        Look up a job by name.

        Raises:
            ConfigurationError: if no job has that name
        """
        job = self.jobs.get(name)
        if job is None:
            known = ", ".join(sorted(self.jobs)) or "none"
            raise ConfigurationError(f"Unknown job: {name} (available: {known})")
        return job

    def list_jobs(self) -> List[str]:
        return sorted(self.jobs)

    def __contains__(self, name: str) -> bool:
        return name in self.jobs


def builtin_jobs() -> List[MigrationJob]:
    return [
        MigrationJob(
            name="optimize-emails",
            description="Copy email metadata into email_index and cache content of important messages",
            transformer_factory=_email_index_transformer,
            source_table="emails",
            cutoff_op="gte",
        ),
        MigrationJob(
            name="purge-emails",
            description="Delete emails older than the cutoff (all emails when no cutoff is set)",
            transformer_factory=_delete_transformer,
            operation=WriteOperation.DELETE,
            source_table="emails",
            columns=["id"],
            cutoff_op="lt",
        ),
        MigrationJob(
            name="purge-table",
            description="Delete rows of any table matching --filter conditions",
            transformer_factory=_delete_transformer,
            operation=WriteOperation.DELETE,
            cutoff_op="lt",
        ),
    ]
