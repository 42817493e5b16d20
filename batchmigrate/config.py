"""Configuration for migration runs.

Values come from the environment (``.env.local`` / ``.env`` are loaded with
python-dotenv), an optional JSON config file, and CLI flags, in increasing
order of precedence.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dateutil.relativedelta import relativedelta
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models.email import parse_bool, parse_timestamp
from .stores.base import FILTER_OPERATORS, Filter

logger = logging.getLogger(__name__)

READ_ERROR_POLICIES = ("abort", "skip")
CAP_POLICIES = ("stop", "fail")
ENV_FILES = (".env.local", ".env")


def load_env_files(directory: Optional[str] = None) -> List[str]:
    """Load ``.env.local`` then ``.env`` without overriding real env vars."""
    base = Path(directory or os.getcwd())
    loaded = []
    for name in ENV_FILES:
        path = base / name
        if path.exists():
            load_dotenv(path, override=False)
            logger.debug(f"Loaded environment from {path}")
            loaded.append(str(path))
    return loaded


def parse_filter(text: str) -> Filter:
    """
    Parse a CLI filter.

    ``column=value`` is equality; ``column:op=value`` uses any PostgREST
    operator (``created_at:lt=2024-01-01``, ``id:in=a,b,c``,
    ``deleted_at:is=null``).
    """
    if "=" not in text:
        raise ConfigurationError(f"Filter must look like column=value or column:op=value, got {text!r}")
    left, value = text.split("=", 1)
    column, _, op = left.partition(":")
    op = op or "eq"
    if op not in FILTER_OPERATORS:
        raise ConfigurationError(f"Unsupported filter operator {op!r} in {text!r}")
    column = column.strip()
    if not column:
        raise ConfigurationError(f"Filter is missing a column: {text!r}")

    parsed: Any = value
    if op == "in":
        parsed = [v.strip() for v in value.split(",") if v.strip()]
    elif op == "is":
        lowered = value.strip().lower()
        parsed = {"null": None, "true": True, "false": False}.get(lowered, value)
    return Filter(column, op, parsed)


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass
class MigrationConfig:
    """Settings for one run of a migration job."""
    job: str = ""

    # Execution options
    dry_run: bool = False
    batch_size: int = 100  # Rows per read page
    write_batch_size: Optional[int] = None  # Records per write call
    max_iterations: Optional[int] = None  # Page cap
    max_rows: Optional[int] = None  # Row cap
    on_cap: str = "stop"
    on_read_error: str = "abort"
    batch_delay: float = 0.1  # Seconds between pages
    verify: bool = True

    # Scoping
    months_back: Optional[int] = None
    cutoff_date: Optional[datetime] = None
    table: Optional[str] = None  # For generic jobs
    key: Optional[str] = None
    filters: List[Filter] = field(default_factory=list)

    # Schema and output
    setup_sql: Optional[str] = None
    report_dir: Optional[str] = None

    @property
    def effective_write_batch_size(self) -> int:
        if self.write_batch_size:
            return self.write_batch_size
        return max(1, min(50, self.batch_size))

    def resolve_cutoff(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Explicit cutoff date wins, otherwise now minus ``months_back``."""
        if self.cutoff_date:
            return self.cutoff_date
        if self.months_back:
            now = now or datetime.now(timezone.utc)
            return now - relativedelta(months=self.months_back)
        return None

    def validate(self) -> List[str]:
        """
        Validate the configuration.

        Returns:
            List of problems (empty when the config is usable)
        """
        errors = []

        if not self.job:
            errors.append("Job name is required")
        if self.batch_size < 1:
            errors.append("BATCH_SIZE must be at least 1")
        if self.write_batch_size is not None and self.write_batch_size < 1:
            errors.append("WRITE_BATCH_SIZE must be at least 1")
        if self.max_iterations is not None and self.max_iterations < 1:
            errors.append("MAX_ITERATIONS must be at least 1")
        if self.max_rows is not None and self.max_rows < 1:
            errors.append("MAX_ROWS must be at least 1")
        if self.months_back is not None and self.months_back < 1:
            errors.append("MONTHS_BACK must be at least 1")
        if self.on_cap not in CAP_POLICIES:
            errors.append(f"ON_CAP must be one of {', '.join(CAP_POLICIES)}")
        if self.on_read_error not in READ_ERROR_POLICIES:
            errors.append(f"ON_READ_ERROR must be one of {', '.join(READ_ERROR_POLICIES)}")
        if self.batch_delay < 0:
            errors.append("BATCH_DELAY cannot be negative")
        if self.setup_sql and not Path(self.setup_sql).exists():
            errors.append(f"Setup SQL file not found: {self.setup_sql}")

        return errors

    def merged(self, overrides: Mapping[str, Any]) -> "MigrationConfig":
        """Copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for name, value in overrides.items():
            if name not in known:
                raise ConfigurationError(f"Unknown config option: {name}")
            if value is None:
                continue
            if name == "filters":
                data["filters"] = list(self.filters) + list(value)
            else:
                data[name] = value
        return MigrationConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "job": self.job,
            "dry_run": self.dry_run,
            "batch_size": self.batch_size,
            "write_batch_size": self.effective_write_batch_size,
            "max_iterations": self.max_iterations,
            "max_rows": self.max_rows,
            "on_cap": self.on_cap,
            "on_read_error": self.on_read_error,
            "batch_delay": self.batch_delay,
            "verify": self.verify,
            "months_back": self.months_back,
            "cutoff_date": self.cutoff_date.isoformat() if self.cutoff_date else None,
            "table": self.table,
            "key": self.key,
            "filters": [f.to_dict() for f in self.filters],
            "setup_sql": self.setup_sql,
            "report_dir": self.report_dir,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation (JSON config files)."""
        filters = []
        for item in data.get("filters", []):
            if isinstance(item, str):
                filters.append(parse_filter(item))
            elif isinstance(item, Mapping):
                filters.append(Filter(item["column"], item.get("op", "eq"), item.get("value")))
            else:
                raise ConfigurationError(f"Invalid filter entry: {item!r}")

        cutoff = data.get("cutoff_date")
        cutoff_date = parse_timestamp(cutoff) if cutoff else None
        if cutoff and cutoff_date is None:
            raise ConfigurationError(f"cutoff_date is not a valid date: {cutoff!r}")

        return cls(
            job=data.get("job", ""),
            dry_run=parse_bool(data.get("dry_run", False)),
            batch_size=_optional_int(data.get("batch_size", 100), "batch_size") or 100,
            write_batch_size=_optional_int(data.get("write_batch_size"), "write_batch_size"),
            max_iterations=_optional_int(data.get("max_iterations"), "max_iterations"),
            max_rows=_optional_int(data.get("max_rows"), "max_rows"),
            on_cap=data.get("on_cap", "stop"),
            on_read_error=data.get("on_read_error", "abort"),
            batch_delay=_float(data.get("batch_delay", 0.1), "batch_delay"),
            verify=parse_bool(data.get("verify", True)),
            months_back=_optional_int(data.get("months_back"), "months_back"),
            cutoff_date=cutoff_date,
            table=data.get("table"),
            key=data.get("key"),
            filters=filters,
            setup_sql=data.get("setup_sql"),
            report_dir=data.get("report_dir"),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "MigrationConfig":
        with open(path) as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MigrationConfig":
        """Read the documented environment variables."""
        return cls.from_dict(env_options(environ))


def env_options(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Config options set in the environment, keyed by field name."""
    env = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    mapping = {
        "DRY_RUN": "dry_run",
        "BATCH_SIZE": "batch_size",
        "WRITE_BATCH_SIZE": "write_batch_size",
        "MAX_ITERATIONS": "max_iterations",
        "MAX_ROWS": "max_rows",
        "ON_CAP": "on_cap",
        "ON_READ_ERROR": "on_read_error",
        "BATCH_DELAY": "batch_delay",
        "VERIFY": "verify",
        "MONTHS_BACK": "months_back",
        "CUTOFF_DATE": "cutoff_date",
        "SETUP_SQL": "setup_sql",
        "REPORT_DIR": "report_dir",
    }
    for env_name, option in mapping.items():
        value = env.get(env_name)
        if value not in (None, ""):
            data[option] = value

    return data


@dataclass
class StoreConfig:
    """Connection settings for the Supabase store."""
    url: Optional[str] = None
    api_key: Optional[str] = None
    schema: str = "public"
    timeout: float = 30.0
    max_retries: int = 3

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        env = os.environ if environ is None else environ
        return cls(
            url=env.get("SUPABASE_URL") or env.get("NEXT_PUBLIC_SUPABASE_URL"),
            api_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or env.get("SUPABASE_KEY"),
            schema=env.get("SUPABASE_SCHEMA", "public"),
            timeout=_float(env.get("SUPABASE_TIMEOUT", 30.0), "SUPABASE_TIMEOUT"),
            max_retries=_optional_int(env.get("SUPABASE_MAX_RETRIES", 3), "SUPABASE_MAX_RETRIES") or 0,
        )

    def validate(self) -> List[str]:
        errors = []
        if not self.url:
            errors.append("SUPABASE_URL (or NEXT_PUBLIC_SUPABASE_URL) is not set")
        if not self.api_key:
            errors.append("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is not set")
        return errors

    def create_store(self):
        """Build a SupabaseStore from these settings."""
        from .stores.supabase_store import SupabaseStore

        problems = self.validate()
        if problems:
            raise ConfigurationError("; ".join(problems))
        return SupabaseStore(
            url=self.url,
            api_key=self.api_key,
            schema=self.schema,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )
