"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.migration import MigrationStatus


# Request Models
class RunCreate(BaseModel):
    dry_run: bool = True
    batch_size: int = 100
    write_batch_size: Optional[int] = None
    max_iterations: Optional[int] = None
    max_rows: Optional[int] = None
    on_cap: str = "stop"
    on_read_error: str = "abort"
    batch_delay: float = 0.1
    verify: bool = True
    months_back: Optional[int] = None
    cutoff_date: Optional[datetime] = None
    table: Optional[str] = None
    key: Optional[str] = None
    filters: List[str] = Field(default_factory=list)


# Response Models
class JobResponse(BaseModel):
    name: str
    description: str
    operation: str
    source_table: Optional[str] = None
    key: str
    cutoff: Optional[str] = None


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
    total: int


class RunStartedResponse(BaseModel):
    status: str
    run_id: str


class RunResponse(BaseModel):
    id: str
    job: str
    status: MigrationStatus
    dry_run: bool
    capped: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)
    stats: Dict[str, Any] = Field(default_factory=dict)
    created_tables: List[str] = Field(default_factory=list)
    rolled_back_tables: List[str] = Field(default_factory=list)
    verification: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    exit_code: int


class RunListResponse(BaseModel):
    runs: List[RunResponse]
    total: int
