"""Job listing and run execution endpoints."""

import logging
from datetime import timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..models import (
    JobListResponse,
    JobResponse,
    RunCreate,
    RunListResponse,
    RunResponse,
    RunStartedResponse,
)
from ..storage import RunEntry, run_storage
from ...config import MigrationConfig, StoreConfig, parse_filter
from ...errors import ConfigurationError
from ...orchestrator import MigrationDriver
from ...services.job_registry import JobRegistry
from ...stores.base import DataStore

logger = logging.getLogger(__name__)

router = APIRouter()
registry = JobRegistry()


def get_store() -> DataStore:
    """Store used by API runs; overridden in tests."""
    try:
        return StoreConfig.from_env().create_store()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=f"Data store not configured: {e}")


def _run_response(entry: RunEntry) -> RunResponse:
    return RunResponse(**entry.run.to_dict())


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs():
    """List registered jobs."""
    jobs = [JobResponse(**registry.get(name).to_dict()) for name in registry.list_jobs()]
    return JobListResponse(jobs=jobs, total=len(jobs))


@router.post("/{job_name}/runs", response_model=RunStartedResponse)
async def start_run(
    job_name: str,
    data: RunCreate,
    background_tasks: BackgroundTasks,
    store: DataStore = Depends(get_store),
):
    """Start a run in the background. Runs are dry runs unless asked otherwise."""
    if job_name not in registry:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_name}")
    job = registry.get(job_name)

    cutoff_date = data.cutoff_date
    if cutoff_date is not None and cutoff_date.tzinfo is None:
        cutoff_date = cutoff_date.replace(tzinfo=timezone.utc)

    try:
        config = MigrationConfig(
            job=job.name,
            dry_run=data.dry_run,
            batch_size=data.batch_size,
            write_batch_size=data.write_batch_size,
            max_iterations=data.max_iterations,
            max_rows=data.max_rows,
            on_cap=data.on_cap,
            on_read_error=data.on_read_error,
            batch_delay=data.batch_delay,
            verify=data.verify,
            months_back=data.months_back,
            cutoff_date=cutoff_date,
            table=data.table,
            key=data.key,
            filters=[parse_filter(f) for f in data.filters],
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    problems = config.validate() + job.validate(config)
    if problems:
        raise HTTPException(status_code=400, detail="; ".join(problems))

    entry = run_storage.create(job.name, config.dry_run)
    background_tasks.add_task(run_migration_task, entry, config, store)
    logger.info(f"Queued run {entry.run.id} of {job.name} (dry_run={config.dry_run})")

    return RunStartedResponse(status="started", run_id=entry.run.id)


@router.get("/runs", response_model=RunListResponse)
async def list_runs():
    """List runs started by this process."""
    runs = [_run_response(e) for e in run_storage.list_all()]
    return RunListResponse(runs=runs, total=len(runs))


@router.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(run_id: str):
    """Get a run with its live statistics."""
    entry = run_storage.get(run_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Run not found")
    return _run_response(entry)


@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str):
    """Ask a run to stop after its current page."""
    entry = run_storage.get(run_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Run not found")

    if entry.run.status.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot cancel run in status: {entry.run.status.value}"
        )

    entry.cancel_token.cancel("cancelled through the API")
    return {"status": "cancelling", "run_id": run_id}


def run_migration_task(entry: RunEntry, config: MigrationConfig, store: DataStore):
    """Background task; runs in the threadpool since the driver blocks."""
    driver = MigrationDriver(
        config,
        store,
        job=registry.get(config.job),
        cancel_token=entry.cancel_token,
    )
    driver.run_migration(run=entry.run)
