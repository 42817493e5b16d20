"""In-memory registry of runs started through the API."""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models.migration import MigrationRun
from ..orchestrator import CancellationToken


@dataclass
class RunEntry:
    run: MigrationRun
    cancel_token: CancellationToken = field(default_factory=CancellationToken)


class RunStorage:
    """Runs are kept for the lifetime of the process, newest first."""

    def __init__(self):
        self._runs: Dict[str, RunEntry] = {}
        self._lock = threading.Lock()

    def create(self, job: str, dry_run: bool) -> RunEntry:
        entry = RunEntry(run=MigrationRun(job=job, dry_run=dry_run))
        with self._lock:
            self._runs[entry.run.id] = entry
        return entry

    def get(self, run_id: str) -> Optional[RunEntry]:
        with self._lock:
            return self._runs.get(run_id)

    def list_all(self) -> List[RunEntry]:
        with self._lock:
            entries = list(self._runs.values())
        return sorted(entries, key=lambda e: e.run.stats.started_at, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()


run_storage = RunStorage()
