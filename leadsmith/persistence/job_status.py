"""
Background Job Status Tracking
==============================

One JSON document per background run at ``<data_dir>/jobs/<job id>.json``,
polled by the dashboard/API layer.

State machine:
    pending -> running -> completed | failed | cancelled

- ``pending`` on submission
- ``running`` on the first progress update
- ``completed`` / ``failed`` stamp ``completedAt``
- ``cancelled`` is forced from outside and wins over a late complete/fail

Progress updates from the per-lead loop are unlocked last-writer-wins writes
(one producer per job). Terminal transitions take the file lock because they
race with external cancellation.
"""

import logging
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leadsmith.errors import PersistenceError
from leadsmith.utils.file_lock import locked
from leadsmith.utils.storage import FileStore, now_z, parse_z

logger = logging.getLogger(__name__)

JOBS_DIR = "jobs"

JobType = Literal["enrichment", "scraping"]
JobState = Literal["pending", "running", "completed", "failed", "cancelled"]

ACTIVE_STATES = ("pending", "running")
TERMINAL_STATES = ("completed", "failed", "cancelled")

_BASE36 = string.digits + string.ascii_lowercase


class JobProgress(BaseModel):
    current: int = 0
    total: int = 0
    percentage: int = 0


class Job(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    type: JobType
    status: JobState = "pending"
    progress: JobProgress = Field(default_factory=JobProgress)
    started_at: str = Field(default_factory=now_z, alias="startedAt")
    completed_at: Optional[str] = Field(None, alias="completedAt")
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def compute_percentage(current: int, total: int) -> int:
    """Whole percent, halves rounded up (12.5 -> 13)."""
    if total <= 0:
        return 0
    return (200 * current + total) // (2 * total)


def generate_id(job_type: str) -> str:
    """Unique job id: ``<type>-<epoch ms>-<7 random base36 chars>``."""
    suffix = "".join(random.choice(_BASE36) for _ in range(7))
    return f"{job_type}-{int(time.time() * 1000)}-{suffix}"


class JobTracker:
    """File-backed job records."""

    def __init__(self, store: Optional[FileStore] = None):
        self.store = store or FileStore()

    def _name(self, job_id: str) -> str:
        return f"{JOBS_DIR}/{job_id}.json"

    def _lock_target(self, job_id: str) -> str:
        return str(self.store.path(self._name(job_id)))

    # ------------------------------------------------------------------
    # Basic CRUD
    # ------------------------------------------------------------------

    def create(
        self,
        job_type: str,
        total: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        """Create and save a pending job."""
        job = Job(
            job_id=job_id or generate_id(job_type),
            type=job_type,
            progress=JobProgress(total=total),
            metadata=metadata or {},
        )
        self.save(job)
        return job

    def save(self, job: Job) -> None:
        self.store.write_json(self._name(job.job_id), job.to_dict())

    def get(self, job_id: str) -> Optional[Job]:
        """Load a job. None if missing or unreadable."""
        data = self.store.read_json(self._name(job_id))
        if not isinstance(data, dict):
            return None
        try:
            return Job.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Unreadable job record {job_id}: {e}")
            return None

    def _load_all(self) -> List[Job]:
        jobs = []
        for name in self.store.list(JOBS_DIR, suffix=".json"):
            job = self.get(name[: -len(".json")])
            if job is not None:
                jobs.append(job)
        return jobs

    def list_active(self) -> List[Job]:
        """Pending and running jobs, newest started first."""
        active = [j for j in self._load_all() if j.status in ACTIVE_STATES]
        active.sort(key=lambda j: j.started_at, reverse=True)
        return active

    def list_all(self, limit: int = 50) -> List[Job]:
        """All jobs, most recently modified first."""
        names = self.store.list(JOBS_DIR, suffix=".json")
        names.sort(key=lambda n: self.store.mtime(f"{JOBS_DIR}/{n}"), reverse=True)

        jobs = []
        for name in names:
            if len(jobs) >= limit:
                break
            job = self.get(name[: -len(".json")])
            if job is not None:
                jobs.append(job)
        return jobs

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_progress(self, job_id: str, current: int, total: int) -> Optional[Job]:
        """
        Record progress. Promotes pending -> running; ignored once terminal.

        Unlocked on purpose: called once per lead from the batch loop.
        """
        job = self.get(job_id)
        if job is None:
            logger.warning(f"Progress update for unknown job {job_id}")
            return None
        if job.is_terminal:
            return job

        total = max(int(total), 0)
        current = min(max(int(current), 0), total)
        job.progress = JobProgress(
            current=current, total=total, percentage=compute_percentage(current, total)
        )
        if job.status == "pending":
            job.status = "running"
        self.save(job)
        return job

    def complete(self, job_id: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[Job]:
        """Mark completed, merging ``metadata`` into the existing metadata."""
        with locked(self._lock_target(job_id)):
            job = self.get(job_id)
            if job is None:
                return None
            if job.status == "cancelled":
                logger.info(f"Job {job_id} was cancelled, not marking completed")
                return job

            job.status = "completed"
            job.completed_at = now_z()
            job.progress.current = job.progress.total
            job.progress.percentage = 100
            job.metadata.update(metadata or {})
            self.save(job)
        logger.info(f"Job {job_id} completed")
        return job

    def fail(self, job_id: str, error: str) -> Optional[Job]:
        with locked(self._lock_target(job_id)):
            job = self.get(job_id)
            if job is None:
                return None
            if job.status == "cancelled":
                return job

            job.status = "failed"
            job.completed_at = now_z()
            job.error = error
            self.save(job)
        logger.error(f"Job {job_id} failed: {error}")
        return job

    def cancel(self, job_id: str, reason: Optional[str] = None) -> Optional[Job]:
        """Force a non-terminal job into ``cancelled``."""
        with locked(self._lock_target(job_id)):
            job = self.get(job_id)
            if job is None:
                return None
            if job.is_terminal:
                return job

            job.status = "cancelled"
            job.completed_at = now_z()
            if reason:
                job.error = reason
            self.save(job)
        logger.info(f"Job {job_id} cancelled")
        return job

    def is_cancelled(self, job_id: str) -> bool:
        job = self.get(job_id)
        return job is not None and job.status == "cancelled"

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_old(self, days_to_keep: int = 30) -> Dict[str, int]:
        """
        Delete terminal jobs older than ``days_to_keep`` days.

        Corrupt or unreadable records are deleted too.

        Returns:
            {"deleted": n, "errors": n}
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        deleted = 0
        errors = 0

        for name in self.store.list(JOBS_DIR, suffix=".json"):
            path = f"{JOBS_DIR}/{name}"
            try:
                data = self.store.read_json(path)
                job = None
                if isinstance(data, dict):
                    try:
                        job = Job.model_validate(data)
                    except ValidationError:
                        job = None

                if job is None:
                    self.store.delete(path)
                    deleted += 1
                    continue

                if not job.is_terminal:
                    continue

                finished = parse_z(job.completed_at or job.started_at)
                if finished is None or finished < cutoff:
                    self.store.delete(path)
                    deleted += 1
            except (OSError, PersistenceError) as e:
                logger.warning(f"Failed to clean up job file {name}: {e}")
                errors += 1

        if deleted:
            logger.info(f"Cleaned up {deleted} old job records ({errors} errors)")
        return {"deleted": deleted, "errors": errors}
