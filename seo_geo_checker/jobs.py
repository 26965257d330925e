"""
Analysis job tickets: issuing jobs, reporting their status and the
store interface through which the external analysis worker updates them.
"""
import asyncio
import logging
import re
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from seo_geo_checker.analysis_config import ConfigStore
from seo_geo_checker.config import DEFAULT_ANALYSIS_CONFIG
from seo_geo_checker.models import (
    AnalysisJob, JobProgress, JobStatus, JobStatusResponse, StartAnalysisResponse
)

logger = logging.getLogger(__name__)

JOB_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
# Rough per-URL analysis time used for estimates
SECONDS_PER_URL = 10

# Receives a snapshot of the stored job and returns the field changes to write
Transition = Callable[[AnalysisJob], Dict[str, Any]]


class InvalidJobIdError(ValueError):
    """Raised when a string does not have the canonical UUID shape."""
    pass


class JobNotFoundError(LookupError):
    pass


class JobStateError(Exception):
    """Raised when a job cannot move to the requested state."""
    pass


class JobId:
    """
    Opaque analysis job identifier.

    Only constructible through ``new()`` or ``parse()``, so every instance
    holds a canonical lowercase UUID string.
    """
    __slots__ = ("_value",)

    def __init__(self, value: str, _token: object = None):
        if _token is not _CONSTRUCT:
            raise TypeError("Use JobId.new() or JobId.parse()")
        self._value = value

    @classmethod
    def new(cls) -> "JobId":
        return cls(str(uuid.uuid4()), _CONSTRUCT)

    @classmethod
    def parse(cls, text: Any) -> "JobId":
        if not isinstance(text, str) or not JOB_ID_PATTERN.match(text):
            raise InvalidJobIdError("Invalid job ID format")
        return cls(text.lower(), _CONSTRUCT)

    @property
    def value(self) -> str:
        return self._value

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"JobId('{self._value}')"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, JobId) and other._value == self._value

    def __hash__(self) -> int:
        return hash(self._value)


_CONSTRUCT = object()


def compute_progress(completed: int, total: int) -> JobProgress:
    """Build a progress record; percentage rounds half up."""
    completed = max(0, min(completed, total))
    percentage = (200 * completed + total) // (2 * total) if total else 0
    return JobProgress(completed=completed, total=total, percentage=percentage)


def merge_config(
    overrides: Optional[Dict[str, Any]], base: Optional[Dict[str, Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """Overlay a partial analysis config onto ``base`` (the defaults when omitted)."""
    base = base if base is not None else DEFAULT_ANALYSIS_CONFIG
    merged = {section: dict(values) for section, values in base.items()}
    for section, values in (overrides or {}).items():
        if section in merged and isinstance(values, dict):
            merged[section].update({k: v for k, v in values.items() if v is not None})
    return merged


class JobStore(ABC):
    """
    Storage interface for analysis jobs.

    Implementations must be safe to call from concurrent requests. ``get``
    returns a snapshot: mutating it does not change the stored job.
    ``transition`` reads, checks and writes a job as one atomic step.
    """

    @abstractmethod
    async def create(self, job: AnalysisJob) -> None: ...

    @abstractmethod
    async def get(self, job_id: JobId) -> Optional[AnalysisJob]: ...

    @abstractmethod
    async def transition(self, job_id: JobId, apply: Transition) -> AnalysisJob:
        """
        Apply ``apply`` to the current job and store the changes it returns.

        ``apply`` receives a snapshot and may raise to abort; nothing is
        written in that case.

        Raises:
            JobNotFoundError: No job with this id
        """

    @abstractmethod
    async def list_jobs(self) -> List[AnalysisJob]: ...

    @abstractmethod
    async def delete(self, job_id: JobId) -> bool: ...


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._jobs: Dict[JobId, AnalysisJob] = {}
        self.lock = asyncio.Lock()

    async def create(self, job: AnalysisJob) -> None:
        job_id = JobId.parse(job.job_id)
        async with self.lock:
            if job_id in self._jobs:
                raise JobStateError(f"Job {job_id} already exists")
            self._jobs[job_id] = job.model_copy(deep=True)

    async def get(self, job_id: JobId) -> Optional[AnalysisJob]:
        async with self.lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def transition(self, job_id: JobId, apply: Transition) -> AnalysisJob:
        async with self.lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(str(job_id))
            changes = apply(job.model_copy(deep=True))
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = job.model_copy(update=changes, deep=True)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def list_jobs(self) -> List[AnalysisJob]:
        async with self.lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    async def delete(self, job_id: JobId) -> bool:
        async with self.lock:
            return self._jobs.pop(job_id, None) is not None


class JobService:
    """
    Issues analysis jobs and reports on them.

    The analysis itself is performed elsewhere; a worker reports back through
    ``mark_running``, ``record_progress``, ``complete`` and ``fail``. Every
    state change is checked and written inside one ``JobStore.transition``.
    """

    def __init__(self, store: JobStore, config_store: Optional[ConfigStore] = None):
        self.store = store
        self.config_store = config_store

    async def start(self, urls: Sequence[str], config: Optional[Dict[str, Any]] = None) -> StartAnalysisResponse:
        if not urls:
            raise ValueError("At least one URL is required")

        base = await self.config_store.current() if self.config_store is not None else None
        job = AnalysisJob(
            job_id=JobId.new().value,
            status=JobStatus.PENDING,
            urls=list(urls),
            created_at=datetime.now(timezone.utc),
            config=merge_config(config, base),
        )
        await self.store.create(job)
        logger.info(f"Analysis job {job.job_id} created for {job.total} URL(s)")

        return StartAnalysisResponse(
            job_id=job.job_id,
            status=job.status,
            urls=job.urls,
            created_at=job.created_at,
            url_count=job.total,
            estimated_duration=job.total * SECONDS_PER_URL,
        )

    async def _load(self, job_id: str) -> AnalysisJob:
        # Parsing happens before any store access
        parsed = JobId.parse(job_id)
        job = await self.store.get(parsed)
        if job is None:
            raise JobNotFoundError(parsed.value)
        return job

    async def status(self, job_id: str) -> JobStatusResponse:
        job = await self._load(job_id)
        progress = compute_progress(job.completed, job.total)

        if job.status.is_terminal:
            remaining = None
        else:
            remaining = (progress.total - progress.completed) * SECONDS_PER_URL

        return JobStatusResponse(
            job_id=job.job_id,
            status=job.status,
            progress=progress,
            current_url=job.current_url,
            estimated_time_remaining=remaining,
            error=job.error,
        )

    async def results(self, job_id: str) -> Dict[str, Any]:
        job = await self._load(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobStateError(f"Analysis job is still {job.status.value}")

        scores = [r["overallScore"] for r in job.results if isinstance(r.get("overallScore"), (int, float))]
        return {
            "jobId": job.job_id,
            "results": job.results,
            "summary": {
                "totalUrls": len(job.results),
                "averageScore": round(sum(scores) / len(scores)) if scores else 0,
            },
        }

    async def cancel(self, job_id: str) -> AnalysisJob:
        def to_cancelled(job: AnalysisJob) -> Dict[str, Any]:
            if job.status.is_terminal:
                raise JobStateError(f"Analysis job is already {job.status.value}")
            return {"status": JobStatus.CANCELLED, "current_url": None}

        job = await self.store.transition(JobId.parse(job_id), to_cancelled)
        logger.info(f"Cancelled analysis job {job.job_id}")
        return job

    async def stats(self) -> Dict[str, Any]:
        jobs = await self.store.list_jobs()
        counts = Counter(job.status.value for job in jobs)
        return {
            "totalJobs": len(jobs),
            "byStatus": {status.value: counts.get(status.value, 0) for status in JobStatus},
            "activeJobs": counts.get(JobStatus.PENDING.value, 0) + counts.get(JobStatus.RUNNING.value, 0),
        }

    # --- Worker-facing updates ---

    async def mark_running(self, job_id: str) -> AnalysisJob:
        def to_running(job: AnalysisJob) -> Dict[str, Any]:
            if job.status != JobStatus.PENDING:
                raise JobStateError(f"Cannot start a job that is {job.status.value}")
            return {"status": JobStatus.RUNNING}

        return await self.store.transition(JobId.parse(job_id), to_running)

    async def record_progress(self, job_id: str, completed: int, current_url: Optional[str] = None) -> AnalysisJob:
        def to_progress(job: AnalysisJob) -> Dict[str, Any]:
            if job.status.is_terminal:
                raise JobStateError(f"Cannot update a job that is {job.status.value}")
            if completed < job.completed or completed > job.total:
                raise ValueError(f"completed must be between {job.completed} and {job.total}")
            return {"status": JobStatus.RUNNING, "completed": completed, "current_url": current_url}

        return await self.store.transition(JobId.parse(job_id), to_progress)

    async def complete(self, job_id: str, results: List[Dict[str, Any]]) -> AnalysisJob:
        def to_completed(job: AnalysisJob) -> Dict[str, Any]:
            if job.status.is_terminal:
                raise JobStateError(f"Cannot complete a job that is {job.status.value}")
            return {
                "status": JobStatus.COMPLETED,
                "completed": job.total,
                "current_url": None,
                "results": results,
            }

        return await self.store.transition(JobId.parse(job_id), to_completed)

    async def fail(self, job_id: str, error: str) -> AnalysisJob:
        def to_failed(job: AnalysisJob) -> Dict[str, Any]:
            if job.status.is_terminal:
                raise JobStateError(f"Cannot fail a job that is {job.status.value}")
            return {"status": JobStatus.FAILED, "current_url": None, "error": error}

        job = await self.store.transition(JobId.parse(job_id), to_failed)
        logger.warning(f"Analysis job {job.job_id} failed: {error}")
        return job

    async def cleanup_old_jobs(self, max_age: timedelta = timedelta(hours=24)) -> int:
        """Delete terminal jobs older than ``max_age``; returns how many were removed."""
        cutoff = datetime.now(timezone.utc) - max_age
        removed = 0
        for job in await self.store.list_jobs():
            if job.status.is_terminal and (job.updated_at or job.created_at) < cutoff:
                if await self.store.delete(JobId.parse(job.job_id)):
                    removed += 1
        if removed:
            logger.info(f"Removed {removed} old analysis job(s)")
        return removed
