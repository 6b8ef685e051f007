"""In-process tracking of background ingestion jobs."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from chatkb.core.config import settings
from chatkb.core.errors import JobNotFoundError
from chatkb.core.utils import utcnow
from chatkb.ingestion.models import IngestionReport

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.PARTIAL, JobStatus.FAILED, JobStatus.CANCELLED}


class IngestionJob(BaseModel):
    """State of one ingestion job."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: str
    chatbot_id: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    report: Optional[IngestionReport] = None
    error: Optional[str] = None
    cancel_event: asyncio.Event = Field(default_factory=asyncio.Event, exclude=True)

    def public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"cancel_event"})


JobRunner = Callable[[asyncio.Event], Awaitable[IngestionReport]]


class JobStore:
    """Job registry with cancellation and TTL expiry of finished jobs."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl = timedelta(seconds=ttl_seconds or settings.job_ttl_seconds)
        self._jobs: dict[str, IngestionJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, job_id: str) -> IngestionJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, chatbot_id: Optional[str] = None) -> list[IngestionJob]:
        jobs = self._jobs.values()
        if chatbot_id is not None:
            jobs = [j for j in jobs if j.chatbot_id == chatbot_id]
        return sorted(jobs, key=lambda j: j.created_at)

    def submit(self, chatbot_id: str, runner: JobRunner) -> IngestionJob:
        """Start ``runner`` in the background and return its job record."""
        job = IngestionJob(job_id=str(uuid.uuid4()), chatbot_id=chatbot_id)
        self._jobs[job.job_id] = job
        self._tasks[job.job_id] = asyncio.create_task(self._run(job, runner))
        logger.info(f"Submitted ingestion job {job.job_id} for chatbot {chatbot_id}")
        return job

    async def _run(self, job: IngestionJob, runner: JobRunner) -> None:
        self._update(job, JobStatus.PROCESSING)
        try:
            report = await runner(job.cancel_event)
        except asyncio.CancelledError:
            self._update(job, JobStatus.CANCELLED)
            raise
        except Exception as e:
            logger.error(f"Ingestion job {job.job_id} failed: {e}", exc_info=True)
            job.error = str(e)
            self._update(job, JobStatus.FAILED)
            return
        finally:
            self._tasks.pop(job.job_id, None)

        job.report = report
        if report.cancelled:
            status = JobStatus.CANCELLED
        elif report.errors and report.pages_crawled > len(report.errors):
            status = JobStatus.PARTIAL
        elif report.errors:
            status = JobStatus.FAILED
            job.error = "No pages could be ingested"
        else:
            status = JobStatus.COMPLETED
        self._update(job, status)

    def _update(self, job: IngestionJob, status: JobStatus) -> None:
        job.status = status
        job.updated_at = utcnow()
        logger.info(f"Ingestion job {job.job_id}: {status.value}")

    def cancel(self, job_id: str) -> IngestionJob:
        """Ask a job to stop after the page it is working on."""
        job = self.get(job_id)
        if job.status not in TERMINAL_STATUSES:
            job.cancel_event.set()
        return job

    async def wait(self, job_id: str) -> IngestionJob:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get(job_id)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Forget finished jobs older than the TTL."""
        now = now or utcnow()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in TERMINAL_STATUSES and now - job.updated_at > self.ttl
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info(f"Expired {len(expired)} ingestion job(s)")
        return len(expired)

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(
                self._sweep_forever(interval or settings.job_sweep_interval_seconds)
            )

    async def shutdown(self) -> None:
        """Stop the sweeper and cancel running jobs."""
        tasks = list(self._tasks.values())
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
