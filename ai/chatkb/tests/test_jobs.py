"""Tests for the background job registry."""

import asyncio
from datetime import timedelta

import pytest

from chatkb.core.errors import JobNotFoundError
from chatkb.core.utils import utcnow
from chatkb.ingestion.jobs import JobStatus, JobStore
from chatkb.ingestion.models import IngestionReport


def report(**kwargs):
    return IngestionReport(chatbot_id="bot-1", **kwargs)


@pytest.mark.asyncio
async def test_completed_job():
    """Test the happy path from pending to completed."""
    jobs = JobStore(ttl_seconds=60)

    async def runner(cancel_event):
        return report(pages_crawled=3, pages_changed=3)

    job = jobs.submit("bot-1", runner)
    assert job.status in (JobStatus.PENDING, JobStatus.PROCESSING)

    finished = await jobs.wait(job.job_id)

    assert finished.status == JobStatus.COMPLETED
    assert finished.report.pages_changed == 3
    public = finished.public()
    assert public["status"] == "completed"
    assert "cancel_event" not in public


@pytest.mark.asyncio
async def test_partial_and_failed_outcomes():
    """Test status derived from per-page errors."""
    jobs = JobStore(ttl_seconds=60)

    async def some_errors(cancel_event):
        return report(pages_crawled=3, errors=[{"url": "https://example.com/x", "error": "HTTP 500: Internal Server Error"}])

    async def all_errors(cancel_event):
        return report(pages_crawled=1, errors=[{"url": "https://example.com/", "error": "Failed to resolve hostname"}])

    partial = await jobs.wait(jobs.submit("bot-1", some_errors).job_id)
    failed = await jobs.wait(jobs.submit("bot-1", all_errors).job_id)

    assert partial.status == JobStatus.PARTIAL
    assert failed.status == JobStatus.FAILED
    assert failed.error == "No pages could be ingested"


@pytest.mark.asyncio
async def test_runner_exception_fails_job():
    """Test that an exception inside the job is recorded, not raised."""
    jobs = JobStore(ttl_seconds=60)

    async def broken(cancel_event):
        raise RuntimeError("vector store unreachable")

    job = await jobs.wait(jobs.submit("bot-1", broken).job_id)

    assert job.status == JobStatus.FAILED
    assert job.error == "vector store unreachable"


@pytest.mark.asyncio
async def test_cancel_sets_event_and_status():
    """Test cooperative cancellation."""
    jobs = JobStore(ttl_seconds=60)
    started = asyncio.Event()

    async def runner(cancel_event):
        started.set()
        await cancel_event.wait()
        return report(pages_crawled=1, cancelled=True)

    job = jobs.submit("bot-1", runner)
    await started.wait()
    jobs.cancel(job.job_id)
    finished = await jobs.wait(job.job_id)

    assert finished.cancel_event.is_set()
    assert finished.status == JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_unknown_job():
    """Test lookups of missing jobs."""
    jobs = JobStore(ttl_seconds=60)

    with pytest.raises(JobNotFoundError):
        jobs.get("missing")
    with pytest.raises(KeyError):
        jobs.cancel("missing")


@pytest.mark.asyncio
async def test_sweep_expires_only_old_finished_jobs():
    """Test TTL expiry of finished jobs."""
    jobs = JobStore(ttl_seconds=60)
    blocker = asyncio.Event()

    async def quick(cancel_event):
        return report()

    async def slow(cancel_event):
        await blocker.wait()
        return report()

    done = await jobs.wait(jobs.submit("bot-1", quick).job_id)
    running = jobs.submit("bot-2", slow)
    await asyncio.sleep(0)

    assert jobs.sweep(now=utcnow()) == 0
    assert jobs.sweep(now=utcnow() + timedelta(seconds=61)) == 1
    assert [j.job_id for j in jobs.list_jobs()] == [running.job_id]
    with pytest.raises(JobNotFoundError):
        jobs.get(done.job_id)

    blocker.set()
    await jobs.wait(running.job_id)


@pytest.mark.asyncio
async def test_shutdown_cancels_running_jobs():
    """Test that shutdown stops the sweeper and in-flight jobs."""
    jobs = JobStore(ttl_seconds=60)
    jobs.start_sweeper(interval=3600)

    async def forever(cancel_event):
        await asyncio.sleep(3600)

    job = jobs.submit("bot-1", forever)
    await asyncio.sleep(0)
    await jobs.shutdown()

    assert jobs.get(job.job_id).status == JobStatus.CANCELLED
    assert jobs.list_jobs("bot-1")[0].job_id == job.job_id
