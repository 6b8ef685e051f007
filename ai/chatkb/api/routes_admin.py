"""Admin API routes: ingestion jobs, overrides and cache management."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Header, status

from chatkb.api.deps import get_answer_cache, get_ingestor, get_job_store
from chatkb.core.errors import JobNotFoundError
from chatkb.core.schemas import IngestRequest, JobAccepted, OverrideRequest, OverrideResponse
from chatkb.core.security import verify_api_key
from chatkb.generation.answer_cache import AnswerCache
from chatkb.ingestion.crawler import default_crawl_options
from chatkb.ingestion.jobs import JobStore
from chatkb.ingestion.pipeline import KnowledgeIngestor

logger = logging.getLogger(__name__)
router = APIRouter()


async def require_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> str:
    return await verify_api_key(x_api_key)


@router.post("/ingest", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def trigger_ingest(
    payload: IngestRequest,
    _: str = Depends(require_api_key),
    ingestor: KnowledgeIngestor = Depends(get_ingestor),
    jobs: JobStore = Depends(get_job_store),
):
    """Start a background crawl-and-index job."""
    options = default_crawl_options(
        max_depth=payload.max_depth,
        max_pages=payload.max_pages,
        max_js_pages=payload.max_js_pages,
        same_domain_only=payload.same_domain_only,
        mode=payload.mode,
    )

    async def run(cancel_event):
        return await ingestor.ingest_websites(
            payload.chatbot_id, payload.urls, options=options, cancel_event=cancel_event
        )

    job = jobs.submit(payload.chatbot_id, run)
    logger.info(f"Ingest requested for {payload.chatbot_id}: {len(payload.urls)} seed(s), mode={options.mode.value}")
    return JobAccepted(job_id=job.job_id, status=job.status.value)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    _: str = Depends(require_api_key),
    jobs: JobStore = Depends(get_job_store),
):
    """Status and report of an ingestion job."""
    try:
        return jobs.get(job_id).public()
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    _: str = Depends(require_api_key),
    jobs: JobStore = Depends(get_job_store),
):
    """Stop a job after the page it is currently rendering."""
    try:
        job = jobs.cancel(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return {"job_id": job.job_id, "status": job.status.value, "cancel_requested": job.cancel_event.is_set()}


@router.post("/overrides", response_model=OverrideResponse, status_code=status.HTTP_201_CREATED)
async def add_override(
    payload: OverrideRequest,
    _: str = Depends(require_api_key),
    cache: AnswerCache = Depends(get_answer_cache),
):
    """Store a manual answer that takes priority over cached and generated ones."""
    try:
        override = await cache.add_override(
            payload.chatbot_id,
            payload.question,
            payload.manual_answer,
            created_by=payload.created_by,
            original_answer=payload.original_answer,
            suggested_questions=payload.suggested_questions,
        )
        return OverrideResponse(
            chatbot_id=override.chatbot_id,
            question=override.question,
            question_hash=override.question_hash,
            created_by=override.created_by,
        )
    except Exception as e:
        logger.error(f"Error adding override: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )


@router.delete("/overrides/{chatbot_id}/{question_hash}")
async def delete_override(
    chatbot_id: str,
    question_hash: str,
    _: str = Depends(require_api_key),
    cache: AnswerCache = Depends(get_answer_cache),
):
    """Remove a manual override."""
    if not await cache.delete_override(chatbot_id, question_hash):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Override not found")
    return {"deleted": True}


@router.delete("/cache/{chatbot_id}")
async def clear_cache(
    chatbot_id: str,
    _: str = Depends(require_api_key),
    cache: AnswerCache = Depends(get_answer_cache),
):
    """Drop every cached answer for a chatbot."""
    removed = await cache.clear(chatbot_id)
    return {"chatbot_id": chatbot_id, "removed": removed}
