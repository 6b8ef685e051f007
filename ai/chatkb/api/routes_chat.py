"""Answer and retrieval API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi.util import get_remote_address

from chatkb.api.deps import get_answer_pipeline, get_retriever, limiter
from chatkb.core.logging import mask_pii
from chatkb.core.schemas import AnswerRequest, AnswerResponse, RetrievedChunk, RetrieveRequest
from chatkb.generation.pipeline import AnswerPipeline
from chatkb.vector.retriever import HybridRetriever

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/answer", response_model=AnswerResponse)
@limiter.limit("30/minute")
async def answer(
    payload: AnswerRequest,
    request: Request,
    pipeline: AnswerPipeline = Depends(get_answer_pipeline),
):
    """Answer a question from overrides, the cache, or the knowledge base."""
    try:
        client_ip = get_remote_address(request)
        logger.info(f"Answer request from {client_ip} for {payload.chatbot_id}: {mask_pii(payload.question)}")

        history = [turn.model_dump() for turn in payload.history or []]
        result = await pipeline.answer(payload.chatbot_id, payload.question, history=history)
        response = AnswerResponse(**result)

        logger.info(f"Answer served from {response.source}, sources={len(response.sources)}")
        return response

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in answer endpoint: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )


@router.post("/retrieve", response_model=list[RetrievedChunk])
async def retrieve(
    payload: RetrieveRequest,
    retriever: HybridRetriever = Depends(get_retriever),
):
    """Rank a chatbot's knowledge chunks for a question."""
    try:
        scored = await retriever.retrieve(payload.chatbot_id, payload.question, top_k=payload.top_k)
        return [
            RetrievedChunk(
                source_url=item.chunk.source_url,
                source_title=item.chunk.source_title,
                chunk_index=item.chunk.chunk_index,
                chunk_text=item.chunk.chunk_text,
                score=item.score,
                semantic_score=item.semantic_score,
                lexical_score=item.lexical_score,
            )
            for item in scored
        ]

    except Exception as e:
        logger.error(f"Error in retrieve endpoint: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )
