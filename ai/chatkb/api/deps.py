"""FastAPI dependencies.

Services are built lazily on first use and shared by every request.
"""

import logging
from functools import lru_cache
from typing import Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from chatkb.core.config import settings
from chatkb.generation.answer_cache import AnswerCache
from chatkb.generation.llm import LLMProvider, get_llm_provider
from chatkb.generation.pipeline import AnswerPipeline
from chatkb.ingestion.jobs import JobStore
from chatkb.ingestion.pipeline import KnowledgeIngestor
from chatkb.vector.embeddings import EmbeddingProvider, get_embedding_provider
from chatkb.vector.qdrant_store import QdrantKnowledgeStore
from chatkb.vector.retriever import HybridRetriever
from chatkb.vector.store import InMemoryKnowledgeStore, KnowledgeStore

logger = logging.getLogger(__name__)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@lru_cache
def get_embedder() -> EmbeddingProvider:
    return get_embedding_provider()


@lru_cache
def get_store() -> KnowledgeStore:
    if settings.store_backend == "qdrant":
        return QdrantKnowledgeStore(vector_size=get_embedder().vector_size)
    return InMemoryKnowledgeStore()


@lru_cache
def get_llm() -> Optional[LLMProvider]:
    try:
        return get_llm_provider()
    except ValueError as e:
        logger.warning(f"Answer generation disabled: {e}")
        return None


@lru_cache
def get_answer_cache() -> AnswerCache:
    return AnswerCache(get_store(), get_embedder())


@lru_cache
def get_retriever() -> HybridRetriever:
    return HybridRetriever(get_store(), get_embedder())


@lru_cache
def get_answer_pipeline() -> AnswerPipeline:
    return AnswerPipeline(get_store(), get_answer_cache(), get_retriever(), get_llm())


@lru_cache
def get_ingestor() -> KnowledgeIngestor:
    return KnowledgeIngestor(get_store(), get_embedder())


@lru_cache
def get_job_store() -> JobStore:
    return JobStore()
