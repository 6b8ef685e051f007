"""Hybrid semantic + lexical chunk retrieval."""

import logging
import math
from typing import Optional

from chatkb.core.config import settings
from chatkb.core.utils import cosine_similarity, normalize_text, tokenize
from chatkb.ingestion.models import KnowledgeChunk, ScoredChunk
from chatkb.vector.embeddings import EmbeddingProvider, embed_text
from chatkb.vector.store import KnowledgeStore

logger = logging.getLogger(__name__)

PHRASE_BONUS = 0.2


def compute_top_k(
    total_chunks: int,
    min_k: Optional[int] = None,
    max_k: Optional[int] = None,
    ratio: Optional[float] = None,
) -> int:
    """Number of chunks to return, scaled with the size of the knowledge base."""
    min_k = min_k if min_k is not None else settings.retrieval_min_k
    max_k = max_k if max_k is not None else settings.retrieval_max_k
    ratio = ratio if ratio is not None else settings.retrieval_k_ratio
    return min(max_k, max(min_k, math.ceil(total_chunks * ratio)))


def lexical_score(query: str, query_terms: list[str], chunk: KnowledgeChunk) -> float:
    """Share of distinct query terms present in the chunk, plus a phrase bonus."""
    terms = set(query_terms)
    if not terms:
        return 0.0
    chunk_terms = set(chunk.lexical_index) or set(tokenize(chunk.chunk_text))
    score = len(terms & chunk_terms) / len(terms)

    phrase = normalize_text(query).lower().strip(" ?!.")
    if len(terms) > 1 and phrase and phrase in chunk.chunk_text.lower():
        score += PHRASE_BONUS
    return min(score, 1.0)


class HybridRetriever:
    """Ranks a tenant's chunks by blended cosine and keyword scores."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
        semantic_weight: Optional[float] = None,
        lexical_weight: Optional[float] = None,
    ):
        self.store = store
        self.embedding_provider = embedding_provider
        self.semantic_weight = (
            semantic_weight if semantic_weight is not None else settings.semantic_weight
        )
        self.lexical_weight = lexical_weight if lexical_weight is not None else settings.lexical_weight

    async def _embed_query(self, question: str) -> Optional[list[float]]:
        if self.embedding_provider is None:
            return None
        try:
            return await embed_text(self.embedding_provider, question)
        except Exception as e:
            logger.warning(f"Query embedding failed, using lexical scores only: {e}")
            return None

    def score_chunk(
        self,
        question: str,
        query_terms: list[str],
        query_embedding: Optional[list[float]],
        chunk: KnowledgeChunk,
    ) -> ScoredChunk:
        semantic = 0.0
        if query_embedding is not None and chunk.embedding is not None:
            semantic = max(0.0, cosine_similarity(query_embedding, chunk.embedding))
        lexical = lexical_score(question, query_terms, chunk)
        return ScoredChunk(
            chunk=chunk,
            score=self.semantic_weight * semantic + self.lexical_weight * lexical,
            semantic_score=semantic,
            lexical_score=lexical,
        )

    async def retrieve(
        self,
        chatbot_id: str,
        question: str,
        query_embedding: Optional[list[float]] = None,
        top_k: Optional[int] = None,
    ) -> list[ScoredChunk]:
        """Top-K chunks for a question. Chunks without embeddings still compete lexically."""
        total = await self.store.count_chunks(chatbot_id)
        if total == 0:
            return []

        k = top_k or compute_top_k(total)
        if query_embedding is None:
            query_embedding = await self._embed_query(question)
        query_terms = sorted(set(tokenize(question)))

        candidates = await self.store.candidate_chunks(
            chatbot_id, query_embedding, query_terms, limit=max(k * 4, 100)
        )
        scored = [self.score_chunk(question, query_terms, query_embedding, c) for c in candidates]
        scored = [s for s in scored if s.score > 0]
        scored.sort(key=lambda s: (-s.score, s.chunk.source_url, s.chunk.chunk_index))

        logger.info(f"Retrieved {min(k, len(scored))} of {len(scored)} scored chunks (k={k})")
        return scored[:k]


def build_context(
    scored: list[ScoredChunk],
    fallback_text: str = "",
    max_fallback_chars: Optional[int] = None,
) -> str:
    """Grounding context for generation.

    Falls back to a bounded slice of raw content when retrieval found nothing.
    """
    if scored:
        parts = []
        for item in scored:
            chunk = item.chunk
            header = f"[Source: {chunk.source_title or chunk.source_url}]"
            parts.append(f"{header}\n{chunk.chunk_text}")
        return "\n\n---\n\n".join(parts)

    limit = max_fallback_chars or settings.fallback_context_chars
    if fallback_text:
        logger.info("No chunks retrieved, using raw content fallback")
    return fallback_text[:limit]
