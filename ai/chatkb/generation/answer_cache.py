"""Answer cache with manual overrides.

Lookup order for a normalized question:

1. manual override by exact hash, then by embedding similarity
2. cached answer by exact hash, then by embedding similarity
3. miss

Semantic matches need a cosine similarity of at least the configured
threshold. Hit counters are updated in background tasks.
"""

import asyncio
import logging
from typing import Optional

from chatkb.core.config import settings
from chatkb.core.constants import LOOKUP_CACHE, LOOKUP_MISS, LOOKUP_OVERRIDE
from chatkb.core.logging import mask_pii
from chatkb.core.utils import normalize_question, question_hash
from chatkb.ingestion.models import AnswerCacheEntry, LookupResult, ManualOverride
from chatkb.vector.embeddings import EmbeddingProvider, embed_text
from chatkb.vector.store import KnowledgeStore

logger = logging.getLogger(__name__)


class AnswerCache:
    """Resolves questions against overrides and previously generated answers."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
        similarity_threshold: Optional[float] = None,
    ):
        self.store = store
        self.embedding_provider = embedding_provider
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else settings.cache_similarity_threshold
        )
        self._pending: set[asyncio.Task] = set()

    async def _embed(self, question: str) -> Optional[list[float]]:
        if self.embedding_provider is None:
            return None
        try:
            return await embed_text(self.embedding_provider, normalize_question(question))
        except Exception as e:
            logger.warning(f"Question embedding failed, semantic lookup skipped: {e}")
            return None

    def _in_background(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Cache hit bookkeeping failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for outstanding hit-count updates."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _override_hit(
        self, override: ManualOverride, qhash: str, similarity: float, embedding
    ) -> LookupResult:
        self._in_background(self.store.record_override_use(override.chatbot_id, override.question_hash))
        return LookupResult(
            source=LOOKUP_OVERRIDE,
            answer=override.manual_answer,
            suggested_questions=override.suggested_questions,
            similarity=similarity,
            matched_question=override.question,
            question_hash=qhash,
            embedding=embedding,
        )

    def _cache_hit(
        self, entry: AnswerCacheEntry, qhash: str, similarity: float, embedding
    ) -> LookupResult:
        self._in_background(self.store.record_cache_hit(entry.chatbot_id, entry.question_hash))
        return LookupResult(
            source=LOOKUP_CACHE,
            answer=entry.answer,
            suggested_questions=entry.suggested_questions,
            similarity=similarity,
            matched_question=entry.question,
            question_hash=qhash,
            embedding=embedding,
        )

    async def lookup(
        self,
        chatbot_id: str,
        question: str,
        embedding: Optional[list[float]] = None,
    ) -> LookupResult:
        """Resolve a question. The embedding is computed at most once, and only if needed."""
        qhash = question_hash(question)

        override = await self.store.get_override(chatbot_id, qhash)
        if override is not None:
            logger.info(f"Override exact hit for chatbot {chatbot_id}")
            return self._override_hit(override, qhash, 1.0, embedding)

        if embedding is None:
            embedding = await self._embed(question)

        if embedding is not None:
            nearest = await self.store.nearest_override(chatbot_id, embedding)
            if nearest is not None and nearest[1] >= self.similarity_threshold:
                override, score = nearest
                logger.info(f"Override semantic hit for chatbot {chatbot_id} (similarity {score:.3f})")
                return self._override_hit(override, qhash, score, embedding)

        entry = await self.store.get_cache_entry(chatbot_id, qhash)
        if entry is not None:
            logger.info(f"Cache exact hit for chatbot {chatbot_id}")
            return self._cache_hit(entry, qhash, 1.0, embedding)

        if embedding is not None:
            nearest = await self.store.nearest_cache_entry(chatbot_id, embedding)
            if nearest is not None and nearest[1] >= self.similarity_threshold:
                entry, score = nearest
                logger.info(f"Cache semantic hit for chatbot {chatbot_id} (similarity {score:.3f})")
                return self._cache_hit(entry, qhash, score, embedding)

        logger.info(f"Cache miss for chatbot {chatbot_id}: {mask_pii(question)[:80]!r}")
        return LookupResult(source=LOOKUP_MISS, question_hash=qhash, embedding=embedding)

    async def store_answer(
        self,
        chatbot_id: str,
        question: str,
        answer: str,
        suggested_questions: Optional[list[str]] = None,
        embedding: Optional[list[float]] = None,
    ) -> AnswerCacheEntry:
        """Cache a freshly generated answer, replacing any entry for the same question."""
        if embedding is None:
            embedding = await self._embed(question)
        entry = AnswerCacheEntry(
            chatbot_id=chatbot_id,
            question=normalize_question(question),
            question_hash=question_hash(question),
            embedding=embedding,
            answer=answer,
            suggested_questions=suggested_questions or [],
        )
        await self.store.put_cache_entry(entry)
        return entry

    async def add_override(
        self,
        chatbot_id: str,
        question: str,
        manual_answer: str,
        created_by: str,
        original_answer: Optional[str] = None,
        suggested_questions: Optional[list[str]] = None,
    ) -> ManualOverride:
        """Record a human-corrected answer for a question."""
        override = ManualOverride(
            chatbot_id=chatbot_id,
            question=normalize_question(question),
            question_hash=question_hash(question),
            embedding=await self._embed(question),
            manual_answer=manual_answer,
            original_answer=original_answer,
            suggested_questions=suggested_questions or [],
            created_by=created_by,
        )
        await self.store.put_override(override)
        logger.info(f"Override added for chatbot {chatbot_id} by {created_by}")
        return override

    async def delete_override(self, chatbot_id: str, qhash: str) -> bool:
        return await self.store.delete_override(chatbot_id, qhash)

    async def clear(self, chatbot_id: str) -> int:
        """Drop every cached answer for a chatbot. Overrides are kept."""
        removed = await self.store.clear_cache(chatbot_id)
        logger.info(f"Cleared {removed} cached answers for chatbot {chatbot_id}")
        return removed
