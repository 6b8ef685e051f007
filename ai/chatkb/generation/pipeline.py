"""Question answering: cache lookup, hybrid retrieval, generation, cache store."""

import logging
from typing import Any, Optional

from chatkb.core.constants import LOOKUP_MISS, NO_KB_MSG
from chatkb.core.logging import mask_pii
from chatkb.core.prompts import build_messages, build_suggestions_messages, parse_suggestions
from chatkb.generation.answer_cache import AnswerCache
from chatkb.generation.llm import LLMProvider
from chatkb.vector.retriever import HybridRetriever, build_context
from chatkb.vector.store import KnowledgeStore

logger = logging.getLogger(__name__)

FALLBACK_SAMPLE_CHUNKS = 20


class AnswerPipeline:
    """Answers questions for a chatbot, serving repeats from the cache."""

    def __init__(
        self,
        store: KnowledgeStore,
        cache: AnswerCache,
        retriever: HybridRetriever,
        llm_provider: Optional[LLMProvider],
    ):
        self.store = store
        self.cache = cache
        self.retriever = retriever
        self.llm_provider = llm_provider

    async def _fallback_text(self, chatbot_id: str) -> str:
        chunks = await self.store.sample_chunks(chatbot_id, FALLBACK_SAMPLE_CHUNKS)
        return "\n\n".join(c.chunk_text for c in chunks)

    async def _suggest(self, question: str, answer: str) -> list[str]:
        try:
            text = await self.llm_provider.agenerate(
                build_suggestions_messages(question, answer), temperature=0.2, max_tokens=128
            )
        except Exception as e:
            logger.warning(f"Follow-up suggestion generation failed: {e}")
            return []
        return parse_suggestions(text)

    async def answer(
        self,
        chatbot_id: str,
        question: str,
        history: Optional[list[dict[str, str]]] = None,
    ) -> dict[str, Any]:
        """Answer a question; generated answers are cached for next time."""
        lookup = await self.cache.lookup(chatbot_id, question)
        if lookup.source != LOOKUP_MISS:
            return {
                "answer": lookup.answer,
                "source": lookup.source,
                "suggested_questions": lookup.suggested_questions,
                "similarity": lookup.similarity,
                "sources": [],
            }

        scored = await self.retriever.retrieve(chatbot_id, question, query_embedding=lookup.embedding)
        fallback = "" if scored else await self._fallback_text(chatbot_id)
        context = build_context(scored, fallback)

        if not context or self.llm_provider is None:
            logger.warning(f"No knowledge to answer for chatbot {chatbot_id}: {mask_pii(question)[:80]!r}")
            return {
                "answer": NO_KB_MSG,
                "source": "generated",
                "suggested_questions": [],
                "similarity": None,
                "sources": [],
            }

        answer = await self.llm_provider.agenerate(build_messages(context, question, history))
        suggestions = await self._suggest(question, answer)

        await self.cache.store_answer(
            chatbot_id, question, answer, suggestions, embedding=lookup.embedding
        )

        sources = [
            {
                "url": item.chunk.source_url,
                "title": item.chunk.source_title,
                "snippet": item.chunk.chunk_text[:300],
                "score": round(item.score, 4),
            }
            for item in scored
        ]
        return {
            "answer": answer,
            "source": "generated",
            "suggested_questions": suggestions,
            "similarity": None,
            "sources": sources,
        }
