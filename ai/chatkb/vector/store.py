"""Tenant-scoped persistence for chunks, crawl metadata, cached answers and overrides."""

import logging
from typing import Optional

from chatkb.core.utils import cosine_similarity, utcnow
from chatkb.ingestion.models import AnswerCacheEntry, CrawlMetadata, KnowledgeChunk, ManualOverride

logger = logging.getLogger(__name__)


class KnowledgeStore:
    """Storage interface used by ingestion, the answer cache and the retriever.

    Chunks are keyed by ``(chatbot_id, content_hash)``, cache entries and
    overrides by ``(chatbot_id, question_hash)``, crawl metadata by
    ``(chatbot_id, url)``.
    """

    # Knowledge chunks
    async def replace_source_chunks(
        self, chatbot_id: str, source_url: str, chunks: list[KnowledgeChunk]
    ) -> None:
        raise NotImplementedError

    async def delete_source_chunks(self, chatbot_id: str, source_url: str) -> int:
        raise NotImplementedError

    async def count_chunks(self, chatbot_id: str) -> int:
        raise NotImplementedError

    async def candidate_chunks(
        self,
        chatbot_id: str,
        query_embedding: Optional[list[float]],
        query_terms: list[str],
        limit: int,
    ) -> list[KnowledgeChunk]:
        """Chunks worth scoring for a query. Backends may return all of them."""
        raise NotImplementedError

    async def sample_chunks(self, chatbot_id: str, limit: int) -> list[KnowledgeChunk]:
        """Some of a tenant's chunks in source order, for raw-content fallback."""
        raise NotImplementedError

    # Crawl metadata
    async def get_crawl_metadata(self, chatbot_id: str, url: str) -> Optional[CrawlMetadata]:
        raise NotImplementedError

    async def upsert_crawl_metadata(self, metadata: CrawlMetadata) -> None:
        raise NotImplementedError

    # Answer cache
    async def get_cache_entry(self, chatbot_id: str, question_hash: str) -> Optional[AnswerCacheEntry]:
        raise NotImplementedError

    async def nearest_cache_entry(
        self, chatbot_id: str, embedding: list[float]
    ) -> Optional[tuple[AnswerCacheEntry, float]]:
        raise NotImplementedError

    async def put_cache_entry(self, entry: AnswerCacheEntry) -> None:
        raise NotImplementedError

    async def record_cache_hit(self, chatbot_id: str, question_hash: str) -> None:
        raise NotImplementedError

    async def clear_cache(self, chatbot_id: str) -> int:
        raise NotImplementedError

    # Manual overrides
    async def get_override(self, chatbot_id: str, question_hash: str) -> Optional[ManualOverride]:
        raise NotImplementedError

    async def nearest_override(
        self, chatbot_id: str, embedding: list[float]
    ) -> Optional[tuple[ManualOverride, float]]:
        raise NotImplementedError

    async def put_override(self, override: ManualOverride) -> None:
        raise NotImplementedError

    async def delete_override(self, chatbot_id: str, question_hash: str) -> bool:
        raise NotImplementedError

    async def record_override_use(self, chatbot_id: str, question_hash: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""


def _nearest(items, embedding: list[float]):
    best = None
    best_score = -1.0
    for item in items:
        if item.embedding is None:
            continue
        score = cosine_similarity(embedding, item.embedding)
        if score > best_score:
            best, best_score = item, score
    if best is None:
        return None
    return best, best_score


class InMemoryKnowledgeStore(KnowledgeStore):
    """Dict-backed store for development and tests."""

    def __init__(self):
        self.chunks: dict[str, dict[str, KnowledgeChunk]] = {}
        self.crawl_metadata: dict[tuple[str, str], CrawlMetadata] = {}
        self.cache: dict[str, dict[str, AnswerCacheEntry]] = {}
        self.overrides: dict[str, dict[str, ManualOverride]] = {}

    async def replace_source_chunks(
        self, chatbot_id: str, source_url: str, chunks: list[KnowledgeChunk]
    ) -> None:
        await self.delete_source_chunks(chatbot_id, source_url)
        tenant = self.chunks.setdefault(chatbot_id, {})
        for chunk in chunks:
            tenant[chunk.content_hash] = chunk

    async def delete_source_chunks(self, chatbot_id: str, source_url: str) -> int:
        tenant = self.chunks.get(chatbot_id, {})
        stale = [h for h, c in tenant.items() if c.source_url == source_url]
        for content_hash in stale:
            del tenant[content_hash]
        return len(stale)

    async def count_chunks(self, chatbot_id: str) -> int:
        return len(self.chunks.get(chatbot_id, {}))

    async def candidate_chunks(
        self,
        chatbot_id: str,
        query_embedding: Optional[list[float]],
        query_terms: list[str],
        limit: int,
    ) -> list[KnowledgeChunk]:
        return list(self.chunks.get(chatbot_id, {}).values())

    async def sample_chunks(self, chatbot_id: str, limit: int) -> list[KnowledgeChunk]:
        chunks = sorted(
            self.chunks.get(chatbot_id, {}).values(), key=lambda c: (c.source_url, c.chunk_index)
        )
        return chunks[:limit]

    async def get_crawl_metadata(self, chatbot_id: str, url: str) -> Optional[CrawlMetadata]:
        return self.crawl_metadata.get((chatbot_id, url))

    async def upsert_crawl_metadata(self, metadata: CrawlMetadata) -> None:
        self.crawl_metadata[(metadata.chatbot_id, metadata.url)] = metadata

    async def get_cache_entry(self, chatbot_id: str, question_hash: str) -> Optional[AnswerCacheEntry]:
        return self.cache.get(chatbot_id, {}).get(question_hash)

    async def nearest_cache_entry(
        self, chatbot_id: str, embedding: list[float]
    ) -> Optional[tuple[AnswerCacheEntry, float]]:
        return _nearest(self.cache.get(chatbot_id, {}).values(), embedding)

    async def put_cache_entry(self, entry: AnswerCacheEntry) -> None:
        self.cache.setdefault(entry.chatbot_id, {})[entry.question_hash] = entry

    async def record_cache_hit(self, chatbot_id: str, question_hash: str) -> None:
        entry = self.cache.get(chatbot_id, {}).get(question_hash)
        if entry is not None:
            entry.hit_count += 1
            entry.last_used_at = utcnow()

    async def clear_cache(self, chatbot_id: str) -> int:
        return len(self.cache.pop(chatbot_id, {}))

    async def get_override(self, chatbot_id: str, question_hash: str) -> Optional[ManualOverride]:
        return self.overrides.get(chatbot_id, {}).get(question_hash)

    async def nearest_override(
        self, chatbot_id: str, embedding: list[float]
    ) -> Optional[tuple[ManualOverride, float]]:
        return _nearest(self.overrides.get(chatbot_id, {}).values(), embedding)

    async def put_override(self, override: ManualOverride) -> None:
        self.overrides.setdefault(override.chatbot_id, {})[override.question_hash] = override

    async def delete_override(self, chatbot_id: str, question_hash: str) -> bool:
        return self.overrides.get(chatbot_id, {}).pop(question_hash, None) is not None

    async def record_override_use(self, chatbot_id: str, question_hash: str) -> None:
        override = self.overrides.get(chatbot_id, {}).get(question_hash)
        if override is not None:
            override.use_count += 1
            override.last_used_at = utcnow()
