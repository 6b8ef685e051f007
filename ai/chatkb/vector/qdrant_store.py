"""Qdrant-backed knowledge store."""

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Optional

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from chatkb.core.config import settings
from chatkb.core.utils import utcnow
from chatkb.ingestion.models import AnswerCacheEntry, CrawlMetadata, KnowledgeChunk, ManualOverride
from chatkb.vector.store import KnowledgeStore

logger = logging.getLogger(__name__)

VECTOR_NAME = "embedding"


def get_client(url: Optional[str] = None, api_key: Optional[str] = None) -> QdrantClient:
    """Get Qdrant client instance."""
    url = url or settings.qdrant_url
    api_key = api_key or settings.qdrant_api_key or None

    if url == ":memory:":
        return QdrantClient(location=":memory:")
    return QdrantClient(url=url, api_key=api_key)


def ensure_collection(client: QdrantClient, collection: str, vector_size: int) -> None:
    """Ensure Qdrant collection exists with a named cosine vector."""
    if client.collection_exists(collection):
        logger.info(f"Collection {collection} already exists")
        return

    logger.info(f"Creating collection: {collection}")
    client.create_collection(
        collection_name=collection,
        vectors_config={VECTOR_NAME: VectorParams(size=vector_size, distance=Distance.COSINE)},
    )
    for field in ("chatbot_id", "source_url", "question_hash", "content_hash"):
        try:
            client.create_payload_index(collection, field, PayloadSchemaType.KEYWORD)
        except Exception as e:
            logger.debug(f"Payload index {field} on {collection} not created: {e}")
    logger.info(f"Collection {collection} created with vector size {vector_size}")


def point_id(*parts: str) -> str:
    """Deterministic UUID for a composite key."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, ":".join(parts)))


def _tenant_filter(chatbot_id: str, **extra: str) -> Filter:
    conditions = [FieldCondition(key="chatbot_id", match=MatchValue(value=chatbot_id))]
    for key, value in extra.items():
        conditions.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return Filter(must=conditions)


def _vector_of(point) -> Optional[list[float]]:
    vector = point.vector
    if isinstance(vector, dict):
        vector = vector.get(VECTOR_NAME)
    return list(vector) if vector else None


class QdrantKnowledgeStore(KnowledgeStore):
    """Stores every entity as points in four collections sharing one prefix."""

    def __init__(
        self,
        vector_size: int,
        client: Optional[QdrantClient] = None,
        prefix: Optional[str] = None,
    ):
        self.client = client or get_client()
        self.vector_size = vector_size
        prefix = prefix or settings.collection_prefix
        self.chunks_collection = f"{prefix}_chunks"
        self.cache_collection = f"{prefix}_answer_cache"
        self.overrides_collection = f"{prefix}_overrides"
        self.metadata_collection = f"{prefix}_crawl_metadata"
        self._counter_locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        for collection in (
            self.chunks_collection,
            self.cache_collection,
            self.overrides_collection,
            self.metadata_collection,
        ):
            ensure_collection(self.client, collection, vector_size)

    def _point(self, pid: str, payload: dict, embedding: Optional[list[float]]) -> PointStruct:
        vector = {VECTOR_NAME: embedding} if embedding else {}
        return PointStruct(id=pid, vector=vector, payload=payload)

    def _nearest(self, collection: str, chatbot_id: str, embedding: list[float]):
        response = self.client.query_points(
            collection_name=collection,
            query=embedding,
            using=VECTOR_NAME,
            query_filter=_tenant_filter(chatbot_id),
            limit=1,
            with_payload=True,
            with_vectors=[VECTOR_NAME],
        )
        points = response.points
        if not points:
            return None
        return points[0], float(points[0].score)

    def _get_one(self, collection: str, pid: str):
        points = self.client.retrieve(
            collection_name=collection, ids=[pid], with_payload=True, with_vectors=[VECTOR_NAME]
        )
        return points[0] if points else None

    # Knowledge chunks

    def _replace_source_chunks(self, chatbot_id, source_url, chunks):
        self._delete_source_chunks(chatbot_id, source_url)
        if not chunks:
            return
        points = [
            self._point(
                point_id(chatbot_id, chunk.content_hash),
                chunk.model_dump(mode="json", exclude={"embedding"}),
                chunk.embedding,
            )
            for chunk in chunks
        ]
        self.client.upsert(collection_name=self.chunks_collection, points=points)

    def _delete_source_chunks(self, chatbot_id, source_url) -> int:
        query_filter = _tenant_filter(chatbot_id, source_url=source_url)
        count = self.client.count(self.chunks_collection, count_filter=query_filter, exact=True).count
        if count:
            self.client.delete(
                collection_name=self.chunks_collection,
                points_selector=FilterSelector(filter=query_filter),
            )
        return count

    def _candidate_chunks(self, chatbot_id, query_embedding, query_terms, limit):
        found: dict[str, KnowledgeChunk] = {}

        if query_embedding:
            response = self.client.query_points(
                collection_name=self.chunks_collection,
                query=query_embedding,
                using=VECTOR_NAME,
                query_filter=_tenant_filter(chatbot_id),
                limit=limit,
                with_payload=True,
                with_vectors=[VECTOR_NAME],
            )
            for point in response.points:
                found[str(point.id)] = self._chunk_from_point(point)

        if query_terms:
            lexical_filter = Filter(
                must=[
                    FieldCondition(key="chatbot_id", match=MatchValue(value=chatbot_id)),
                    FieldCondition(key="lexical_index", match=MatchAny(any=query_terms)),
                ]
            )
            batch, _ = self.client.scroll(
                collection_name=self.chunks_collection,
                scroll_filter=lexical_filter,
                limit=limit,
                with_payload=True,
                with_vectors=[VECTOR_NAME],
            )
            for point in batch:
                found.setdefault(str(point.id), self._chunk_from_point(point))

        return list(found.values())

    @staticmethod
    def _chunk_from_point(point) -> KnowledgeChunk:
        return KnowledgeChunk.model_validate({**point.payload, "embedding": _vector_of(point)})

    async def replace_source_chunks(self, chatbot_id, source_url, chunks) -> None:
        await asyncio.to_thread(self._replace_source_chunks, chatbot_id, source_url, chunks)

    async def delete_source_chunks(self, chatbot_id, source_url) -> int:
        return await asyncio.to_thread(self._delete_source_chunks, chatbot_id, source_url)

    async def count_chunks(self, chatbot_id: str) -> int:
        result = await asyncio.to_thread(
            self.client.count,
            self.chunks_collection,
            count_filter=_tenant_filter(chatbot_id),
            exact=True,
        )
        return result.count

    async def candidate_chunks(self, chatbot_id, query_embedding, query_terms, limit):
        return await asyncio.to_thread(
            self._candidate_chunks, chatbot_id, query_embedding, query_terms, limit
        )

    async def sample_chunks(self, chatbot_id: str, limit: int) -> list[KnowledgeChunk]:
        batch, _ = await asyncio.to_thread(
            self.client.scroll,
            collection_name=self.chunks_collection,
            scroll_filter=_tenant_filter(chatbot_id),
            limit=limit,
            with_payload=True,
        )
        chunks = [self._chunk_from_point(point) for point in batch]
        return sorted(chunks, key=lambda c: (c.source_url, c.chunk_index))

    # Crawl metadata

    async def get_crawl_metadata(self, chatbot_id: str, url: str) -> Optional[CrawlMetadata]:
        point = await asyncio.to_thread(
            self._get_one, self.metadata_collection, point_id(chatbot_id, url)
        )
        return CrawlMetadata.model_validate(point.payload) if point else None

    async def upsert_crawl_metadata(self, metadata: CrawlMetadata) -> None:
        point = self._point(
            point_id(metadata.chatbot_id, metadata.url), metadata.model_dump(mode="json"), None
        )
        await asyncio.to_thread(
            self.client.upsert, collection_name=self.metadata_collection, points=[point]
        )

    # Answer cache

    async def get_cache_entry(self, chatbot_id, question_hash) -> Optional[AnswerCacheEntry]:
        point = await asyncio.to_thread(
            self._get_one, self.cache_collection, point_id(chatbot_id, question_hash)
        )
        if point is None:
            return None
        return AnswerCacheEntry.model_validate({**point.payload, "embedding": _vector_of(point)})

    async def nearest_cache_entry(self, chatbot_id, embedding):
        found = await asyncio.to_thread(self._nearest, self.cache_collection, chatbot_id, embedding)
        if found is None:
            return None
        point, score = found
        entry = AnswerCacheEntry.model_validate({**point.payload, "embedding": _vector_of(point)})
        return entry, score

    async def put_cache_entry(self, entry: AnswerCacheEntry) -> None:
        point = self._point(
            point_id(entry.chatbot_id, entry.question_hash),
            entry.model_dump(mode="json", exclude={"embedding"}),
            entry.embedding,
        )
        await asyncio.to_thread(self.client.upsert, collection_name=self.cache_collection, points=[point])

    async def record_cache_hit(self, chatbot_id: str, question_hash: str) -> None:
        pid = point_id(chatbot_id, question_hash)
        async with self._counter_locks[(self.cache_collection, pid)]:
            entry = await self.get_cache_entry(chatbot_id, question_hash)
            if entry is None:
                return
            await asyncio.to_thread(
                self.client.set_payload,
                collection_name=self.cache_collection,
                payload={"hit_count": entry.hit_count + 1, "last_used_at": utcnow().isoformat()},
                points=[pid],
            )

    async def clear_cache(self, chatbot_id: str) -> int:
        query_filter = _tenant_filter(chatbot_id)
        result = await asyncio.to_thread(
            self.client.count, self.cache_collection, count_filter=query_filter, exact=True
        )
        if result.count:
            await asyncio.to_thread(
                self.client.delete,
                collection_name=self.cache_collection,
                points_selector=FilterSelector(filter=query_filter),
            )
        return result.count

    # Manual overrides

    async def get_override(self, chatbot_id, question_hash) -> Optional[ManualOverride]:
        point = await asyncio.to_thread(
            self._get_one, self.overrides_collection, point_id(chatbot_id, question_hash)
        )
        if point is None:
            return None
        return ManualOverride.model_validate({**point.payload, "embedding": _vector_of(point)})

    async def nearest_override(self, chatbot_id, embedding):
        found = await asyncio.to_thread(
            self._nearest, self.overrides_collection, chatbot_id, embedding
        )
        if found is None:
            return None
        point, score = found
        override = ManualOverride.model_validate({**point.payload, "embedding": _vector_of(point)})
        return override, score

    async def put_override(self, override: ManualOverride) -> None:
        point = self._point(
            point_id(override.chatbot_id, override.question_hash),
            override.model_dump(mode="json", exclude={"embedding"}),
            override.embedding,
        )
        await asyncio.to_thread(
            self.client.upsert, collection_name=self.overrides_collection, points=[point]
        )

    async def delete_override(self, chatbot_id: str, question_hash: str) -> bool:
        existing = await self.get_override(chatbot_id, question_hash)
        if existing is None:
            return False
        await asyncio.to_thread(
            self.client.delete,
            collection_name=self.overrides_collection,
            points_selector=[point_id(chatbot_id, question_hash)],
        )
        return True

    async def record_override_use(self, chatbot_id: str, question_hash: str) -> None:
        pid = point_id(chatbot_id, question_hash)
        async with self._counter_locks[(self.overrides_collection, pid)]:
            override = await self.get_override(chatbot_id, question_hash)
            if override is None:
                return
            await asyncio.to_thread(
                self.client.set_payload,
                collection_name=self.overrides_collection,
                payload={"use_count": override.use_count + 1, "last_used_at": utcnow().isoformat()},
                points=[pid],
            )

    async def close(self) -> None:
        await asyncio.to_thread(self.client.close)
