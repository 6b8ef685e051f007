"""Ingestion: crawl, detect changes, chunk, embed and store."""

import asyncio
import logging
from collections import defaultdict
from typing import Iterable, Optional

from chatkb.core.utils import compute_content_hash, utcnow
from chatkb.ingestion.chunker import chunk_content
from chatkb.ingestion.crawler import RecursiveCrawler
from chatkb.ingestion.models import (
    CrawlMetadata,
    CrawlOptions,
    CrawlResult,
    IngestionReport,
    KnowledgeChunk,
    SourceType,
)
from chatkb.ingestion.parse_document import parse_document
from chatkb.ingestion.storage import CrawlArchive
from chatkb.vector.embeddings import EmbeddingProvider, embed_texts
from chatkb.vector.store import KnowledgeStore

logger = logging.getLogger(__name__)


class KnowledgeIngestor:
    """Writes a tenant's knowledge chunks. One ingestion per tenant at a time."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_provider: Optional[EmbeddingProvider],
        archive: Optional[CrawlArchive] = None,
        crawler_factory=RecursiveCrawler,
    ):
        self.store = store
        self.embedding_provider = embedding_provider
        self.archive = archive
        self.crawler_factory = crawler_factory
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def tenant_lock(self, chatbot_id: str) -> asyncio.Lock:
        return self._locks[chatbot_id]

    async def chunk_and_embed(
        self,
        chatbot_id: str,
        text: str,
        source_url: str,
        source_title: str = "",
        source_type: SourceType = SourceType.WEBSITE,
    ) -> list[KnowledgeChunk]:
        """Chunk text and embed every chunk; failed embeddings leave the vector empty."""
        pieces = chunk_content(text, title=source_title or None)
        if not pieces:
            return []

        if self.embedding_provider is not None:
            vectors = await embed_texts(self.embedding_provider, [p.chunk_text for p in pieces])
        else:
            vectors = [None] * len(pieces)

        return [
            KnowledgeChunk(
                chatbot_id=chatbot_id,
                source_type=source_type,
                source_url=source_url,
                source_title=source_title,
                chunk_text=piece.chunk_text,
                chunk_index=piece.chunk_index,
                content_hash=piece.content_hash,
                embedding=vector,
                lexical_index=piece.lexical_index,
                metadata=piece.metadata,
            )
            for piece, vector in zip(pieces, vectors)
        ]

    async def _ingest_source(
        self,
        report: IngestionReport,
        text: str,
        source_url: str,
        source_title: str,
        source_type: SourceType,
        last_modified: Optional[str] = None,
        etag: Optional[str] = None,
    ) -> bool:
        """Replace one source's chunks if its content changed. Returns True on change."""
        chatbot_id = report.chatbot_id
        content_hash = compute_content_hash(text)

        previous = await self.store.get_crawl_metadata(chatbot_id, source_url)
        if previous is not None and previous.content_hash == content_hash:
            report.pages_unchanged += 1
            logger.debug(f"Unchanged, skipping: {source_url}")
            await self.store.upsert_crawl_metadata(
                previous.model_copy(
                    update={"last_crawled_at": utcnow(), "last_modified": last_modified, "etag": etag}
                )
            )
            return False

        chunks = await self.chunk_and_embed(chatbot_id, text, source_url, source_title, source_type)
        await self.store.replace_source_chunks(chatbot_id, source_url, chunks)
        await self.store.upsert_crawl_metadata(
            CrawlMetadata(
                chatbot_id=chatbot_id,
                url=source_url,
                content_hash=content_hash,
                last_modified=last_modified,
                etag=etag,
            )
        )
        if self.archive is not None:
            self.archive.save_chunks(chatbot_id, chunks)

        missing = sum(1 for c in chunks if c.embedding is None)
        report.pages_changed += 1
        report.chunks_created += len(chunks)
        report.chunks_without_embedding += missing
        logger.info(
            f"Stored {len(chunks)} chunks for {source_url}"
            + (f" ({missing} without embedding)" if missing else "")
        )
        return True

    async def _finish(self, report: IngestionReport, changed: bool) -> IngestionReport:
        if changed:
            await self.store.clear_cache(report.chatbot_id)
            report.cache_cleared = True
        return report

    async def ingest_crawl_results(
        self, chatbot_id: str, results: list[CrawlResult], report: Optional[IngestionReport] = None
    ) -> IngestionReport:
        """Store already-crawled pages. Caller must hold the tenant lock."""
        report = report or IngestionReport(chatbot_id=chatbot_id)
        changed = False
        for result in results:
            report.pages_crawled += 1
            if result.error or not result.content:
                report.errors.append({"url": result.url, "error": result.error or "No content"})
                continue
            changed |= await self._ingest_source(
                report,
                result.content,
                result.url,
                result.title or "",
                SourceType.WEBSITE,
                last_modified=result.last_modified,
                etag=result.etag,
            )
        return await self._finish(report, changed)

    async def ingest_websites(
        self,
        chatbot_id: str,
        urls: Iterable[str],
        options: Optional[CrawlOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IngestionReport:
        """Crawl seeds and store what changed. Waits if the tenant is already ingesting."""
        async with self.tenant_lock(chatbot_id):
            crawler = self.crawler_factory(options=options, cancel_event=cancel_event)
            results = await crawler.crawl_many(urls)
            if self.archive is not None:
                self.archive.save_pages(chatbot_id, results)

            report = IngestionReport(chatbot_id=chatbot_id, cancelled=crawler.cancelled)
            return await self.ingest_crawl_results(chatbot_id, results, report)

    async def ingest_website(
        self,
        chatbot_id: str,
        url: str,
        options: Optional[CrawlOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IngestionReport:
        return await self.ingest_websites(chatbot_id, [url], options, cancel_event)

    async def ingest_document(
        self, chatbot_id: str, filename: str, data: bytes, content_type: str = ""
    ) -> IngestionReport:
        """Decode and store an uploaded document."""
        async with self.tenant_lock(chatbot_id):
            report = IngestionReport(chatbot_id=chatbot_id, pages_crawled=1)
            parsed = await asyncio.to_thread(parse_document, data, filename, content_type)
            if not parsed.text.strip():
                report.errors.append({"url": filename, "error": "No text could be extracted"})
                return report

            source_url = f"document://{filename}"
            changed = await self._ingest_source(
                report, parsed.text, source_url, parsed.title, SourceType.DOCUMENT
            )
            return await self._finish(report, changed)
