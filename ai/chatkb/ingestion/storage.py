"""JSONL archive of crawled pages and produced chunks."""

import logging
from pathlib import Path

import orjson

from chatkb.core.utils import compute_content_hash, utcnow
from chatkb.ingestion.models import CrawlResult, KnowledgeChunk

logger = logging.getLogger(__name__)


class CrawlArchive:
    """Writes one JSONL file of pages and one of chunks per chatbot."""

    def __init__(self, base_dir: str = "data"):
        self.base_dir = Path(base_dir)
        self.pages_dir = self.base_dir / "pages"
        self.chunks_dir = self.base_dir / "chunks"

        for dir_path in [self.pages_dir, self.chunks_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def _path(self, directory: Path, chatbot_id: str) -> Path:
        safe_id = compute_content_hash(chatbot_id)[:16]
        return directory / f"{safe_id}.jsonl"

    def save_pages(self, chatbot_id: str, results: list[CrawlResult]) -> str:
        """Append crawl results to the chatbot's page log."""
        filepath = self._path(self.pages_dir, chatbot_id)
        crawled_at = utcnow().isoformat()

        with open(filepath, "ab") as f:
            for result in results:
                record = result.model_dump(mode="json")
                record["chatbot_id"] = chatbot_id
                record["crawled_at"] = crawled_at
                record["content_hash"] = compute_content_hash(result.content) if result.content else None
                f.write(orjson.dumps(record) + b"\n")

        logger.debug(f"Saved {len(results)} pages to {filepath}")
        return str(filepath)

    def save_chunks(self, chatbot_id: str, chunks: list[KnowledgeChunk]) -> str:
        """Append chunks, without embeddings, to the chatbot's chunk log."""
        filepath = self._path(self.chunks_dir, chatbot_id)

        with open(filepath, "ab") as f:
            for chunk in chunks:
                record = chunk.model_dump(mode="json", exclude={"embedding"})
                record["has_embedding"] = chunk.embedding is not None
                f.write(orjson.dumps(record) + b"\n")

        logger.debug(f"Saved {len(chunks)} chunks to {filepath}")
        return str(filepath)

    def load_pages(self, chatbot_id: str) -> list[dict]:
        """Read back the chatbot's page log."""
        filepath = self._path(self.pages_dir, chatbot_id)
        if not filepath.exists():
            return []

        with open(filepath, "rb") as f:
            return [orjson.loads(line) for line in f if line.strip()]
