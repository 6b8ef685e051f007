"""Ingestion CLI script."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from tqdm import tqdm

from chatkb.core.logging import setup_logging
from chatkb.ingestion.crawler import RecursiveCrawler, default_crawl_options
from chatkb.ingestion.models import CrawlMode, IngestionReport
from chatkb.ingestion.pipeline import KnowledgeIngestor
from chatkb.ingestion.storage import CrawlArchive
from chatkb.vector.embeddings import get_embedding_provider
from chatkb.vector.qdrant_store import QdrantKnowledgeStore
from chatkb.vector.store import InMemoryKnowledgeStore

setup_logging()
logger = logging.getLogger(__name__)

app = typer.Typer()


def _read_url_file(url_file: Optional[str]) -> list[str]:
    if not url_file:
        return []
    p = Path(url_file)
    if not p.exists():
        logger.warning(f"URL file not found: {url_file}")
        return []
    out: list[str] = []
    for line in p.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        out.append(line)
    return out


def _print_report(report: IngestionReport) -> None:
    typer.echo(
        f"Pages crawled: {report.pages_crawled}  changed: {report.pages_changed}  "
        f"unchanged: {report.pages_unchanged}  chunks: {report.chunks_created} "
        f"({report.chunks_without_embedding} without embedding)"
    )
    if report.cache_cleared:
        typer.echo("Answer cache cleared")
    for err in report.errors:
        typer.echo(f"  ! {err['url']}: {err['error']}")


@app.command()
def main(
    chatbot_id: str = typer.Option(..., "--chatbot-id", help="Tenant the knowledge belongs to"),
    url: list[str] = typer.Option([], "--url", help="Seed URL (repeatable)"),
    url_file: Optional[str] = typer.Option(None, "--url-file", help="File with one seed URL per line"),
    document: list[Path] = typer.Option([], "--document", help="PDF, HTML or text file to ingest"),
    max_depth: Optional[int] = typer.Option(None, "--max-depth"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages"),
    max_js_pages: Optional[int] = typer.Option(None, "--max-js-pages"),
    mode: CrawlMode = typer.Option(CrawlMode.AUTO, "--mode", case_sensitive=False),
    all_domains: bool = typer.Option(False, "--all-domains", help="Follow links to other hosts"),
    archive_dir: Optional[str] = typer.Option(None, "--archive-dir", help="Write JSONL page/chunk logs here"),
    qdrant: bool = typer.Option(False, "--qdrant", help="Store in Qdrant instead of memory"),
):
    """Crawl seed URLs and documents into a chatbot's knowledge base."""
    seeds = list(url) + _read_url_file(url_file)
    if not seeds and not document:
        typer.echo("Provide at least one --url, --url-file or --document", err=True)
        raise typer.Exit(code=2)

    provider = get_embedding_provider()
    store = QdrantKnowledgeStore(vector_size=provider.vector_size) if qdrant else InMemoryKnowledgeStore()
    archive = CrawlArchive(archive_dir) if archive_dir else None

    options = default_crawl_options(
        max_depth=max_depth,
        max_pages=max_pages,
        max_js_pages=max_js_pages,
        mode=mode,
        same_domain_only=not all_domains,
    )

    progress = tqdm(total=len(document) + (1 if seeds else 0), desc="Ingesting")

    async def run() -> list[IngestionReport]:
        ingestor = KnowledgeIngestor(store, provider, archive=archive, crawler_factory=RecursiveCrawler)
        reports = []
        try:
            if seeds:
                reports.append(await ingestor.ingest_websites(chatbot_id, seeds, options=options))
                progress.update(1)
            for path in document:
                reports.append(await ingestor.ingest_document(chatbot_id, path.name, path.read_bytes()))
                progress.update(1)
        finally:
            await store.close()
        return reports

    try:
        reports = asyncio.run(run())
    finally:
        progress.close()

    for report in reports:
        _print_report(report)
    logger.info(f"Ingestion complete for chatbot {chatbot_id}")


if __name__ == "__main__":
    app()
