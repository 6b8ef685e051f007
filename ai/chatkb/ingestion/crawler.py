"""Breadth-first recursive crawler with static/headless renderer selection."""

import asyncio
import logging
from collections import deque
from typing import Iterable, Optional
from urllib.parse import urlsplit

from chatkb.core.config import settings
from chatkb.core.constants import ERR_NO_CONTENT, NON_HTML_EXTENSIONS
from chatkb.core.errors import BrowserLaunchError, CrawlConfigError
from chatkb.core.utils import hostname_of, normalize_url
from chatkb.ingestion.models import CrawlMode, CrawlOptions, CrawlResult, CrawlTarget, RenderResult
from chatkb.ingestion.parse_html import extract_links
from chatkb.ingestion.renderers import HeadlessRenderer, PageRenderer, StaticRenderer
from chatkb.ingestion.url_safety import Resolver

logger = logging.getLogger(__name__)


def default_crawl_options(**overrides) -> CrawlOptions:
    """Crawl options seeded from settings."""
    values = {
        "max_depth": settings.crawl_max_depth,
        "max_pages": settings.crawl_max_pages,
        "max_js_pages": settings.crawl_max_js_pages,
        "js_escalation_min_chars": settings.js_escalation_min_chars,
        "delay_seconds": settings.crawl_delay_seconds,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return CrawlOptions(**values)


def looks_like_html(url: str) -> bool:
    """False for URLs whose path ends in a known non-HTML file extension."""
    path = urlsplit(url).path.lower()
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return True
    return "." + last.rsplit(".", 1)[-1] not in NON_HTML_EXTENSIONS


class RecursiveCrawler:
    """Crawls one or more seeds breadth-first, one page at a time.

    The crawler owns its renderers. The headless renderer is created lazily
    and closed when the run ends, however it ends.
    """

    def __init__(
        self,
        options: Optional[CrawlOptions] = None,
        static_renderer: Optional[PageRenderer] = None,
        headless_renderer: Optional[PageRenderer] = None,
        resolver: Optional[Resolver] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.options = options or default_crawl_options()
        self.resolver = resolver
        self.static_renderer = static_renderer or StaticRenderer(resolver=resolver)
        self._headless_renderer = headless_renderer
        self.cancel_event = cancel_event
        self.js_pages_used = 0
        self.headless_available = True
        self.cancelled = False

    @property
    def headless_renderer(self) -> PageRenderer:
        if self._headless_renderer is None:
            self._headless_renderer = HeadlessRenderer(resolver=self.resolver)
        return self._headless_renderer

    def _js_budget_left(self) -> bool:
        return self.headless_available and self.js_pages_used < self.options.max_js_pages

    async def _render_headless(self, url: str) -> Optional[RenderResult]:
        """Headless render, or None once the browser cannot be launched."""
        self.js_pages_used += 1
        try:
            return await self.headless_renderer.render(url)
        except BrowserLaunchError as e:
            logger.error(f"Headless rendering disabled for the rest of this crawl: {e}")
            self.headless_available = False
            return None

    async def _render(self, url: str) -> RenderResult:
        mode = self.options.mode

        if mode == CrawlMode.JAVASCRIPT and self._js_budget_left():
            result = await self._render_headless(url)
            if result is not None:
                return result

        static = await self.static_renderer.render(url)
        if mode != CrawlMode.AUTO or not self._should_escalate(static):
            return static

        logger.info(
            f"Escalating {url} to headless rendering "
            f"({len(static.text_content)} chars from static fetch)"
        )
        headless = await self._render_headless(url)
        if headless is None or headless.error:
            return static
        if len(headless.text_content) > len(static.text_content):
            return headless
        return static

    async def _render_page(self, url: str) -> RenderResult:
        """Render one page; unexpected exceptions become that page's error."""
        try:
            return await self._render(url)
        except Exception as e:
            logger.error(f"Unexpected error rendering {url}: {e}", exc_info=True)
            return RenderResult(error=str(e) or type(e).__name__)

    def _should_escalate(self, static: RenderResult) -> bool:
        if not self._js_budget_left():
            return False
        if static.error is None:
            return len(static.text_content) < self.options.js_escalation_min_chars
        return static.error == ERR_NO_CONTENT

    def _check_cancelled(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.cancelled = True
        return self.cancelled

    async def crawl(self, seed_url: str) -> list[CrawlResult]:
        """Crawl a single seed. Does not close renderers."""
        options = self.options
        seed = normalize_url(seed_url)
        seed_host = hostname_of(seed)

        queue: deque[CrawlTarget] = deque([CrawlTarget(url=seed, depth=0)])
        enqueued = {seed}
        visited: set[str] = set()
        results: list[CrawlResult] = []
        first = True

        while queue and len(results) < options.max_pages:
            if self._check_cancelled():
                logger.info(f"Crawl of {seed} cancelled after {len(results)} pages")
                break
            if not first and options.delay_seconds:
                await asyncio.sleep(options.delay_seconds)
            first = False

            target = queue.popleft()
            if target.url in visited or target.depth > options.max_depth:
                continue
            visited.add(target.url)

            if not looks_like_html(target.url):
                logger.debug(f"Skipping non-HTML URL: {target.url}")
                continue

            rendered = await self._render_page(target.url)
            results.append(CrawlResult.from_render(target.url, target.depth, rendered))

            if rendered.error:
                logger.info(f"Failed {target.url}: {rendered.error}")
                continue

            logger.info(
                f"Crawled {target.url} (depth {target.depth}, "
                f"{len(rendered.text_content)} chars, {rendered.rendered_with})"
            )

            if target.depth >= options.max_depth:
                continue

            base = rendered.final_url or target.url
            for link in extract_links(rendered.html, base):
                normalized = normalize_url(link)
                if normalized in enqueued:
                    continue
                if len(results) + len(queue) >= options.max_pages:
                    break
                if options.same_domain_only and hostname_of(normalized) != seed_host:
                    continue
                if not looks_like_html(normalized):
                    continue
                enqueued.add(normalized)
                queue.append(CrawlTarget(url=normalized, depth=target.depth + 1))

        return results

    async def crawl_many(self, seed_urls: Iterable[str]) -> list[CrawlResult]:
        """Crawl seeds in order, sharing renderers and the headless budget."""
        seeds = [u for u in seed_urls if u and u.strip()]
        if not seeds:
            raise CrawlConfigError("At least one seed URL is required")

        results: list[CrawlResult] = []
        try:
            for seed in seeds:
                if self._check_cancelled():
                    break
                results.extend(await self.crawl(seed))
        finally:
            await self.close()
        logger.info(
            f"Crawl finished: {len(results)} pages from {len(seeds)} seed(s), "
            f"{self.js_pages_used} headless render(s)"
        )
        return results

    async def close(self) -> None:
        """Close renderers owned by this crawl run."""
        try:
            if self._headless_renderer is not None:
                await self._headless_renderer.close()
        finally:
            await self.static_renderer.close()


async def crawl_websites(
    urls: Iterable[str],
    options: Optional[CrawlOptions] = None,
    cancel_event: Optional[asyncio.Event] = None,
    **kwargs,
) -> list[CrawlResult]:
    """Crawl several seeds in a single run."""
    crawler = RecursiveCrawler(options=options, cancel_event=cancel_event, **kwargs)
    return await crawler.crawl_many(urls)


async def crawl_website(
    url: str,
    options: Optional[CrawlOptions] = None,
    cancel_event: Optional[asyncio.Event] = None,
    **kwargs,
) -> list[CrawlResult]:
    """Crawl one seed URL recursively."""
    return await crawl_websites([url], options=options, cancel_event=cancel_event, **kwargs)
