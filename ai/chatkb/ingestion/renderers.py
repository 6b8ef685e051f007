"""Page renderers: plain HTTP fetch and headless Chromium."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urljoin

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from chatkb.core.config import settings
from chatkb.core.constants import (
    BLOCKED_RESOURCE_TYPES,
    CHROMIUM_ARGS,
    ERR_INSUFFICIENT_CONTENT,
    ERR_INVALID_URL,
    ERR_NETWORK,
    ERR_NO_CONTENT,
    ERR_REDIRECT_BLOCKED,
    ERR_TIMEOUT,
    ERR_TOO_MANY_REDIRECTS,
    HEADLESS_VIEWPORT,
    RENDERED_JAVASCRIPT,
    RENDERED_STATIC,
)
from chatkb.core.errors import BrowserLaunchError
from chatkb.ingestion.models import RenderResult
from chatkb.ingestion.parse_html import parse_page
from chatkb.ingestion.url_safety import Resolver, should_block_request, validate_url

logger = logging.getLogger(__name__)

NAVIGATION_RACE_MARKERS = (
    "Execution context was destroyed",
    "page is navigating",
    "Cannot find context with specified id",
)


class PageRenderer:
    """Base class for renderers. ``render`` never raises for per-URL failures."""

    rendered_with: str = RENDERED_STATIC

    async def render(self, url: str) -> RenderResult:
        raise NotImplementedError

    async def close(self) -> None:
        """Release any held resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _failure(self, error: str, **extra: Any) -> RenderResult:
        return RenderResult(error=error, rendered_with=self.rendered_with, **extra)


class StaticRenderer(PageRenderer):
    """Fetches HTML over HTTP without running JavaScript."""

    rendered_with = RENDERED_STATIC

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        max_html_chars: Optional[int] = None,
        max_content_chars: Optional[int] = None,
    ):
        self.resolver = resolver
        self.transport = transport
        self.user_agent = user_agent or settings.crawler_user_agent
        self.timeout = timeout if timeout is not None else settings.static_timeout_seconds
        self.max_redirects = (
            max_redirects if max_redirects is not None else settings.max_redirects
        )
        self.max_html_chars = max_html_chars or settings.max_html_chars
        self.max_content_chars = max_content_chars or settings.max_content_chars
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                },
                transport=self.transport,
            )
        return self._client

    async def render(self, url: str) -> RenderResult:
        """Validate, fetch with manually followed redirects, and extract text."""
        check = await validate_url(url, self.resolver)
        if not check.valid:
            return self._failure(check.error)

        client = self._get_client()
        current = url
        response = None

        for hop in range(self.max_redirects + 1):
            try:
                response = await client.get(current)
            except httpx.TimeoutException:
                logger.info(f"Timed out fetching {current}")
                return self._failure(ERR_TIMEOUT)
            except httpx.InvalidURL as e:
                logger.info(f"Invalid URL {current!r}: {e}")
                return self._failure(ERR_INVALID_URL)
            except httpx.HTTPError as e:
                logger.info(f"Network error fetching {current}: {e}")
                return self._failure(ERR_NETWORK.format(detail=str(e) or type(e).__name__))

            location = response.headers.get("location")
            if not (response.is_redirect and location):
                break

            if hop == self.max_redirects:
                logger.warning(f"Too many redirects starting at {url}")
                return self._failure(ERR_TOO_MANY_REDIRECTS)

            target = urljoin(current, location)
            check = await validate_url(target, self.resolver)
            if not check.valid:
                logger.warning(f"Redirect from {current} to {target} blocked: {check.error}")
                return self._failure(ERR_REDIRECT_BLOCKED.format(reason=check.error))
            current = target

        if not response.is_success:
            return self._failure(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                final_url=current,
            )

        html = response.text[: self.max_html_chars]
        try:
            parsed = await asyncio.to_thread(parse_page, html, self.max_content_chars)
        except Exception as e:
            logger.warning(f"Failed to parse HTML from {current}: {e}", exc_info=True)
            return self._failure(f"Parse error: {e}", final_url=current)

        result = RenderResult(
            html=html,
            text_content=parsed.text,
            title=parsed.title,
            rendered_with=self.rendered_with,
            final_url=current,
            status_code=response.status_code,
            last_modified=response.headers.get("last-modified"),
            etag=response.headers.get("etag"),
            error=None if parsed.text else ERR_NO_CONTENT,
        )
        logger.debug(f"Static render of {current}: {len(parsed.text)} chars")
        return result

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _is_navigation_race(exc: BaseException) -> bool:
    return isinstance(exc, PlaywrightError) and any(
        marker in str(exc) for marker in NAVIGATION_RACE_MARKERS
    )


class HeadlessRenderer(PageRenderer):
    """Renders pages in headless Chromium.

    One browser process is launched lazily and reused for every page the
    renderer handles; each page gets its own browser context. The process
    lives until ``close()``.
    """

    rendered_with = RENDERED_JAVASCRIPT

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        launcher: Optional[Callable[[], Awaitable[Any]]] = None,
        user_agent: Optional[str] = None,
        nav_timeout_ms: Optional[int] = None,
        settle_ms: Optional[int] = None,
        networkidle_ms: Optional[int] = None,
        min_chars: Optional[int] = None,
        max_content_chars: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_wait_max: float = 2.0,
    ):
        self.resolver = resolver
        self.launcher = launcher
        self.user_agent = user_agent or settings.crawler_user_agent
        self.nav_timeout_ms = nav_timeout_ms if nav_timeout_ms is not None else settings.headless_nav_timeout_ms
        self.settle_ms = settle_ms if settle_ms is not None else settings.headless_settle_ms
        self.networkidle_ms = (
            networkidle_ms if networkidle_ms is not None else settings.headless_networkidle_ms
        )
        self.min_chars = min_chars if min_chars is not None else settings.headless_min_chars
        self.max_content_chars = max_content_chars or settings.max_content_chars
        self.retry_attempts = retry_attempts or settings.headless_retry_attempts
        self.retry_wait_max = retry_wait_max
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def open(self) -> None:
        """Launch the browser if it is not running yet."""
        async with self._lock:
            if self._browser is not None:
                return
            try:
                if self.launcher is not None:
                    self._browser = await self.launcher()
                else:
                    self._playwright = await async_playwright().start()
                    self._browser = await self._playwright.chromium.launch(
                        headless=True, args=CHROMIUM_ARGS
                    )
            except Exception as e:
                logger.error(f"Failed to launch headless browser: {e}")
                await self._stop_playwright()
                raise BrowserLaunchError(str(e)) from e
            logger.info("Headless browser launched")

    async def _route(self, route) -> None:
        request = route.request
        if request.resource_type in BLOCKED_RESOURCE_TYPES or should_block_request(request.url):
            await route.abort()
        else:
            await route.continue_()

    async def _capture(self, page) -> tuple[str, str]:
        """Read HTML and title, retrying while the page is still navigating."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.25, max=self.retry_wait_max),
            retry=retry_if_exception(_is_navigation_race),
            reraise=True,
        ):
            with attempt:
                html = await page.content()
                title = await page.title()
        return html, title

    async def render(self, url: str) -> RenderResult:
        """Render one page. Raises only ``BrowserLaunchError``."""
        check = await validate_url(url, self.resolver)
        if not check.valid:
            return self._failure(check.error)

        await self.open()

        context = None
        try:
            context = await self._browser.new_context(
                user_agent=self.user_agent,
                viewport=HEADLESS_VIEWPORT,
            )
            page = await context.new_page()
            await page.route("**/*", self._route)

            response = None
            try:
                response = await page.goto(
                    url, timeout=self.nav_timeout_ms, wait_until="domcontentloaded"
                )
            except PlaywrightTimeoutError:
                logger.info(f"Navigation timed out for {url}, extracting partial content")

            if response is not None and response.status >= 400:
                return self._failure(
                    f"HTTP {response.status}: {response.status_text}",
                    status_code=response.status,
                )

            await page.wait_for_timeout(self.settle_ms)
            try:
                await page.wait_for_load_state("networkidle", timeout=self.networkidle_ms)
            except PlaywrightTimeoutError:
                logger.debug(f"Network never went idle on {url}")

            html, title = await self._capture(page)
            final_url = page.url
        except PlaywrightError as e:
            logger.warning(f"Headless render failed for {url}: {e}")
            return self._failure(str(e).splitlines()[0] if str(e) else type(e).__name__)
        finally:
            if context is not None:
                try:
                    await context.close()
                except PlaywrightError as e:
                    logger.debug(f"Error closing browser context for {url}: {e}")

        parsed = await asyncio.to_thread(parse_page, html, self.max_content_chars)
        error = None
        if len(parsed.text) <= self.min_chars:
            error = ERR_INSUFFICIENT_CONTENT.format(count=len(parsed.text))

        return RenderResult(
            html=html,
            text_content=parsed.text,
            title=parsed.title or title or "",
            error=error,
            rendered_with=self.rendered_with,
            final_url=final_url,
            status_code=response.status if response is not None else None,
        )

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def close(self) -> None:
        """Close the browser process."""
        async with self._lock:
            browser, self._browser = self._browser, None
            try:
                if browser is not None:
                    await browser.close()
                    logger.info("Headless browser closed")
            finally:
                await self._stop_playwright()
