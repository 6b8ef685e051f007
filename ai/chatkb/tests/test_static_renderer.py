"""Tests for the plain HTTP renderer."""

import httpx
import pytest

from chatkb.core.constants import ERR_NO_CONTENT, ERR_TIMEOUT, ERR_TOO_MANY_REDIRECTS
from chatkb.ingestion.renderers import StaticRenderer

ARTICLE = (
    "<html><head><title>Pricing</title><style>.x{}</style></head><body>"
    "<nav>Home | Blog</nav><main><h1>Plans</h1><p>The starter plan costs ten dollars.</p>"
    "<script>track()</script></main></body></html>"
)


def make_renderer(handler, resolver, **kwargs) -> StaticRenderer:
    return StaticRenderer(resolver=resolver, transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_fetches_and_extracts_main_text(public_resolver):
    """Test that a plain page is fetched and reduced to main content."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            html=ARTICLE,
            headers={"etag": '"abc"', "last-modified": "Tue, 01 Oct 2024 10:00:00 GMT"},
        )

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("https://example.com/pricing")

    assert result.error is None
    assert result.rendered_with == "static"
    assert result.title == "Pricing"
    assert result.text_content == "Plans The starter plan costs ten dollars."
    assert "track()" not in result.text_content
    assert result.etag == '"abc"'
    assert result.last_modified == "Tue, 01 Oct 2024 10:00:00 GMT"
    assert result.final_url == "https://example.com/pricing"
    assert "ChatbotBuilder" in seen[0].headers["user-agent"]


@pytest.mark.asyncio
async def test_invalid_url_is_never_fetched(public_resolver):
    """Test that validation failures short-circuit before any request."""

    def handler(request):
        raise AssertionError("should not be called")

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("http://127.0.0.1/admin")

    assert result.error == "Localhost URLs are not allowed"
    assert result.text_content == ""


@pytest.mark.asyncio
async def test_follows_redirects_to_safe_targets(public_resolver):
    """Test that relative and absolute redirects are followed and validated."""

    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"location": "/new"})
        if request.url.path == "/new":
            return httpx.Response(302, headers={"location": "https://www.example.com/final"})
        return httpx.Response(200, html=ARTICLE)

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("https://example.com/old")

    assert result.error is None
    assert result.final_url == "https://www.example.com/final"
    assert "www.example.com" in public_resolver.calls


@pytest.mark.asyncio
async def test_redirect_to_internal_address_is_blocked(public_resolver):
    """Test that a redirect hop is validated like the original URL."""
    fetched = []

    def handler(request):
        fetched.append(str(request.url))
        return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data/"})

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("https://example.com/go")

    assert result.error == "Redirect blocked: Metadata endpoints are not allowed"
    assert fetched == ["https://example.com/go"]


@pytest.mark.asyncio
async def test_redirect_to_host_resolving_to_loopback_is_blocked(public_resolver):
    """Test that DNS-based checks also apply to redirect targets."""

    def handler(request):
        return httpx.Response(307, headers={"location": "https://internal.example.com/"})

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("https://example.com/")

    assert result.error == "Redirect blocked: Localhost URLs are not allowed"


@pytest.mark.asyncio
async def test_five_redirects_allowed_sixth_rejected(public_resolver):
    """Test the redirect hop limit."""
    fetched = []

    def endless(request):
        fetched.append(request.url.path)
        hop = int(request.url.path.strip("/r") or 0)
        return httpx.Response(302, headers={"location": f"/r{hop + 1}"})

    async with make_renderer(endless, public_resolver) as renderer:
        result = await renderer.render("https://example.com/r0")

    assert result.error == ERR_TOO_MANY_REDIRECTS
    assert len(fetched) == 6

    def five_then_ok(request):
        hop = int(request.url.path.strip("/r") or 0)
        if hop < 5:
            return httpx.Response(302, headers={"location": f"/r{hop + 1}"})
        return httpx.Response(200, html=ARTICLE)

    async with make_renderer(five_then_ok, public_resolver) as renderer:
        result = await renderer.render("https://example.com/r0")

    assert result.error is None
    assert result.final_url == "https://example.com/r5"


@pytest.mark.asyncio
async def test_http_error_status(public_resolver):
    """Test that non-2xx responses become an HTTP status error."""

    def handler(request):
        return httpx.Response(404, html="<html><body>missing</body></html>")

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("https://example.com/missing")

    assert result.error == "HTTP 404: Not Found"
    assert result.status_code == 404
    assert result.text_content == ""


@pytest.mark.asyncio
async def test_timeout_and_network_errors(public_resolver):
    """Test transport failures map to stable error strings."""

    def slow(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_renderer(slow, public_resolver) as renderer:
        timed_out = await renderer.render("https://example.com/")
    async with make_renderer(refused, public_resolver) as renderer:
        failed = await renderer.render("https://example.com/")

    assert timed_out.error == ERR_TIMEOUT
    assert failed.error == "Network error: connection refused"


@pytest.mark.asyncio
async def test_empty_page_reports_no_content(public_resolver):
    """Test that a script-only page yields the no-content error."""

    def handler(request):
        return httpx.Response(200, html="<html><body><div id='root'></div><script>boot()</script></body></html>")

    async with make_renderer(handler, public_resolver) as renderer:
        result = await renderer.render("https://example.com/app")

    assert result.error == ERR_NO_CONTENT
    assert result.text_content == ""


@pytest.mark.asyncio
async def test_content_is_truncated(public_resolver):
    """Test that extracted text respects the content cap."""
    body = "<html><body><main><p>" + ("word " * 500) + "</p></main></body></html>"

    def handler(request):
        return httpx.Response(200, html=body)

    async with make_renderer(handler, public_resolver, max_content_chars=120) as renderer:
        result = await renderer.render("https://example.com/long")

    assert result.error is None
    assert len(result.text_content) == 120
