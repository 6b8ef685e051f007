"""HTML parsing and extraction."""

import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from chatkb.core.constants import MAIN_CONTENT_SELECTORS, STRIP_TAGS
from chatkb.core.utils import normalize_text

logger = logging.getLogger(__name__)


@dataclass
class ParsedPage:
    """Title and readable text extracted from an HTML document."""

    title: str = ""
    text: str = ""
    headings: list[str] = field(default_factory=list)


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def extract_title(soup: BeautifulSoup) -> str:
    """Page title from <title>, falling back to the first <h1>."""
    title_tag = soup.find("title")
    if title_tag:
        title = normalize_text(title_tag.get_text())
        if title:
            return title
    h1 = soup.find("h1")
    if h1:
        return normalize_text(h1.get_text())
    return ""


def extract_headings(soup: BeautifulSoup) -> list[str]:
    """Text of h1-h3 headings in document order."""
    headings = []
    for tag in soup.find_all(["h1", "h2", "h3"]):
        text = normalize_text(tag.get_text())
        if text:
            headings.append(text)
    return headings


def extract_main_text(soup: BeautifulSoup) -> str:
    """Readable text of the main content container, else the body."""
    for tag in soup.find_all(STRIP_TAGS):
        tag.decompose()

    container = None
    for selector in MAIN_CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        container = soup.body or soup

    return normalize_text(container.get_text(" "))


def parse_page(html: str, max_chars: int) -> ParsedPage:
    """Extract title, headings and whitespace-collapsed text from HTML."""
    soup = make_soup(html)
    title = extract_title(soup)
    headings = extract_headings(soup)
    text = extract_main_text(soup)
    if len(text) > max_chars:
        text = text[:max_chars]
    return ParsedPage(title=title, text=text, headings=headings)


def extract_links(html: str, base_url: str) -> list[str]:
    """Absolute http(s) links from anchors, in document order, fragment-free."""
    soup = make_soup(html)
    links = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:", "data:")):
            continue
        try:
            absolute = urljoin(base_url, href)
            parts = urlsplit(absolute)
        except ValueError:
            logger.debug(f"Skipping malformed href {href!r} on {base_url}")
            continue
        if parts.scheme not in ("http", "https"):
            continue
        absolute = absolute.split("#", 1)[0]
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links
