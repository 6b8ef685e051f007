"""Utility functions."""

import hashlib
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import numpy as np

from chatkb.core.constants import MAX_KEYWORDS, STOPWORDS

_TERM_RE = re.compile(r"[a-z0-9][a-z0-9_\-.]*[a-z0-9]|[a-z0-9]")


def normalize_url(url: str, base_url: Optional[str] = None) -> str:
    """Normalize and canonicalize URL.

    Lowercases scheme and host, strips the fragment, drops a trailing slash
    (the root path is kept) and sorts query parameters by key.
    """
    if base_url:
        url = urljoin(base_url, url)

    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = ""
    if parts.query:
        params = parse_qsl(parts.query, keep_blank_values=True)
        query = urlencode(sorted(params, key=lambda kv: kv[0]))

    return urlunsplit((scheme, netloc, path, query, ""))


def hostname_of(url: str) -> str:
    """Lowercased hostname of a URL, empty string when absent."""
    return (urlsplit(url).hostname or "").lower()


def compute_content_hash(content: str | bytes) -> str:
    """Compute SHA256 hash of content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def normalize_text(text: str) -> str:
    """Normalize whitespace in text."""
    # Replace multiple whitespace with single space
    text = re.sub(r"\s+", " ", text)
    # Remove leading/trailing whitespace
    return text.strip()


def normalize_question(question: str) -> str:
    """Trim and lowercase a question for hashing."""
    return question.strip().lower()


def question_hash(question: str) -> str:
    """Hash of the normalized question."""
    return compute_content_hash(normalize_question(question))


def tokenize(text: str) -> list[str]:
    """Lowercase terms with stopwords removed."""
    return [t for t in _TERM_RE.findall(text.lower()) if t not in STOPWORDS]


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Most frequent non-stopword terms of three or more characters."""
    counts = Counter(t for t in tokenize(text) if len(t) >= 3)
    return [term for term, _ in counts.most_common(limit)]


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors, 0.0 when either is empty or zero."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
