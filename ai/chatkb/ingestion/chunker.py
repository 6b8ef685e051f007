"""Paragraph-aware text chunking with overlap and quality filtering."""

import logging
import re
from typing import Optional

from chatkb.core.config import settings
from chatkb.core.constants import (
    FORM_CHUNK_MAX_CHARS,
    FORM_INDICATORS,
    MIN_FORM_INDICATORS,
    MIN_UNIQUE_WORD_RATIO,
)
from chatkb.core.utils import compute_content_hash, extract_keywords, normalize_text, tokenize
from chatkb.ingestion.models import ContentChunk

logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"\n\s*\n+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_HEADING_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)


def chunk_hash(text: str) -> str:
    """Content hash of a chunk, insensitive to whitespace differences."""
    return compute_content_hash(normalize_text(text))


def split_paragraph(paragraph: str, max_chunk: int, overlap: int) -> list[str]:
    """Break an oversized paragraph into sentences, else fixed windows."""
    sentences = [s.strip() for s in _SENTENCE_RE.split(paragraph) if s.strip()]
    if len(sentences) > 1:
        pieces = []
        for sentence in sentences:
            if len(sentence) > max_chunk:
                pieces.extend(split_paragraph_by_chars(sentence, max_chunk, overlap))
            else:
                pieces.append(sentence)
        return pieces
    return split_paragraph_by_chars(paragraph, max_chunk, overlap)


def split_paragraph_by_chars(text: str, max_chunk: int, overlap: int) -> list[str]:
    step = max(max_chunk - overlap, 1)
    pieces = []
    for start in range(0, len(text), step):
        piece = text[start : start + max_chunk].strip()
        if piece:
            pieces.append(piece)
        if start + max_chunk >= len(text):
            break
    return pieces


def is_low_quality(text: str) -> bool:
    """Form boilerplate or highly repetitive text."""
    lowered = text.lower()
    indicator_count = sum(1 for indicator in FORM_INDICATORS if indicator in lowered)
    if indicator_count >= MIN_FORM_INDICATORS and len(text) < FORM_CHUNK_MAX_CHARS:
        return True

    words = lowered.split()
    if len(words) > 10 and len(set(words)) / len(words) < MIN_UNIQUE_WORD_RATIO:
        return True

    return False


def extract_markdown_headings(text: str) -> list[str]:
    return [m.strip() for m in _HEADING_RE.findall(text)]


def build_chunk(text: str, index: int, title: Optional[str] = None) -> ContentChunk:
    metadata = {"title": title} if title else {}
    headings = extract_markdown_headings(text)
    if headings:
        metadata["headings"] = headings
    keywords = extract_keywords(text)
    if keywords:
        metadata["keywords"] = keywords

    return ContentChunk(
        chunk_text=text,
        chunk_index=index,
        content_hash=chunk_hash(text),
        lexical_index=sorted(set(tokenize(f"{title or ''} {text}"))),
        metadata=metadata,
    )


def chunk_content(
    text: str,
    max_chunk_size: Optional[int] = None,
    min_chunk_size: Optional[int] = None,
    overlap: Optional[int] = None,
    title: Optional[str] = None,
) -> list[ContentChunk]:
    """Split text into chunks of roughly ``max_chunk_size`` characters.

    Paragraphs are packed together until the next one would overflow. A
    chunk that is closed carries its last ``overlap`` characters into the
    next one. A trailing chunk below ``min_chunk_size`` is merged into its
    predecessor. Low-quality chunks are dropped and the rest reindexed.
    """
    max_chunk = max_chunk_size or settings.chunk_max_chars
    min_chunk = min_chunk_size if min_chunk_size is not None else settings.chunk_min_chars
    overlap = overlap if overlap is not None else settings.chunk_overlap_chars

    paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(text or "") if p.strip()]
    if not paragraphs:
        return []

    pieces: list[str] = []
    for paragraph in paragraphs:
        if len(paragraph) > max_chunk:
            pieces.extend(split_paragraph(paragraph, max_chunk, overlap))
        else:
            pieces.append(paragraph)

    texts: list[str] = []
    current = ""
    for piece in pieces:
        if current and len(current) + len(piece) + 2 > max_chunk:
            if len(current) >= min_chunk:
                texts.append(current)
                tail = current[-overlap:] if overlap else ""
                current = f"{tail}\n\n{piece}" if tail else piece
            else:
                current = f"{current}\n\n{piece}"
        else:
            current = f"{current}\n\n{piece}" if current else piece

    if len(current) >= min_chunk or not texts:
        if current:
            texts.append(current)
    else:
        texts[-1] = f"{texts[-1]}\n\n{current}"

    kept = [t for t in texts if not is_low_quality(t)]
    if len(kept) < len(texts):
        logger.debug(f"Dropped {len(texts) - len(kept)} low-quality chunk(s)")

    return [build_chunk(t, i, title) for i, t in enumerate(kept)]
