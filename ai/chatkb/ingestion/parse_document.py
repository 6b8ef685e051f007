"""Text extraction for uploaded documents (PDF, HTML, plain text)."""

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from pathlib import PurePath

import fitz  # PyMuPDF
from pdfminer.high_level import extract_text as pdfminer_extract_text

from chatkb.core.config import settings
from chatkb.ingestion.parse_html import parse_page

logger = logging.getLogger(__name__)

# Literal strings shown by the PDF text operators Tj and TJ
_PDF_TEXT_BLOCK_RE = re.compile(rb"BT(.*?)ET", re.DOTALL)
_PDF_STRING_RE = re.compile(rb"\(((?:\\.|[^\\)])*)\)")
_PDF_ESCAPES = {b"n": "\n", b"r": "\r", b"t": "\t", b"b": "", b"f": "", b"(": "(", b")": ")", b"\\": "\\"}
_PRINTABLE_RUN_RE = re.compile(rb"[\x20-\x7e]{4,}")

MIN_FALLBACK_WORDS = 20


@dataclass
class ParsedDocument:
    """Text and title recovered from a document, plus the decoder that produced it."""

    title: str
    text: str
    decoder: str


def _pdf_title_from_name(filename: str) -> str:
    stem = PurePath(filename).stem
    return stem.replace("_", " ").replace("-", " ").strip().title()


def extract_pdf_text(pdf_bytes: bytes) -> tuple[str, dict]:
    """Extract text from PDF with page markers."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        paragraphs = []
        for page_num, page in enumerate(doc, start=1):
            text = page.get_text().strip()
            if text:
                paragraphs.append(f"[Page {page_num}]\n{text}")
        metadata = {"page_count": len(doc), "title": (doc.metadata or {}).get("title") or ""}
    finally:
        doc.close()
    return "\n\n".join(paragraphs), metadata


def _decode_pdf_string(raw: bytes) -> str:
    out = []
    i = 0
    while i < len(raw):
        ch = raw[i : i + 1]
        if ch == b"\\" and i + 1 < len(raw):
            nxt = raw[i + 1 : i + 2]
            if nxt in _PDF_ESCAPES:
                out.append(_PDF_ESCAPES[nxt])
                i += 2
                continue
            octal = re.match(rb"[0-7]{1,3}", raw[i + 1 : i + 4])
            if octal:
                out.append(chr(int(octal.group(0), 8) & 0xFF))
                i += 1 + len(octal.group(0))
                continue
            i += 1
            continue
        out.append(ch.decode("latin-1"))
        i += 1
    return "".join(out)


def scan_pdf_bytes(pdf_bytes: bytes) -> str:
    """Last-resort decoder for PDFs the real parsers reject.

    Collects literal strings from uncompressed text objects; if there are
    none, falls back to runs of printable ASCII.
    """
    pieces = []
    for block in _PDF_TEXT_BLOCK_RE.findall(pdf_bytes):
        strings = [_decode_pdf_string(s) for s in _PDF_STRING_RE.findall(block)]
        line = " ".join(s.strip() for s in strings if s.strip())
        if line:
            pieces.append(line)

    if len(" ".join(pieces).split()) < MIN_FALLBACK_WORDS:
        runs = [r.decode("ascii") for r in _PRINTABLE_RUN_RE.findall(pdf_bytes)]
        words = [r for r in runs if re.search(r"[A-Za-z]{3,}", r) and not r.lstrip().startswith(("/", "<<"))]
        if len(words) > len(pieces):
            pieces = words

    return "\n".join(pieces)


def parse_pdf(data: bytes, filename: str) -> ParsedDocument:
    """PyMuPDF, then pdfminer, then a byte scan."""
    try:
        text, metadata = extract_pdf_text(data)
        if text.strip():
            title = metadata.get("title") or _pdf_title_from_name(filename)
            return ParsedDocument(title=title, text=text, decoder="pymupdf")
        logger.info(f"PyMuPDF found no text in {filename}")
    except Exception as e:
        logger.warning(f"PyMuPDF could not parse {filename}: {e}")

    try:
        text = pdfminer_extract_text(BytesIO(data))
        if text and text.strip():
            return ParsedDocument(title=_pdf_title_from_name(filename), text=text, decoder="pdfminer")
    except Exception as e:
        logger.warning(f"pdfminer could not parse {filename}: {e}")

    text = scan_pdf_bytes(data)
    logger.info(f"Byte scan recovered {len(text)} chars from {filename}")
    return ParsedDocument(title=_pdf_title_from_name(filename), text=text, decoder="bytescan")


def parse_document(data: bytes, filename: str, content_type: str = "") -> ParsedDocument:
    """Decode an uploaded document into plain text for chunking."""
    suffix = PurePath(filename).suffix.lower()
    content_type = content_type.lower()

    if suffix == ".pdf" or "pdf" in content_type or data[:5] == b"%PDF-":
        return parse_pdf(data, filename)

    text = data.decode("utf-8", errors="replace")
    if suffix in (".html", ".htm") or "html" in content_type:
        parsed = parse_page(text, settings.max_content_chars)
        return ParsedDocument(
            title=parsed.title or PurePath(filename).stem, text=parsed.text, decoder="html"
        )

    return ParsedDocument(title=PurePath(filename).stem, text=text.strip(), decoder="text")
