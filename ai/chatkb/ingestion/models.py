"""Data models for the ingestion pipeline and answer cache."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from chatkb.core.utils import utcnow


class SourceType(str, Enum):
    """Where a knowledge chunk came from."""

    WEBSITE = "website"
    DOCUMENT = "document"


class CrawlMode(str, Enum):
    """Renderer selection policy for a crawl run."""

    STATIC = "static"
    JAVASCRIPT = "javascript"
    AUTO = "auto"


RenderedWith = Literal["static", "javascript"]


class ValidationResult(BaseModel):
    """Outcome of a URL safety check."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    error: Optional[str] = None


class CrawlTarget(BaseModel):
    """URL waiting in the crawl queue."""

    model_config = ConfigDict(frozen=True)

    url: str
    depth: int = 0


class RenderResult(BaseModel):
    """Output of one renderer invocation."""

    model_config = ConfigDict(frozen=True)

    html: str = ""
    text_content: str = ""
    title: str = ""
    error: Optional[str] = None
    rendered_with: RenderedWith = "static"
    final_url: Optional[str] = None
    status_code: Optional[int] = None
    last_modified: Optional[str] = None
    etag: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CrawlResult(BaseModel):
    """Per-page crawl result with HTML stripped."""

    url: str
    content: str = ""
    title: Optional[str] = None
    error: Optional[str] = None
    rendered_with: Optional[RenderedWith] = None
    depth: int = 0
    last_modified: Optional[str] = None
    etag: Optional[str] = None

    @classmethod
    def from_render(cls, url: str, depth: int, result: RenderResult) -> "CrawlResult":
        return cls(
            url=url,
            content=result.text_content,
            title=result.title or None,
            error=result.error,
            rendered_with=result.rendered_with,
            depth=depth,
            last_modified=result.last_modified,
            etag=result.etag,
        )


class CrawlOptions(BaseModel):
    """Options for a recursive crawl."""

    max_depth: int = Field(2, ge=0)
    max_pages: int = Field(50, ge=1)
    same_domain_only: bool = True
    mode: CrawlMode = CrawlMode.AUTO
    max_js_pages: int = Field(10, ge=0)
    js_escalation_min_chars: int = Field(1000, ge=0)
    delay_seconds: float = Field(0.1, ge=0.0)


class ContentChunk(BaseModel):
    """Chunk produced by the chunker, before embedding."""

    chunk_text: str
    chunk_index: int
    content_hash: str
    lexical_index: list[str] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)


class KnowledgeChunk(BaseModel):
    """Stored, tenant-scoped chunk of source content."""

    chatbot_id: str
    source_type: SourceType = SourceType.WEBSITE
    source_url: str
    source_title: str = ""
    chunk_text: str
    chunk_index: int
    content_hash: str
    embedding: Optional[list[float]] = None
    lexical_index: list[str] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class CrawlMetadata(BaseModel):
    """Change-detection record for one (chatbot, url) pair."""

    chatbot_id: str
    url: str
    content_hash: str
    last_crawled_at: datetime = Field(default_factory=utcnow)
    last_modified: Optional[str] = None
    etag: Optional[str] = None


class AnswerCacheEntry(BaseModel):
    """Previously generated answer for a normalized question."""

    chatbot_id: str
    question: str
    question_hash: str
    embedding: Optional[list[float]] = None
    answer: str
    suggested_questions: list[str] = Field(default_factory=list)
    hit_count: int = 0
    last_used_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)


class ManualOverride(BaseModel):
    """Human-authored answer that outranks the cache."""

    chatbot_id: str
    question: str
    question_hash: str
    embedding: Optional[list[float]] = None
    manual_answer: str
    original_answer: Optional[str] = None
    suggested_questions: list[str] = Field(default_factory=list)
    created_by: str
    use_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class LookupResult(BaseModel):
    """Result of resolving a question against overrides and the cache."""

    source: Literal["override", "cache", "miss"]
    answer: Optional[str] = None
    suggested_questions: list[str] = Field(default_factory=list)
    similarity: Optional[float] = None
    matched_question: Optional[str] = None
    question_hash: str
    embedding: Optional[list[float]] = None


class ScoredChunk(BaseModel):
    """Knowledge chunk with its hybrid retrieval scores."""

    chunk: KnowledgeChunk
    score: float
    semantic_score: float = 0.0
    lexical_score: float = 0.0


class IngestionReport(BaseModel):
    """Summary of one ingestion run for a tenant."""

    chatbot_id: str
    pages_crawled: int = 0
    pages_changed: int = 0
    pages_unchanged: int = 0
    chunks_created: int = 0
    chunks_without_embedding: int = 0
    cache_cleared: bool = False
    cancelled: bool = False
    errors: list[dict[str, str]] = Field(default_factory=list)
