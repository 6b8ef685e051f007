"""Pydantic schemas for API requests and responses."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from chatkb.ingestion.models import CrawlMode


class ChatMessage(BaseModel):
    """Single conversation turn."""

    role: Literal["user", "assistant"]
    content: str


class AnswerRequest(BaseModel):
    """Question for a chatbot."""

    chatbot_id: str = Field(..., min_length=1, max_length=128)
    question: str = Field(..., description="User question", min_length=1, max_length=2000)
    history: Optional[list[ChatMessage]] = Field(
        default=None,
        description="Optional prior conversation turns for context-awareness",
    )


class Source(BaseModel):
    """Chunk the answer was grounded on."""

    url: str
    title: str = ""
    snippet: str
    score: float


class AnswerResponse(BaseModel):
    """Answer with its provenance."""

    answer: str
    source: Literal["override", "cache", "generated"]
    suggested_questions: list[str] = Field(default_factory=list)
    similarity: Optional[float] = None
    sources: list[Source] = Field(default_factory=list)


class RetrieveRequest(BaseModel):
    """Hybrid retrieval query."""

    chatbot_id: str = Field(..., min_length=1, max_length=128)
    question: str = Field(..., min_length=1, max_length=2000)
    top_k: Optional[int] = Field(None, ge=1, le=100)


class RetrievedChunk(BaseModel):
    """One ranked chunk."""

    source_url: str
    source_title: str
    chunk_index: int
    chunk_text: str
    score: float
    semantic_score: float
    lexical_score: float


class IngestRequest(BaseModel):
    """Crawl and index one or more seed URLs for a chatbot."""

    chatbot_id: str = Field(..., min_length=1, max_length=128)
    urls: list[str] = Field(..., min_length=1, max_length=20)
    max_depth: Optional[int] = Field(None, ge=0, le=5)
    max_pages: Optional[int] = Field(None, ge=1, le=500)
    same_domain_only: bool = True
    mode: CrawlMode = CrawlMode.AUTO
    max_js_pages: Optional[int] = Field(None, ge=0, le=100)


class JobAccepted(BaseModel):
    job_id: str
    status: str


class OverrideRequest(BaseModel):
    """Human-corrected answer for a question."""

    chatbot_id: str = Field(..., min_length=1, max_length=128)
    question: str = Field(..., min_length=1, max_length=2000)
    manual_answer: str = Field(..., min_length=1)
    original_answer: Optional[str] = None
    created_by: str = Field(..., min_length=1)
    suggested_questions: list[str] = Field(default_factory=list)


class OverrideResponse(BaseModel):
    chatbot_id: str
    question: str
    question_hash: str
    created_by: str
