"""Application configuration using Pydantic Settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "dev"

    # API Security
    api_key: str = "dev-secret"

    # OpenAI
    openai_api_key: str = ""
    openai_embed_model: str = "text-embedding-3-small"
    openai_chat_model: str = "gpt-4o-mini"

    # Embeddings Provider
    embeddings_provider: Literal["openai", "local"] = "local"
    local_embed_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_concurrency: int = 8

    # LLM Provider
    llm_provider: Literal["openai", "ollama"] = "openai"
    ollama_model: str = "llama3"
    ollama_host: str = "http://localhost:11434"

    # Storage
    store_backend: Literal["memory", "qdrant"] = "memory"
    qdrant_url: str = "http://qdrant:6333"
    qdrant_api_key: str = ""
    collection_prefix: str = "chatkb"

    # Static renderer
    crawler_user_agent: str = "Mozilla/5.0 (compatible; ChatbotBuilder/1.0)"
    static_timeout_seconds: float = 30.0
    max_html_chars: int = 2_000_000
    max_content_chars: int = 50_000
    max_redirects: int = 5
    dns_timeout_seconds: float = 5.0

    # Headless renderer
    headless_nav_timeout_ms: int = 15_000
    headless_settle_ms: int = 2_000
    headless_networkidle_ms: int = 3_000
    headless_min_chars: int = 100
    headless_retry_attempts: int = 3

    # Crawl orchestration
    crawl_max_depth: int = 2
    crawl_max_pages: int = 50
    crawl_max_js_pages: int = 10
    crawl_delay_seconds: float = 0.1
    js_escalation_min_chars: int = 1000

    # Chunking
    chunk_max_chars: int = 800
    chunk_min_chars: int = 200
    chunk_overlap_chars: int = 100

    # Answer cache
    cache_similarity_threshold: float = 0.85

    # Retrieval
    retrieval_min_k: int = 5
    retrieval_max_k: int = 30
    retrieval_k_ratio: float = 0.1
    semantic_weight: float = 0.7
    lexical_weight: float = 0.3
    fallback_context_chars: int = 8_000

    # Ingestion jobs
    job_ttl_seconds: int = 3600
    job_sweep_interval_seconds: int = 300

    # Logging
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env.lower() == "prod"

    @property
    def is_local_embeddings(self) -> bool:
        """Check if using local embeddings."""
        return self.embeddings_provider == "local"

    @property
    def is_local_llm(self) -> bool:
        """Check if using local LLM."""
        return self.llm_provider == "ollama"


# Global settings instance
settings = Settings()
