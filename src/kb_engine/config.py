"""Configuration models for the knowledge-base engine."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, model_validator


class ChunkingConfig(BaseModel):
    """Configures section-aware paragraph chunking with sentence overlap."""

    max_tokens: int = Field(default=1500, ge=1)
    min_tokens: int = Field(default=100, ge=0)
    overlap_tokens: int = Field(default=100, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkingConfig":
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError("overlap_tokens must be less than max_tokens")
        if self.min_tokens > self.max_tokens:
            raise ValueError("min_tokens must not exceed max_tokens")
        return self


class CrawlConfig(BaseModel):
    """Configures the breadth-first site crawler."""

    max_depth: int = Field(default=2, ge=0)
    max_pages: int = Field(default=50, ge=1)
    user_agent: str = "KnowledgeBaseCrawler/1.0 (+https://example.com/bot)"
    robots_timeout_seconds: float = Field(default=5.0, gt=0.0)
    page_timeout_seconds: float = Field(default=15.0, gt=0.0)
    default_crawl_delay_seconds: float = Field(default=1.0, ge=0.0)
    min_crawl_delay_seconds: float = Field(default=1.0, ge=0.0)
    min_word_count: int = Field(default=50, ge=0)


class EmbeddingConfig(BaseModel):
    """Configures embedding model, dimensionality and batching."""

    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, ge=1)
    max_batch_size: int = Field(default=2048, ge=1)
    progress_batch_size: int = Field(default=100, ge=1)
    inter_batch_delay_seconds: float = Field(default=0.1, ge=0.0)
    timeout_seconds: float = Field(default=60.0, gt=0.0)


class RetrievalConfig(BaseModel):
    """Configures similarity thresholds and result limits."""

    search_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    auto_link_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    context_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=50, ge=1)
    context_limit: int = Field(default=10, ge=1)
    related_search_limit: int = Field(default=20, ge=1)
    suggestion_limit: int = Field(default=10, ge=1)
    min_query_length: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "RetrievalConfig":
        if self.auto_link_threshold < self.search_threshold:
            raise ValueError("auto_link_threshold must not be below search_threshold")
        return self


class LifecycleConfig(BaseModel):
    """Configures per-invocation batch sizes for scheduled processing."""

    batch_size: int = Field(default=1, ge=1)
    website_batch_size: int = Field(default=1, ge=1)
    recrawl_interval_hours: float = Field(default=24.0, gt=0.0)


class EngineSettings(BaseModel):
    """All engine settings grouped together."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    openai_api_key: str | None = None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "EngineSettings":
        """Build settings from `KB_*` environment variables, falling back to defaults."""

        env = os.environ if environ is None else environ
        embedding: dict[str, object] = {}
        crawl: dict[str, object] = {}
        retrieval: dict[str, object] = {}
        lifecycle: dict[str, object] = {}

        if env.get("KB_EMBEDDING_MODEL"):
            embedding["model"] = env["KB_EMBEDDING_MODEL"]
        if env.get("KB_CRAWL_USER_AGENT"):
            crawl["user_agent"] = env["KB_CRAWL_USER_AGENT"]
        if env.get("KB_BATCH_SIZE"):
            lifecycle["batch_size"] = env["KB_BATCH_SIZE"]
        if env.get("KB_SEARCH_THRESHOLD"):
            retrieval["search_threshold"] = env["KB_SEARCH_THRESHOLD"]
        if env.get("KB_AUTO_LINK_THRESHOLD"):
            retrieval["auto_link_threshold"] = env["KB_AUTO_LINK_THRESHOLD"]

        return cls(
            embedding=EmbeddingConfig.model_validate(embedding),
            crawl=CrawlConfig.model_validate(crawl),
            retrieval=RetrievalConfig.model_validate(retrieval),
            lifecycle=LifecycleConfig.model_validate(lifecycle),
            openai_api_key=env.get("OPENAI_API_KEY") or None,
        )
