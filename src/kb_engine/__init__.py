"""Knowledge-base ingestion and retrieval engine."""

from .config import ChunkingConfig, CrawlConfig, EmbeddingConfig, EngineSettings, RetrievalConfig

__all__ = [
    "ChunkingConfig",
    "CrawlConfig",
    "EmbeddingConfig",
    "EngineSettings",
    "RetrievalConfig",
]
