"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TruthPriority(str, Enum):
    """Manually assigned trust label, used for presentation only."""

    STANDARD = "standard"
    HIGH = "high"
    AUTHORITATIVE = "authoritative"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"
    DELETED = "deleted"


class WebsiteStatus(str, Enum):
    PENDING = "pending"
    CRAWLING = "crawling"
    INDEXED = "indexed"
    FAILED = "failed"


@dataclass(slots=True)
class Document:
    """One ingested unit: a Drive file or a crawled page."""

    id: str
    source_ref: str
    file_name: str
    mime_type: str
    status: DocumentStatus = DocumentStatus.PENDING
    truth_priority: TruthPriority = TruthPriority.STANDARD
    content_hash: str | None = None
    extracted_text: str | None = None
    processing_error: str | None = None
    is_virtual: bool = False
    source_url: str | None = None
    website_id: str | None = None
    chunk_count: int = 0
    indexed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class TextChunk:
    """A chunk produced by the chunker, before embedding."""

    content: str
    index: int
    section_title: str | None
    token_count: int


@dataclass(slots=True)
class DocumentChunk:
    """A persisted, embedded chunk of a document."""

    document_id: str
    chunk_index: int
    content: str
    section_title: str | None
    token_count: int
    embedding: list[float]
    truth_priority: TruthPriority = TruthPriority.STANDARD
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"{self.document_id}-chunk-{self.chunk_index:04d}"


@dataclass(slots=True)
class RetrievalResult:
    """A chunk with its similarity to a query. Computed per query."""

    chunk: DocumentChunk
    similarity: float
    document: Document


@dataclass(slots=True)
class DocumentMatch:
    """A document scored by its best matching chunk."""

    document_id: str
    similarity: float
    file_name: str
    source_url: str | None = None
    truth_priority: TruthPriority = TruthPriority.STANDARD
    auto_linked: bool = False


@dataclass(slots=True)
class RelatedDocuments:
    """Outcome of document matching for a task or entity."""

    suggested: list[DocumentMatch]
    linked_count: int


@dataclass(slots=True)
class Citation:
    file_name: str
    section_title: str | None
    source_url: str | None
    excerpt: str
    similarity: float
    truth_priority: TruthPriority
    badge: str | None


@dataclass(slots=True)
class KnowledgeContext:
    """Chunks retrieved for a chat question, never raising."""

    query: str
    results: list[RetrievalResult]
    search_duration_ms: float
    error: str | None = None


@dataclass(slots=True)
class PageResult:
    """Outcome of crawling one page."""

    url: str
    success: bool
    title: str | None = None
    description: str | None = None
    text: str = ""
    word_count: int = 0
    error: str | None = None


@dataclass(slots=True)
class HtmlExtraction:
    success: bool
    text: str = ""
    title: str | None = None
    description: str | None = None
    word_count: int = 0
    has_structure: bool = False
    error: str | None = None


@dataclass(slots=True)
class ExtractionResult:
    """Shape every file extractor returns to the lifecycle controller."""

    success: bool
    text: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Website:
    """A website configured for periodic crawling."""

    id: str
    url: str
    name: str
    max_depth: int = 2
    max_pages: int = 50
    status: WebsiteStatus = WebsiteStatus.PENDING
    truth_priority: TruthPriority = TruthPriority.STANDARD
    last_crawl_at: datetime | None = None
    page_count: int = 0
    crawl_error: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed query tool call."""

    name: str
    input_payload: dict[str, Any]
    result_count: int
    top_similarity: float | None
    latency_ms: float
    document_ids: list[str] = field(default_factory=list)
