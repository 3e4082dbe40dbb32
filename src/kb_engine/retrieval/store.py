"""Persistence contracts the engine depends on, plus an in-memory store."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from kb_engine.types import (
    Document,
    DocumentChunk,
    DocumentStatus,
    TruthPriority,
    Website,
    WebsiteStatus,
)


class DocumentStore(Protocol):
    """Document and chunk persistence used by the lifecycle controller and retrieval."""

    def get_pending_documents(self, limit: int) -> list[Document]:
        """Documents waiting for processing, oldest first."""

    def get_document_by_id(self, document_id: str) -> Document | None:
        """Fetch one document."""

    def update_document_status(
        self, document_id: str, status: DocumentStatus, error: str | None = None
    ) -> None:
        """Set the lifecycle status, recording `error` for failures."""

    def update_document_extracted_text(
        self, document_id: str, text: str, content_hash: str
    ) -> None:
        """Store extracted text and its digest."""

    def replace_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> None:
        """Delete every chunk of the document and insert `chunks`, atomically."""

    def searchable_chunks(
        self, truth_priority: TruthPriority | None = None
    ) -> Iterable[tuple[DocumentChunk, Document]]:
        """Embedded chunks eligible for retrieval, in stable storage order."""

    def mark_documents_deleted(self, source_refs: list[str]) -> int:
        """Flag documents whose source disappeared and drop all of their chunks.

        Returns how many documents changed.
        """

    def reset_failed_documents(self) -> int:
        """Move failed documents back to pending; returns how many changed."""

    def upsert_virtual_document(
        self,
        *,
        website_id: str,
        source_url: str,
        file_name: str,
        extracted_text: str,
        content_hash: str,
        truth_priority: TruthPriority = TruthPriority.STANDARD,
    ) -> Document:
        """Create or refresh a crawled page document. Unchanged content keeps its status."""


class WebsiteStore(Protocol):
    def get_websites(self) -> list[Website]:
        """All configured websites."""

    def update_website_crawl_status(
        self,
        website_id: str,
        status: WebsiteStatus,
        *,
        error: str | None = None,
        page_count: int | None = None,
        last_crawl_at: datetime | None = None,
    ) -> None:
        """Record crawl progress for a website."""


class DocumentLinker(Protocol):
    def link_document(
        self, entity_id: str, document_id: str, relevance_score: float, auto_linked: bool
    ) -> None:
        """Associate a document with a task or entity."""


class InMemoryKnowledgeStore:
    """Deterministic store used for tests and local prototyping.

    Deleted documents are never searchable. Any other document serves the
    chunk set of its last successful indexing, so a failed reprocessing
    does not hide it.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, list[DocumentChunk]] = {}
        self._websites: dict[str, Website] = {}
        self.links: dict[tuple[str, str], tuple[float, bool]] = {}
        self.chunk_writes = 0
        self._lock = threading.Lock()

    def add_document(self, document: Document) -> Document:
        now = datetime.now(timezone.utc)
        document.created_at = document.created_at or now
        document.updated_at = now
        self._documents[document.id] = document
        return document

    def add_website(self, website: Website) -> Website:
        self._websites[website.id] = website
        return website

    def get_pending_documents(self, limit: int) -> list[Document]:
        pending = [
            doc for doc in self._documents.values() if doc.status == DocumentStatus.PENDING
        ]
        return pending[:limit]

    def get_document_by_id(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    def get_chunks_for_document(self, document_id: str) -> list[DocumentChunk]:
        return list(self._chunks.get(document_id, []))

    def update_document_status(
        self, document_id: str, status: DocumentStatus, error: str | None = None
    ) -> None:
        document = self._require(document_id)
        document.status = status
        document.processing_error = error
        document.updated_at = datetime.now(timezone.utc)
        if status == DocumentStatus.INDEXED:
            document.indexed_at = document.updated_at

    def update_document_extracted_text(
        self, document_id: str, text: str, content_hash: str
    ) -> None:
        document = self._require(document_id)
        document.extracted_text = text
        document.content_hash = content_hash
        document.updated_at = datetime.now(timezone.utc)

    def replace_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> None:
        document = self._require(document_id)
        with self._lock:
            self._chunks[document_id] = [replace(chunk) for chunk in chunks]
            document.chunk_count = len(chunks)
            self.chunk_writes += 1

    def searchable_chunks(
        self, truth_priority: TruthPriority | None = None
    ) -> Iterable[tuple[DocumentChunk, Document]]:
        for document_id, chunks in self._chunks.items():
            document = self._documents[document_id]
            if document.status == DocumentStatus.DELETED:
                continue
            for chunk in chunks:
                if not chunk.embedding:
                    continue
                if truth_priority is not None and chunk.truth_priority != truth_priority:
                    continue
                yield chunk, document

    def mark_documents_deleted(self, source_refs: list[str]) -> int:
        refs = set(source_refs)
        changed = 0
        for document in self._documents.values():
            if document.source_ref in refs and document.status != DocumentStatus.DELETED:
                with self._lock:
                    self._chunks.pop(document.id, None)
                    document.chunk_count = 0
                document.status = DocumentStatus.DELETED
                document.updated_at = datetime.now(timezone.utc)
                changed += 1
        return changed

    def reset_failed_documents(self) -> int:
        changed = 0
        for document in self._documents.values():
            if document.status == DocumentStatus.FAILED:
                document.status = DocumentStatus.PENDING
                document.processing_error = None
                changed += 1
        return changed

    def upsert_virtual_document(
        self,
        *,
        website_id: str,
        source_url: str,
        file_name: str,
        extracted_text: str,
        content_hash: str,
        truth_priority: TruthPriority = TruthPriority.STANDARD,
    ) -> Document:
        for document in self._documents.values():
            if document.is_virtual and document.source_url == source_url:
                if document.content_hash != content_hash or document.status == DocumentStatus.DELETED:
                    document.extracted_text = extracted_text
                    document.content_hash = content_hash
                    document.status = DocumentStatus.PENDING
                document.file_name = file_name
                return document

        return self.add_document(
            Document(
                id=str(uuid.uuid4()),
                source_ref=source_url,
                file_name=file_name,
                mime_type="text/html",
                truth_priority=truth_priority,
                content_hash=content_hash,
                extracted_text=extracted_text,
                is_virtual=True,
                source_url=source_url,
                website_id=website_id,
            )
        )

    def get_websites(self) -> list[Website]:
        return list(self._websites.values())

    def update_website_crawl_status(
        self,
        website_id: str,
        status: WebsiteStatus,
        *,
        error: str | None = None,
        page_count: int | None = None,
        last_crawl_at: datetime | None = None,
    ) -> None:
        website = self._websites[website_id]
        website.status = status
        website.crawl_error = error
        if page_count is not None:
            website.page_count = page_count
        if last_crawl_at is not None:
            website.last_crawl_at = last_crawl_at

    def link_document(
        self, entity_id: str, document_id: str, relevance_score: float, auto_linked: bool
    ) -> None:
        self.links[(entity_id, document_id)] = (relevance_score, auto_linked)

    def _require(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise KeyError(f"Unknown document: {document_id}")
        return document
