"""Document lifecycle: extract -> chunk -> embed -> replace chunks."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Protocol

from kb_engine.config import ChunkingConfig, LifecycleConfig
from kb_engine.errors import InvalidTransitionError, PipelineIntegrityError
from kb_engine.ingest.chunker import SectionChunker
from kb_engine.ingest.embedder import Embedder
from kb_engine.retrieval.store import DocumentStore
from kb_engine.types import Document, DocumentChunk, DocumentStatus, ExtractionResult

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING, DocumentStatus.DELETED}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.INDEXED, DocumentStatus.FAILED, DocumentStatus.DELETED}
    ),
    DocumentStatus.INDEXED: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.PENDING, DocumentStatus.DELETED}
    ),
    DocumentStatus.FAILED: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.PENDING, DocumentStatus.DELETED}
    ),
    DocumentStatus.DELETED: frozenset({DocumentStatus.PENDING}),
}


class DocumentExtractor(Protocol):
    def extract(self, file_id: str, mime_type: str) -> ExtractionResult:
        """Return `(success, text, error)` for a stored file."""


def check_transition(current: DocumentStatus, target: DocumentStatus) -> None:
    if target not in _TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class DocumentOutcome:
    document_id: str
    status: DocumentStatus
    chunks_created: int = 0
    skipped: bool = False
    error: str | None = None


@dataclass(slots=True)
class ProcessingReport:
    """Summary of one scheduled processing run."""

    outcomes: list[DocumentOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def indexed(self) -> int:
        return sum(
            1 for o in self.outcomes if o.status == DocumentStatus.INDEXED and not o.skipped
        )

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == DocumentStatus.FAILED)

    @property
    def chunks_created(self) -> int:
        return sum(o.chunks_created for o in self.outcomes)

    @property
    def errors(self) -> list[str]:
        return [f"{o.document_id}: {o.error}" for o in self.outcomes if o.error]


class DocumentLifecycleController:
    """Moves documents through `pending -> processing -> indexed | failed`.

    Each run picks up a small fixed batch so a scheduled invocation stays
    within its time budget. A document whose content hash is unchanged and
    which was already indexed is put back to `indexed` without touching its
    chunks. Chunks are written once, as a complete replacement, after every
    other step has succeeded; a failed run leaves the previous chunk set in
    place.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: Embedder,
        *,
        extractor: DocumentExtractor | None = None,
        chunker: SectionChunker | None = None,
        config: LifecycleConfig | None = None,
        chunking: ChunkingConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.extractor = extractor
        self.chunker = chunker or SectionChunker(chunking)
        self.config = config or LifecycleConfig()

    def process_pending(self, limit: int | None = None) -> ProcessingReport:
        report = ProcessingReport()
        documents = self.store.get_pending_documents(limit or self.config.batch_size)
        if not documents:
            logger.info("No pending documents")
            return report

        for document in documents:
            report.outcomes.append(self.process_document(document))
        logger.info(
            "Processed %d documents: %d indexed, %d skipped, %d failed, %d chunks",
            report.processed,
            report.indexed,
            report.skipped,
            report.failed,
            report.chunks_created,
        )
        return report

    def process_document(self, document: Document) -> DocumentOutcome:
        previous = document.status
        self._transition(document, DocumentStatus.PROCESSING)
        try:
            return self._run(document, previous)
        except Exception as exc:  # noqa: BLE001 - any step failure marks the document failed
            logger.exception("Processing %s (%s) failed", document.id, document.file_name)
            error = str(exc) or type(exc).__name__
            self._transition(document, DocumentStatus.FAILED, error)
            return DocumentOutcome(document.id, DocumentStatus.FAILED, error=error)

    def reset_failed_documents(self) -> int:
        count = self.store.reset_failed_documents()
        if count:
            logger.info("Reset %d failed documents to pending", count)
        return count

    def mark_deleted(self, source_refs: list[str]) -> int:
        if not source_refs:
            return 0
        count = self.store.mark_documents_deleted(source_refs)
        logger.info("Marked %d documents deleted", count)
        return count

    def request_resync(self, document_id: str) -> Document:
        document = self.store.get_document_by_id(document_id)
        if document is None:
            raise KeyError(f"Unknown document: {document_id}")
        self._transition(document, DocumentStatus.PENDING)
        return document

    def _run(self, document: Document, previous: DocumentStatus) -> DocumentOutcome:
        text = self._extract(document)
        digest = content_hash(text)

        if previous == DocumentStatus.INDEXED and digest == document.content_hash:
            logger.info("Content unchanged for %s, keeping existing chunks", document.id)
            self._transition(document, DocumentStatus.INDEXED)
            return DocumentOutcome(document.id, DocumentStatus.INDEXED, skipped=True)

        if not document.is_virtual or digest != document.content_hash:
            self.store.update_document_extracted_text(document.id, text, digest)
            document.extracted_text = text
            document.content_hash = digest

        pieces = self.chunker.chunk(text)
        if not pieces:
            raise PipelineIntegrityError("No chunks created from document")

        embeddings = self.embedder.embed_documents([piece.content for piece in pieces])
        if len(embeddings) != len(pieces):
            raise PipelineIntegrityError(
                f"Embedding count mismatch: {len(embeddings)} embeddings for {len(pieces)} chunks"
            )

        chunks = [
            DocumentChunk(
                document_id=document.id,
                chunk_index=piece.index,
                content=piece.content,
                section_title=piece.section_title,
                token_count=piece.token_count,
                embedding=embedding,
                truth_priority=document.truth_priority,
            )
            for piece, embedding in zip(pieces, embeddings, strict=True)
        ]
        self.store.replace_chunks(document.id, chunks)
        self._transition(document, DocumentStatus.INDEXED)
        logger.info("Indexed %s with %d chunks", document.id, len(chunks))
        return DocumentOutcome(document.id, DocumentStatus.INDEXED, chunks_created=len(chunks))

    def _extract(self, document: Document) -> str:
        if document.is_virtual:
            text = document.extracted_text or ""
        else:
            if self.extractor is None:
                raise PipelineIntegrityError(f"No extractor configured for {document.mime_type}")
            result = self.extractor.extract(document.source_ref, document.mime_type)
            if not result.success:
                raise PipelineIntegrityError(result.error or "Extraction failed")
            text = result.text

        if not text.strip():
            raise PipelineIntegrityError("Extracted text is empty")
        return text

    def _transition(
        self, document: Document, target: DocumentStatus, error: str | None = None
    ) -> None:
        current = document.status
        check_transition(current, target)
        self.store.update_document_status(document.id, target, error)
        logger.debug("Document %s: %s -> %s", document.id, current.value, target.value)
        document.status = target
        document.processing_error = error
