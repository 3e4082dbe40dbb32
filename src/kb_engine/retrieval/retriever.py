"""Similarity search, per-document scoring and auto-linking."""

from __future__ import annotations

import logging
import time

from kb_engine.config import RetrievalConfig
from kb_engine.errors import KnowledgeBaseError
from kb_engine.ingest.embedder import Embedder, cosine_similarity
from kb_engine.retrieval.store import DocumentLinker, DocumentStore
from kb_engine.types import (
    DocumentMatch,
    KnowledgeContext,
    RelatedDocuments,
    RetrievalResult,
    TruthPriority,
)

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Ranks stored chunks against a query embedding.

    Results are ordered by cosine similarity alone. Equal scores keep store
    order because the sort is stable. Truth priority can narrow the
    candidate set but never changes the order.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
        *,
        linker: DocumentLinker | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self.linker = linker

    def search(
        self,
        query_embedding: list[float],
        limit: int | None = None,
        threshold: float | None = None,
        *,
        truth_priority: TruthPriority | None = None,
    ) -> list[RetrievalResult]:
        limit = self.config.default_limit if limit is None else limit
        threshold = self.config.search_threshold if threshold is None else threshold
        if limit <= 0:
            return []

        scored = [
            RetrievalResult(
                chunk=chunk,
                similarity=cosine_similarity(query_embedding, chunk.embedding),
                document=document,
            )
            for chunk, document in self.store.searchable_chunks(truth_priority)
        ]
        ranked = sorted(
            (result for result in scored if result.similarity >= threshold),
            key=lambda result: result.similarity,
            reverse=True,
        )
        return ranked[:limit]

    def search_text(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        *,
        truth_priority: TruthPriority | None = None,
    ) -> list[RetrievalResult]:
        """Embed `query` and search. Short queries raise `ValueError`."""

        query = query.strip()
        if len(query) < self.config.min_query_length:
            raise ValueError(
                f"Query must be at least {self.config.min_query_length} characters"
            )
        limit = min(limit or self.config.default_limit, self.config.max_limit)

        started = time.perf_counter()
        results = self.search(
            self.embedder.embed_query(query),
            limit,
            threshold,
            truth_priority=truth_priority,
        )
        logger.info(
            "Search returned %d results in %.1fms",
            len(results),
            (time.perf_counter() - started) * 1000,
        )
        return results

    def group_by_document(self, results: list[RetrievalResult]) -> list[DocumentMatch]:
        """Score each document by its best chunk, highest first."""

        best: dict[str, DocumentMatch] = {}
        for result in results:
            document = result.document
            match = best.get(document.id)
            if match is None:
                best[document.id] = DocumentMatch(
                    document_id=document.id,
                    similarity=result.similarity,
                    file_name=document.file_name,
                    source_url=document.source_url,
                    truth_priority=document.truth_priority,
                )
            elif result.similarity > match.similarity:
                match.similarity = result.similarity
        return sorted(best.values(), key=lambda match: match.similarity, reverse=True)

    def find_related_documents(
        self,
        entity_text: str,
        *,
        auto_link: bool = True,
        entity_id: str | None = None,
    ) -> RelatedDocuments:
        """Suggest documents for a task or entity and link the confident ones.

        Linking needs both `entity_id` and a configured linker; documents
        below `auto_link_threshold` are only suggested.
        """

        if not entity_text.strip():
            return RelatedDocuments(suggested=[], linked_count=0)

        results = self.search(
            self.embedder.embed_query(entity_text),
            self.config.related_search_limit,
            self.config.search_threshold,
        )
        matches = self.group_by_document(results)

        linked = 0
        if auto_link and entity_id is not None and self.linker is not None:
            for match in matches:
                if match.similarity < self.config.auto_link_threshold:
                    continue
                self.linker.link_document(entity_id, match.document_id, match.similarity, True)
                match.auto_linked = True
                linked += 1
            if linked:
                logger.info("Auto-linked %d documents to %s", linked, entity_id)

        return RelatedDocuments(
            suggested=matches[: self.config.suggestion_limit],
            linked_count=linked,
        )

    def fetch_context(self, query: str) -> KnowledgeContext:
        """Low-threshold search for chat grounding; failures yield an empty context."""

        started = time.perf_counter()
        try:
            results = self.search(
                self.embedder.embed_query(query),
                self.config.context_limit,
                self.config.context_threshold,
            )
        except KnowledgeBaseError as exc:
            logger.warning("Knowledge context unavailable: %s", exc)
            return KnowledgeContext(
                query=query,
                results=[],
                search_duration_ms=(time.perf_counter() - started) * 1000,
                error=str(exc),
            )
        return KnowledgeContext(
            query=query,
            results=results,
            search_duration_ms=(time.perf_counter() - started) * 1000,
        )
