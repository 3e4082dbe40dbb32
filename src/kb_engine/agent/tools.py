"""Knowledge-base query tools for chat and task layers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from kb_engine.retrieval.citations import PRIORITY_BADGES
from kb_engine.retrieval.retriever import RetrievalEngine
from kb_engine.types import RelatedDocuments, RetrievalResult, ToolTrace, TruthPriority

logger = logging.getLogger(__name__)

KB_SEARCH = "kb_search"
FIND_RELATED_DOCUMENTS = "find_related_documents"
NO_RESULTS = "NO_RESULTS"
NO_RELATED_DOCUMENTS = "NO_RELATED_DOCUMENTS"

_SNIPPET_CHARS = 220


class KnowledgeSearchInput(BaseModel):
    query: str = Field(min_length=3)
    limit: int = Field(default=10, ge=1, le=50)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    truth_priority: TruthPriority | None = None


class RelatedDocumentsInput(BaseModel):
    entity_text: str = Field(min_length=1)
    entity_id: str | None = None
    auto_link: bool = True


class KnowledgeTools:
    """`kb_search` and `find_related_documents` over one `RetrievalEngine`.

    Inputs are validated with pydantic before the engine is called. Each
    call returns the engine's structured results and reports a `ToolTrace`
    with the hit count, best similarity and matched document ids. LangChain
    exports render those results as text for a model to read.
    """

    def __init__(
        self,
        engine: RetrievalEngine,
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> None:
        self.engine = engine
        self.observer = observer

    def search(self, payload: dict[str, Any]) -> list[RetrievalResult]:
        request = KnowledgeSearchInput.model_validate(payload)
        started = perf_counter()
        results = self.engine.search_text(
            request.query,
            request.limit,
            request.threshold,
            truth_priority=request.truth_priority,
        )
        self._trace(
            KB_SEARCH,
            request,
            [result.document.id for result in results],
            [result.similarity for result in results],
            started,
        )
        return results

    def find_related(self, payload: dict[str, Any]) -> RelatedDocuments:
        request = RelatedDocumentsInput.model_validate(payload)
        started = perf_counter()
        related = self.engine.find_related_documents(
            request.entity_text,
            auto_link=request.auto_link,
            entity_id=request.entity_id,
        )
        self._trace(
            FIND_RELATED_DOCUMENTS,
            request,
            [match.document_id for match in related.suggested],
            [match.similarity for match in related.suggested],
            started,
        )
        return related

    def run(self, name: str, payload: dict[str, Any]) -> str:
        """Call a tool by name and render its result as text."""

        if name == KB_SEARCH:
            return render_search_results(self.search(payload))
        if name == FIND_RELATED_DOCUMENTS:
            return render_related_documents(self.find_related(payload))
        raise KeyError(f"Unknown tool: {name}")

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                func=lambda **kwargs: self.run(KB_SEARCH, kwargs),
                name=KB_SEARCH,
                description="Semantic search over the knowledge base; returns chunks with similarity.",
                args_schema=KnowledgeSearchInput,
            ),
            StructuredTool.from_function(
                func=lambda **kwargs: self.run(FIND_RELATED_DOCUMENTS, kwargs),
                name=FIND_RELATED_DOCUMENTS,
                description="Suggest knowledge-base documents for a task and auto-link confident matches.",
                args_schema=RelatedDocumentsInput,
            ),
        ]

    def _trace(
        self,
        name: str,
        request: BaseModel,
        document_ids: list[str],
        similarities: list[float],
        started: float,
    ) -> None:
        latency_ms = (perf_counter() - started) * 1000.0
        logger.debug("Tool %s returned %d hits in %.1fms", name, len(document_ids), latency_ms)
        if self.observer is None:
            return
        self.observer(
            ToolTrace(
                name=name,
                input_payload=request.model_dump(mode="json"),
                result_count=len(document_ids),
                top_similarity=max(similarities, default=None),
                document_ids=list(dict.fromkeys(document_ids)),
                latency_ms=latency_ms,
            )
        )


def render_search_results(results: list[RetrievalResult]) -> str:
    if not results:
        return NO_RESULTS
    lines = []
    for result in results:
        badge = PRIORITY_BADGES.get(result.chunk.truth_priority)
        label = f" [{badge}]" if badge else ""
        section = f" / {result.chunk.section_title}" if result.chunk.section_title else ""
        snippet = _truncate(" ".join(result.chunk.content.split()), _SNIPPET_CHARS)
        lines.append(
            f"[{result.chunk.id}] similarity={result.similarity:.4f}{label} "
            f"{result.document.file_name}{section}: {snippet}"
        )
    return "\n".join(lines)


def render_related_documents(related: RelatedDocuments) -> str:
    if not related.suggested:
        return NO_RELATED_DOCUMENTS
    lines = [
        f"{match.document_id} similarity={match.similarity:.4f} "
        f"{'linked' if match.auto_linked else 'suggested'} {match.file_name}"
        for match in related.suggested
    ]
    lines.append(f"linked={related.linked_count}")
    return "\n".join(lines)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
