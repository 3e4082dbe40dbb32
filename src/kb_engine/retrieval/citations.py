"""Citation building and answer-context rendering for retrieved chunks."""

from __future__ import annotations

from kb_engine.types import Citation, KnowledgeContext, RetrievalResult, TruthPriority

PRIORITY_BADGES: dict[TruthPriority, str] = {
    TruthPriority.HIGH: "High priority",
    TruthPriority.AUTHORITATIVE: "Authoritative",
}

NO_CONTEXT_MESSAGE = "No relevant documents found in the knowledge base."


def build_citations(results: list[RetrievalResult], *, excerpt_chars: int = 300) -> list[Citation]:
    """One citation per result, in retrieval order.

    Priority adds a badge but does not reorder anything.
    """

    citations: list[Citation] = []
    for result in results:
        priority = result.chunk.truth_priority
        citations.append(
            Citation(
                file_name=result.document.file_name,
                section_title=result.chunk.section_title,
                source_url=result.document.source_url,
                excerpt=_excerpt(result.chunk.content, excerpt_chars),
                similarity=result.similarity,
                truth_priority=priority,
                badge=PRIORITY_BADGES.get(priority),
            )
        )
    return citations


def render_answer_context(query: str, results: list[RetrievalResult]) -> str:
    """Numbered context block plus the question, for an answer-writing model."""

    parts: list[str] = []
    for index, result in enumerate(results):
        priority = result.chunk.truth_priority
        label = f" [{priority.value} priority]" if priority in PRIORITY_BADGES else ""
        section = result.chunk.section_title or "document"
        parts.append(
            f"[{index}] File: {result.document.file_name}, Section: {section}{label} "
            f"({round(result.similarity * 100)}% match)\n"
            f'"""\n{result.chunk.content}\n"""'
        )
    return "## Context Chunks\n\n" + "\n\n".join(parts) + f"\n\n## Question\n\n{query}"


def render_knowledge_context(context: KnowledgeContext) -> str:
    if not context.results:
        return NO_CONTEXT_MESSAGE
    return render_answer_context(context.query, context.results)


def _excerpt(content: str, limit: int) -> str:
    flat = " ".join(content.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."
