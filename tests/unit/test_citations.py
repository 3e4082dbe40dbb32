from kb_engine.retrieval.citations import (
    NO_CONTEXT_MESSAGE,
    build_citations,
    render_answer_context,
    render_knowledge_context,
)
from kb_engine.types import (
    Document,
    DocumentChunk,
    KnowledgeContext,
    RetrievalResult,
    TruthPriority,
)


def _result(
    content: str,
    similarity: float,
    priority: TruthPriority = TruthPriority.STANDARD,
    section: str | None = None,
) -> RetrievalResult:
    document = Document(
        id="doc-1",
        source_ref="https://help.example.com/returns",
        file_name="Returns Policy",
        mime_type="text/html",
        truth_priority=priority,
        source_url="https://help.example.com/returns",
    )
    chunk = DocumentChunk(
        document_id="doc-1",
        chunk_index=0,
        content=content,
        section_title=section,
        token_count=5,
        embedding=[1.0],
        truth_priority=priority,
    )
    return RetrievalResult(chunk=chunk, similarity=similarity, document=document)


def test_citations_badge_high_and_authoritative_only() -> None:
    citations = build_citations(
        [
            _result("a", 0.9, TruthPriority.STANDARD),
            _result("b", 0.8, TruthPriority.HIGH),
            _result("c", 0.7, TruthPriority.AUTHORITATIVE),
        ]
    )

    assert [c.badge for c in citations] == [None, "High priority", "Authoritative"]
    assert [c.similarity for c in citations] == [0.9, 0.8, 0.7]
    assert citations[0].source_url == "https://help.example.com/returns"


def test_citation_excerpt_is_flattened_and_truncated() -> None:
    citation = build_citations([_result("word\n\n" * 200, 0.9)], excerpt_chars=20)[0]

    assert citation.excerpt == "word word word wo..."
    assert len(citation.excerpt) == 20


def test_render_answer_context_numbers_chunks() -> None:
    rendered = render_answer_context(
        "Can I return a gift card?",
        [
            _result("Gift cards are final sale.", 0.873, TruthPriority.AUTHORITATIVE, "Exceptions"),
            _result("Returns take ten days.", 0.71),
        ],
    )

    assert rendered == (
        "## Context Chunks\n\n"
        "[0] File: Returns Policy, Section: Exceptions [authoritative priority] (87% match)\n"
        '"""\nGift cards are final sale.\n"""\n\n'
        "[1] File: Returns Policy, Section: document (71% match)\n"
        '"""\nReturns take ten days.\n"""\n\n'
        "## Question\n\nCan I return a gift card?"
    )


def test_empty_knowledge_context_renders_placeholder() -> None:
    context = KnowledgeContext(query="anything", results=[], search_duration_ms=1.0)

    assert render_knowledge_context(context) == NO_CONTEXT_MESSAGE
