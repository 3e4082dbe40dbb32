import pytest
from pydantic import ValidationError

from embedding_fakes import offline_embedder

from kb_engine.agent.tools import KnowledgeTools
from kb_engine.ingest.pipeline import DocumentLifecycleController
from kb_engine.retrieval.retriever import RetrievalEngine
from kb_engine.retrieval.store import InMemoryKnowledgeStore
from kb_engine.types import Document, TruthPriority

POLICY_TEXT = "Company policy states all employees must encrypt customer data at rest."


def _indexed_store() -> InMemoryKnowledgeStore:
    store = InMemoryKnowledgeStore()
    pages = [
        ("policy", POLICY_TEXT, TruthPriority.AUTHORITATIVE),
        ("faq", "Holiday arrangements are documented in the employee handbook.", TruthPriority.STANDARD),
    ]
    for doc_id, text, priority in pages:
        store.add_document(
            Document(
                id=doc_id,
                source_ref=f"https://intranet.test/{doc_id}",
                file_name=f"{doc_id}.html",
                mime_type="text/html",
                truth_priority=priority,
                extracted_text=text,
                is_virtual=True,
                source_url=f"https://intranet.test/{doc_id}",
            )
        )
    DocumentLifecycleController(store, offline_embedder()).process_pending(limit=10)
    return store


def _tools(store: InMemoryKnowledgeStore, traces: list | None = None) -> KnowledgeTools:
    engine = RetrievalEngine(store, offline_embedder(), linker=store)
    return KnowledgeTools(engine, observer=traces.append if traces is not None else None)


def test_search_returns_structured_results_and_traces_hits() -> None:
    traces = []
    tools = _tools(_indexed_store(), traces)

    results = tools.search({"query": POLICY_TEXT, "limit": 1})

    assert [result.document.id for result in results] == ["policy"]
    assert results[0].similarity == pytest.approx(1.0)
    (trace,) = traces
    assert trace.name == "kb_search"
    assert trace.input_payload == {
        "query": POLICY_TEXT,
        "limit": 1,
        "threshold": None,
        "truth_priority": None,
    }
    assert trace.result_count == 1
    assert trace.top_similarity == pytest.approx(1.0)
    assert trace.document_ids == ["policy"]
    assert trace.latency_ms >= 0.0


def test_kb_search_text_lists_chunk_ids_with_priority_badges() -> None:
    tools = _tools(_indexed_store())

    output = tools.run("kb_search", {"query": POLICY_TEXT, "limit": 1})

    assert output.startswith("[policy-chunk-0000] similarity=1.0000 [Authoritative] policy.html:")
    assert "encrypt customer data" in output


def test_kb_search_priority_filter_and_no_results() -> None:
    traces = []
    tools = _tools(_indexed_store(), traces)

    output = tools.run(
        "kb_search",
        {"query": "employee data encryption", "threshold": 0.0, "truth_priority": "standard"},
    )

    assert output.startswith("[faq-chunk-0000]")
    assert "policy" not in output
    assert tools.run("kb_search", {"query": "zebra migration patterns"}) == "NO_RESULTS"
    assert traces[0].input_payload["truth_priority"] == "standard"
    assert traces[-1].result_count == 0
    assert traces[-1].top_similarity is None


def test_invalid_input_and_unknown_tools_are_rejected() -> None:
    traces = []
    tools = _tools(_indexed_store(), traces)

    with pytest.raises(ValidationError):
        tools.search({"query": "ab"})
    with pytest.raises(ValidationError):
        tools.search({"query": "refund policy", "limit": 51})
    with pytest.raises(KeyError):
        tools.run("delete_everything", {})
    assert traces == []


def test_find_related_documents_links_confident_matches() -> None:
    store = _indexed_store()
    traces = []
    tools = _tools(store, traces)

    related = tools.find_related({"entity_text": POLICY_TEXT, "entity_id": "task-42"})
    output = tools.run("find_related_documents", {"entity_text": POLICY_TEXT, "auto_link": False})

    assert related.suggested[0].document_id == "policy"
    assert related.suggested[0].auto_linked
    assert related.linked_count == 1
    assert ("task-42", "policy") in store.links
    assert traces[0].name == "find_related_documents"
    assert traces[0].document_ids[0] == "policy"
    assert output.splitlines()[0].startswith("policy similarity=1.0000 suggested policy.html")
    assert output.splitlines()[-1] == "linked=0"


def test_tools_export_to_langchain_and_report_traces() -> None:
    traces = []
    tools = {tool.name: tool for tool in _tools(_indexed_store(), traces).as_langchain_tools()}

    assert set(tools) == {"kb_search", "find_related_documents"}
    assert tools["kb_search"].invoke({"query": "zebra migration patterns"}) == "NO_RESULTS"
    assert traces[0].name == "kb_search"
    assert traces[0].input_payload["query"] == "zebra migration patterns"
