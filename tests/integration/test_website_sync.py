from datetime import datetime, timedelta, timezone

import httpx

from embedding_fakes import offline_embedder

from kb_engine.config import CrawlConfig
from kb_engine.ingest.crawler import SiteCrawler
from kb_engine.ingest.pipeline import DocumentLifecycleController
from kb_engine.ingest.websites import WebsiteSync
from kb_engine.retrieval.store import InMemoryKnowledgeStore
from kb_engine.types import TruthPriority, Website, WebsiteStatus

_BODY = " ".join(["shipping"] * 60)


def _site(pages: dict[str, str]) -> SiteCrawler:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path in pages:
            return httpx.Response(200, html=pages[request.url.path])
        return httpx.Response(404)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SiteCrawler(CrawlConfig(), client=client, sleep=lambda _: None)


def _pages(body: str = _BODY) -> dict[str, str]:
    return {
        "/": f'<html><head><title>Help Center</title></head><body><main><p>{body}</p><a href="/faq">FAQ</a></main></body></html>',
        "/faq": f"<html><body><main><p>{body} questions</p></main></body></html>",
    }


def _website(**overrides) -> Website:
    values = dict(
        id="site-1",
        url="https://help.example.com/",
        name="Help",
        truth_priority=TruthPriority.HIGH,
    )
    values.update(overrides)
    return Website(**values)


def test_sync_creates_virtual_documents_and_marks_website_indexed() -> None:
    store = InMemoryKnowledgeStore()
    website = store.add_website(_website())
    sync = WebsiteSync(store, store, _site(_pages()))

    report = sync.run()

    documents = store.get_pending_documents(10)
    assert report.websites_processed == 1
    assert report.pages_discovered == 2
    assert report.documents_upserted == 2
    assert [doc.file_name for doc in documents] == ["Help Center", "help.example.com/faq"]
    assert all(doc.is_virtual and doc.website_id == "site-1" for doc in documents)
    assert all(doc.truth_priority == TruthPriority.HIGH for doc in documents)
    assert website.status == WebsiteStatus.INDEXED
    assert website.page_count == 2
    assert website.last_crawl_at is not None
    assert website.crawl_error is None


def test_unchanged_pages_are_not_reprocessed_after_recrawl() -> None:
    store = InMemoryKnowledgeStore()
    website = store.add_website(_website())
    controller = DocumentLifecycleController(store, offline_embedder(32))

    WebsiteSync(store, store, _site(_pages())).sync(website)
    assert controller.process_pending(limit=10).indexed == 2

    WebsiteSync(store, store, _site(_pages())).sync(website)
    assert store.get_pending_documents(10) == []

    WebsiteSync(store, store, _site(_pages(_BODY + " updated"))).sync(website)
    pending = store.get_pending_documents(10)
    assert len(pending) == 2
    assert controller.process_pending(limit=10).indexed == 2
    assert store.chunk_writes == 4


def test_due_websites_follow_recrawl_interval() -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    store = InMemoryKnowledgeStore()
    store.add_website(_website(id="new"))
    store.add_website(
        _website(id="stale", status=WebsiteStatus.INDEXED, last_crawl_at=now - timedelta(hours=25))
    )
    store.add_website(
        _website(id="fresh", status=WebsiteStatus.INDEXED, last_crawl_at=now - timedelta(hours=2))
    )
    store.add_website(_website(id="broken", status=WebsiteStatus.FAILED))
    store.add_website(_website(id="busy", status=WebsiteStatus.CRAWLING))

    due = WebsiteSync(store, store, _site({})).due_websites(now)

    assert [website.id for website in due] == ["new", "stale"]


def test_crawl_errors_mark_website_failed() -> None:
    class ExplodingCrawler:
        def crawl(self, start_url, **kwargs):
            raise RuntimeError("DNS failure")

    store = InMemoryKnowledgeStore()
    website = store.add_website(_website())

    report = WebsiteSync(store, store, ExplodingCrawler()).run()

    assert website.status == WebsiteStatus.FAILED
    assert website.crawl_error == "DNS failure"
    assert report.errors == ["Help: DNS failure"]
    assert store.get_pending_documents(10) == []


def test_disallowed_site_is_indexed_with_no_pages() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /\n")
        return httpx.Response(200, html="<p>never fetched</p>")

    crawler = SiteCrawler(
        client=httpx.Client(transport=httpx.MockTransport(handler)), sleep=lambda _: None
    )
    store = InMemoryKnowledgeStore()
    website = store.add_website(_website())

    WebsiteSync(store, store, crawler).sync(website)

    assert website.status == WebsiteStatus.INDEXED
    assert website.page_count == 0
    assert store.get_pending_documents(10) == []
