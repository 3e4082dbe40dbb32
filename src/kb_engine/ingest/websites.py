"""Scheduled website crawling into pre-extracted documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from kb_engine.config import LifecycleConfig
from kb_engine.ingest.crawler import CrawlProgress, SiteCrawler
from kb_engine.ingest.pipeline import content_hash
from kb_engine.ingest.urls import url_to_file_name
from kb_engine.retrieval.store import DocumentStore, WebsiteStore
from kb_engine.types import Website, WebsiteStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WebsiteSyncReport:
    websites_processed: int = 0
    pages_discovered: int = 0
    documents_upserted: int = 0
    errors: list[str] = field(default_factory=list)


class WebsiteSync:
    """Crawls configured websites and stores each good page as a document.

    Pages land as virtual documents carrying their extracted text; a page
    whose text hash is unchanged keeps its status, so the lifecycle
    controller does not re-embed it.
    """

    def __init__(
        self,
        websites: WebsiteStore,
        documents: DocumentStore,
        crawler: SiteCrawler | None = None,
        config: LifecycleConfig | None = None,
    ) -> None:
        self.websites = websites
        self.documents = documents
        self.crawler = crawler or SiteCrawler()
        self.config = config or LifecycleConfig()

    def due_websites(self, now: datetime | None = None) -> list[Website]:
        now = now or datetime.now(timezone.utc)
        interval = timedelta(hours=self.config.recrawl_interval_hours)
        due: list[Website] = []
        for website in self.websites.get_websites():
            if website.status == WebsiteStatus.PENDING:
                due.append(website)
            elif (
                website.status == WebsiteStatus.INDEXED
                and website.last_crawl_at is not None
                and now - website.last_crawl_at > interval
            ):
                due.append(website)
        return due

    def run(self, now: datetime | None = None) -> WebsiteSyncReport:
        report = WebsiteSyncReport()
        due = self.due_websites(now)
        logger.info("Found %d websites due for crawling", len(due))
        for website in due[: self.config.website_batch_size]:
            self.sync(website, report)
        return report

    def sync(self, website: Website, report: WebsiteSyncReport | None = None) -> WebsiteSyncReport:
        report = report or WebsiteSyncReport()
        report.websites_processed += 1
        logger.info("Syncing website %s (%s)", website.name, website.url)
        self.websites.update_website_crawl_status(website.id, WebsiteStatus.CRAWLING)

        try:
            pages = self.crawler.crawl(
                website.url,
                max_depth=website.max_depth,
                max_pages=website.max_pages,
                on_progress=_log_progress,
            )
        except Exception as exc:  # noqa: BLE001 - a broken crawl fails this website only
            logger.exception("Crawl of %s failed", website.url)
            message = str(exc) or type(exc).__name__
            report.errors.append(f"{website.name}: {message}")
            self.websites.update_website_crawl_status(
                website.id, WebsiteStatus.FAILED, error=message
            )
            return report

        report.pages_discovered += len(pages)
        good_pages = [page for page in pages if page.success and page.text]
        for page in good_pages:
            self.documents.upsert_virtual_document(
                website_id=website.id,
                source_url=page.url,
                file_name=page.title or url_to_file_name(page.url),
                extracted_text=page.text,
                content_hash=content_hash(page.text),
                truth_priority=website.truth_priority,
            )
            report.documents_upserted += 1

        self.websites.update_website_crawl_status(
            website.id,
            WebsiteStatus.INDEXED,
            page_count=len(good_pages),
            last_crawl_at=datetime.now(timezone.utc),
        )
        logger.info("Website %s synced: %d documents", website.name, len(good_pages))
        return report


def _log_progress(progress: CrawlProgress) -> None:
    logger.debug(
        "Crawl progress: %d/%d pages (%s)",
        progress.pages_processed,
        progress.pages_found,
        progress.current_url,
    )
