"""Breadth-first website crawler that honours robots.txt."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from kb_engine.config import CrawlConfig
from kb_engine.ingest.html import HtmlExtractor
from kb_engine.ingest.urls import canonicalize_url, origin_of
from kb_engine.types import PageResult

logger = logging.getLogger(__name__)

_HTML_CONTENT_TYPES = ("text/html", "application/xhtml")


@dataclass(slots=True)
class RobotsRules:
    allowed: bool
    crawl_delay: float


@dataclass(slots=True)
class CrawlProgress:
    pages_processed: int
    pages_found: int
    current_url: str | None


def parse_robots_txt(text: str, *, default_delay: float, min_delay: float) -> RobotsRules:
    """Read the `User-agent: *` group for `Disallow: /` and `Crawl-delay`.

    Only a full-site disallow is honoured; path-level rules are ignored.
    The returned delay is never below `min_delay`.
    """

    in_wildcard_group = False
    crawl_delay = default_delay

    for raw_line in text.splitlines():
        line = raw_line.strip().lower()
        if line.startswith("user-agent:"):
            in_wildcard_group = line[len("user-agent:") :].strip() == "*"
            continue
        if not in_wildcard_group:
            continue
        if line.startswith("disallow:") and line[len("disallow:") :].strip() == "/":
            return RobotsRules(allowed=False, crawl_delay=max(crawl_delay, min_delay))
        if line.startswith("crawl-delay:"):
            try:
                crawl_delay = float(line[len("crawl-delay:") :].strip())
            except ValueError:
                continue

    return RobotsRules(allowed=True, crawl_delay=max(crawl_delay, min_delay))


@dataclass(slots=True)
class _CrawlRun:
    """State owned by a single crawl invocation."""

    max_depth: int
    max_pages: int
    frontier: deque[tuple[str, int]] = field(default_factory=deque)
    visited: set[str] = field(default_factory=set)
    queued: set[str] = field(default_factory=set)
    results: list[PageResult] = field(default_factory=list)

    def enqueue(self, url: str, depth: int) -> bool:
        if url in self.visited or url in self.queued:
            return False
        if len(self.frontier) + len(self.results) >= self.max_pages * 2:
            return False
        self.frontier.append((url, depth))
        self.queued.add(url)
        return True

    @property
    def done(self) -> bool:
        return not self.frontier or len(self.results) >= self.max_pages


class SiteCrawler:
    """Crawls one site breadth-first and returns extracted page text.

    The crawl aborts with no results when robots.txt disallows `/` for every
    user agent. A missing or unreachable robots.txt allows the crawl with the
    default delay. Individual page failures are recorded as unsuccessful
    `PageResult`s and never stop the crawl. Pages with fewer than
    `min_word_count` words are dropped silently and their links are not
    followed. The resolved crawl delay is slept after every page.
    """

    def __init__(
        self,
        config: CrawlConfig | None = None,
        *,
        client: httpx.Client | None = None,
        extractor: HtmlExtractor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or CrawlConfig()
        self.extractor = extractor or HtmlExtractor()
        self._client = client
        self._sleep = sleep

    def crawl(
        self,
        start_url: str,
        *,
        max_depth: int | None = None,
        max_pages: int | None = None,
        on_progress: Callable[[CrawlProgress], None] | None = None,
    ) -> list[PageResult]:
        if self._client is not None:
            return self._crawl(self._client, start_url, max_depth, max_pages, on_progress)
        with httpx.Client(headers={"User-Agent": self.config.user_agent}) as client:
            return self._crawl(client, start_url, max_depth, max_pages, on_progress)

    def fetch_robots(self, client: httpx.Client, origin: str) -> RobotsRules:
        defaults = RobotsRules(allowed=True, crawl_delay=self._floor(self.config.default_crawl_delay_seconds))
        try:
            response = client.get(
                f"{origin}/robots.txt",
                timeout=self.config.robots_timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": self.config.user_agent},
            )
        except httpx.HTTPError as exc:
            logger.info("robots.txt unavailable for %s (%s); crawling with defaults", origin, exc)
            return defaults
        if not response.is_success:
            return defaults
        return parse_robots_txt(
            response.text,
            default_delay=self.config.default_crawl_delay_seconds,
            min_delay=self.config.min_crawl_delay_seconds,
        )

    def _crawl(
        self,
        client: httpx.Client,
        start_url: str,
        max_depth: int | None,
        max_pages: int | None,
        on_progress: Callable[[CrawlProgress], None] | None,
    ) -> list[PageResult]:
        run = _CrawlRun(
            max_depth=self.config.max_depth if max_depth is None else max_depth,
            max_pages=self.config.max_pages if max_pages is None else max_pages,
        )
        start = canonicalize_url(start_url)
        origin = origin_of(start)

        robots = self.fetch_robots(client, origin)
        if not robots.allowed:
            logger.warning("Crawling %s disallowed by robots.txt", origin)
            return []
        logger.info("Crawling %s with delay %.2fs", origin, robots.crawl_delay)

        run.enqueue(start, 0)
        while not run.done:
            url, depth = run.frontier.popleft()
            run.queued.discard(url)
            if url in run.visited:
                continue
            run.visited.add(url)

            if on_progress is not None:
                on_progress(
                    CrawlProgress(
                        pages_processed=len(run.results),
                        pages_found=len(run.visited),
                        current_url=url,
                    )
                )

            self._visit(client, run, url, depth)
            self._sleep(robots.crawl_delay)

        logger.info("Crawl of %s complete: %d pages", origin, len(run.results))
        return run.results

    def _visit(self, client: httpx.Client, run: _CrawlRun, url: str, depth: int) -> None:
        logger.debug("Crawling (depth %d): %s", depth, url)
        try:
            response = client.get(
                url,
                timeout=self.config.page_timeout_seconds,
                follow_redirects=True,
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "text/html,application/xhtml+xml",
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Fetch error for %s: %s", url, exc)
            run.results.append(PageResult(url=url, success=False, error=f"Fetch failed: {exc}"))
            return

        if not response.is_success:
            run.results.append(
                PageResult(url=url, success=False, error=f"HTTP {response.status_code}")
            )
            return
        content_type = response.headers.get("content-type", "")
        if not any(kind in content_type for kind in _HTML_CONTENT_TYPES):
            run.results.append(
                PageResult(url=url, success=False, error=f"Non-HTML content type: {content_type or 'unknown'}")
            )
            return

        final_url = canonicalize_url(str(response.url))
        if final_url != url:
            if final_url in run.visited:
                logger.debug("Redirect from %s lands on visited %s", url, final_url)
                return
            run.visited.add(final_url)

        html = response.text
        extraction = self.extractor.extract(html, final_url)
        if not extraction.success:
            run.results.append(PageResult(url=final_url, success=False, error=extraction.error))
            return

        if extraction.word_count < self.config.min_word_count:
            logger.info("Skipping low-content page %s (%d words)", final_url, extraction.word_count)
            return
        run.results.append(
            PageResult(
                url=final_url,
                success=True,
                title=extraction.title,
                description=extraction.description,
                text=extraction.text,
                word_count=extraction.word_count,
            )
        )

        if depth < run.max_depth:
            for link in self.extractor.extract_links(html, final_url):
                run.enqueue(link, depth + 1)

    def _floor(self, delay: float) -> float:
        return max(delay, self.config.min_crawl_delay_seconds)

