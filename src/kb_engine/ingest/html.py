"""Clean-text and link extraction from HTML pages."""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from kb_engine.ingest.urls import canonicalize_url, is_crawlable
from kb_engine.types import HtmlExtraction

logger = logging.getLogger(__name__)

_NOISE_SELECTOR = ", ".join(
    [
        "script", "style", "noscript", "iframe", "svg", "canvas",
        "nav", "header", "footer", "aside",
        "form", "input", "button",
        '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]',
        ".nav", ".navigation", ".header", ".footer", ".sidebar",
        ".menu", ".ad", ".advertisement", ".social-share",
        ".cookie-banner", ".popup", ".modal",
    ]
)
_HIDDEN_SELECTOR = '[style*="display: none"], [style*="display:none"], [hidden]'
_CONTENT_SELECTOR = 'main, article, [role="main"], .content, .main-content, #content, #main'
_STRUCTURE_SELECTOR = "h1, h2, h3, h4, h5, h6, p, li, td, th, blockquote, pre, code"
_SKIPPED_HREF_PREFIXES = ("mailto:", "tel:", "javascript:", "#")

_MIN_FRAGMENT_CHARS = 10
_MIN_STRUCTURED_FRAGMENTS = 3


class HtmlExtractor:
    """Extracts readable text, title and description from a page.

    Navigation, ads, cookie banners, forms and hidden elements are removed.
    A semantic content container (`main`, `article`, ...) is preferred over
    `body`. Headings become `#`-prefixed lines, list items `• ` lines, quotes
    `> ` lines and code blocks fenced blocks. Fewer than three structured
    fragments means the page does not use semantic tags, so the whole
    container text is used instead, whitespace collapsed.
    """

    def __init__(self, parser: str = "html.parser") -> None:
        self.parser = parser

    def extract(self, html: str, base_url: str | None = None) -> HtmlExtraction:
        try:
            soup = BeautifulSoup(html, self.parser)
            title = _title_of(soup)
            description = _description_of(soup)

            for selector in (_NOISE_SELECTOR, _HIDDEN_SELECTOR):
                for element in soup.select(selector):
                    if not element.decomposed:
                        element.decompose()

            content = soup.select_one(_CONTENT_SELECTOR) or soup.body or soup
            parts = self._structured_parts(content)
            has_structure = bool(parts)

            if len(parts) < _MIN_STRUCTURED_FRAGMENTS:
                flat = re.sub(r"\s+", " ", content.get_text()).strip()
                if len(flat) > len("\n".join(parts)):
                    parts = [flat]
                    has_structure = False

            text = "\n\n".join(dict.fromkeys(parts))
        except Exception as exc:  # noqa: BLE001 - parser failures become a failed result
            logger.warning("HTML extraction failed for %s: %s", base_url or "<html>", exc)
            return HtmlExtraction(success=False, error=str(exc) or "HTML extraction failed")

        return HtmlExtraction(
            success=True,
            text=text,
            title=title,
            description=description,
            word_count=len(text.split()),
            has_structure=has_structure,
        )

    def extract_links(self, html: str, base_url: str) -> list[str]:
        """Same-host, canonical, crawlable links in document order, deduplicated."""

        soup = BeautifulSoup(html, self.parser)
        base_host = urlsplit(base_url).hostname
        links: dict[str, None] = {}

        for anchor in soup.select("a[href]"):
            href = str(anchor.get("href") or "").strip()
            if not href or href.startswith(_SKIPPED_HREF_PREFIXES):
                continue
            try:
                absolute = urljoin(base_url, href)
                host = urlsplit(absolute).hostname
            except ValueError:
                continue
            if host != base_host:
                continue
            normalized = canonicalize_url(absolute)
            if is_crawlable(normalized):
                links[normalized] = None

        return list(links)

    @staticmethod
    def _structured_parts(content: Tag | BeautifulSoup) -> list[str]:
        parts: list[str] = []
        for element in content.select(_STRUCTURE_SELECTOR):
            text = element.get_text().strip()
            name = element.name
            if name and name[0] == "h" and name[1:].isdigit():
                if text:
                    parts.append(f"{'#' * int(name[1:])} {text}")
                continue
            if len(text) <= _MIN_FRAGMENT_CHARS:
                continue
            if name == "li":
                parts.append(f"• {text}")
            elif name == "blockquote":
                parts.append(f"> {text}")
            elif name in {"pre", "code"}:
                parts.append(f"```\n{text}\n```")
            else:
                parts.append(text)
        return parts


def _title_of(soup: BeautifulSoup) -> str | None:
    if soup.title is not None:
        title = soup.title.get_text().strip()
        if title:
            return title
    heading = soup.find("h1")
    if heading is not None:
        return heading.get_text().strip() or None
    return None


def _description_of(soup: BeautifulSoup) -> str | None:
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = soup.find("meta", attrs=attrs)
        if meta is not None and meta.get("content"):
            return str(meta["content"])
    return None
