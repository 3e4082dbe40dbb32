"""Mime-type routed extractors for text-based source files."""

from __future__ import annotations

import csv
import logging
import re
from abc import ABC, abstractmethod
from typing import Protocol

from bs4 import BeautifulSoup

from kb_engine.types import ExtractionResult

logger = logging.getLogger(__name__)

TEXT_PLAIN = "text/plain"
TEXT_MARKDOWN = "text/markdown"
TEXT_CSV = "text/csv"
TEXT_HTML = "text/html"

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_STRUCTURE_MARKERS = (
    re.compile(r"^#{1,6}\s+", re.MULTILINE),
    re.compile(r"^[A-Z][A-Z\s]{5,}$", re.MULTILINE),
    re.compile(r"^\s*\d+[.)]\s+", re.MULTILINE),
    re.compile(r"^\s*[-*•]\s+", re.MULTILINE),
)


class FileSource(Protocol):
    """Downloads a stored file as text (e.g. a Drive export)."""

    def read_text(self, file_id: str) -> str:
        """Return the raw file contents."""


class FileExtractor(ABC):
    """Turns raw file contents into chunkable text."""

    mime_types: tuple[str, ...] = ()

    @abstractmethod
    def extract_text(self, raw: str) -> str:
        """Normalize raw contents."""

    def has_structure(self, text: str) -> bool:
        return True


class PlainTextExtractor(FileExtractor):
    mime_types = (TEXT_PLAIN,)

    def extract_text(self, raw: str) -> str:
        text = _normalize_newlines(raw)
        text = _EXCESS_BLANK_LINES.sub("\n\n", text)
        return "\n".join(line.rstrip() for line in text.split("\n")).strip()

    def has_structure(self, text: str) -> bool:
        return any(marker.search(text) for marker in _STRUCTURE_MARKERS)


class MarkdownExtractor(FileExtractor):
    """Markdown is already readable; only line endings and blank runs change."""

    mime_types = (TEXT_MARKDOWN,)

    def extract_text(self, raw: str) -> str:
        return _EXCESS_BLANK_LINES.sub("\n\n", _normalize_newlines(raw)).strip()


class CsvExtractor(FileExtractor):
    """Renders each data row as `Row n: header=value, ...`, skipping empty cells."""

    mime_types = (TEXT_CSV,)

    def extract_text(self, raw: str) -> str:
        lines = [line for line in _normalize_newlines(raw).split("\n") if line.strip()]
        if not lines:
            return ""

        rows = list(csv.reader(lines, skipinitialspace=True))
        headers = [header.strip() for header in rows[0]]
        formatted: list[str] = []
        for number, values in enumerate(rows[1:], start=1):
            pairs = [
                f"{header}={value.strip()}"
                for header, value in zip(headers, values)
                if value.strip()
            ]
            if pairs:
                formatted.append(f"Row {number}: {', '.join(pairs)}")
        return "\n".join(formatted)


class HtmlFileExtractor(FileExtractor):
    """Stored HTML files: scripts and styles dropped, block elements on their own lines."""

    mime_types = (TEXT_HTML,)

    def __init__(self, parser: str = "html.parser") -> None:
        self.parser = parser

    def extract_text(self, raw: str) -> str:
        soup = BeautifulSoup(raw, self.parser)
        for element in soup(["script", "style"]):
            element.decompose()
        lines = (re.sub(r"\s+", " ", line).strip() for line in soup.get_text("\n").split("\n"))
        text = "\n".join(line for line in lines if line)
        return text.strip()


class ExtractorRegistry:
    """Maps mime type to extractor implementation."""

    def __init__(
        self,
        source: FileSource,
        extractors: list[FileExtractor] | None = None,
    ) -> None:
        self._source = source
        self._extractors: dict[str, FileExtractor] = {}
        for extractor in extractors or [
            PlainTextExtractor(),
            MarkdownExtractor(),
            CsvExtractor(),
            HtmlFileExtractor(),
        ]:
            self.register(extractor)

    def register(self, extractor: FileExtractor) -> None:
        for mime_type in extractor.mime_types:
            self._extractors[mime_type.lower()] = extractor

    def supports(self, mime_type: str) -> bool:
        return mime_type.lower() in self._extractors

    def extract(self, file_id: str, mime_type: str) -> ExtractionResult:
        extractor = self._extractors.get(mime_type.lower())
        if extractor is None:
            return ExtractionResult(success=False, error=f"Unsupported MIME type: {mime_type}")

        try:
            text = extractor.extract_text(self._source.read_text(file_id))
        except Exception as exc:  # noqa: BLE001 - source failures become a failed result
            logger.warning("Extraction of %s (%s) failed: %s", file_id, mime_type, exc)
            return ExtractionResult(success=False, error=str(exc) or "Extraction failed")

        return ExtractionResult(
            success=True,
            text=text,
            metadata={
                "word_count": len(text.split()),
                "has_structure": extractor.has_structure(text),
            },
        )


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")
