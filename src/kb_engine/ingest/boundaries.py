"""Heading and sentence boundary detection used by the chunker."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

_MARKDOWN_HEADING = re.compile(r"^#+\s+(.+)$")
_ALL_CAPS_HEADING = re.compile(r"^([A-Z][A-Z\s]{5,})$")
_NUMBERED_HEADING = re.compile(r"^(\d+\.?\s+[A-Z].+)$")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


class BoundaryDetector(ABC):
    """Strategy interface for finding section headings and sentence ends."""

    @abstractmethod
    def heading_title(self, line: str) -> str | None:
        """Return the heading text if `line` (already stripped) is a heading."""

    @abstractmethod
    def split_sentences(self, text: str) -> list[str]:
        """Split text into non-empty sentences, preserving order."""


class RegexBoundaryDetector(BoundaryDetector):
    """Regex heuristics: markdown `#` lines, ALL-CAPS lines, numbered headings.

    Sentences end after `.`, `!` or `?` followed by whitespace.
    """

    heading_patterns: tuple[re.Pattern[str], ...] = (
        _MARKDOWN_HEADING,
        _ALL_CAPS_HEADING,
        _NUMBERED_HEADING,
    )

    def heading_title(self, line: str) -> str | None:
        for pattern in self.heading_patterns:
            match = pattern.match(line)
            if match:
                return match.group(1).strip() or line
        return None

    def split_sentences(self, text: str) -> list[str]:
        return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]
