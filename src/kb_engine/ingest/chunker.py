"""Section-aware paragraph chunking with sentence overlap."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from kb_engine.config import ChunkingConfig
from kb_engine.ingest.boundaries import BoundaryDetector, RegexBoundaryDetector
from kb_engine.types import TextChunk

_TOKENS_PER_WORD = 1.3
_PARAGRAPH_JOIN = "\n\n"


def estimate_tokens(text: str) -> int:
    """Heuristic token count: `ceil(words * 1.3)`."""
    return math.ceil(len(text.split()) * _TOKENS_PER_WORD)


@dataclass(slots=True)
class _Section:
    title: str | None
    paragraphs: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _Buffer:
    paragraphs: list[str] = field(default_factory=list)
    tokens: int = 0
    section_title: str | None = None


class SectionChunker:
    """Splits extracted text into token-bounded chunks.

    Design notes:
    1. Sections first.
       Lines are scanned for headings (see `BoundaryDetector`). Each section
       holds an optional title and its blank-line-delimited paragraphs; the
       lines of a paragraph are joined with single spaces.

    2. Greedy paragraph packing.
       Paragraphs are accumulated into a buffer until the next one would push
       it past `max_tokens`. The buffer is then flushed and the new buffer is
       seeded with an overlap tail: whole sentences taken backward from the
       end of the flushed buffer while they fit in `overlap_tokens`.

    3. Undersized flushes merge.
       A buffer below `min_tokens` is appended to the previous chunk instead
       of becoming a tiny fragment. With no previous chunk it is carried
       forward into the next one. Either way the merged chunk can end up
       larger than `max_tokens`; that is accepted.

    4. Oversized paragraphs.
       A paragraph larger than `max_tokens` on its own is split at sentence
       boundaries into sub-chunks capped at `max_tokens`, without overlap.
       A leading undersized buffer is prepended to the first sub-chunk.

    A chunk's section title is the section of the last paragraph added to it.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        boundaries: BoundaryDetector | None = None,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.boundaries = boundaries or RegexBoundaryDetector()

    def chunk(self, text: str) -> list[TextChunk]:
        """Chunk `text`; empty or whitespace-only input yields no chunks."""

        if not text.strip():
            return []

        chunks: list[TextChunk] = []
        buffer = _Buffer()

        for section in self._split_sections(text):
            for paragraph in section.paragraphs:
                paragraph_tokens = estimate_tokens(paragraph)

                if paragraph_tokens > self.config.max_tokens:
                    pieces = self._split_large_paragraph(paragraph)
                    if self._is_leading_fragment(chunks, buffer):
                        content, tokens = pieces[0]
                        pieces[0] = (
                            _PARAGRAPH_JOIN.join([*buffer.paragraphs, content]),
                            buffer.tokens + tokens,
                        )
                    elif buffer.paragraphs:
                        self._flush(chunks, buffer)
                    buffer = _Buffer()
                    for content, tokens in pieces:
                        chunks.append(
                            TextChunk(
                                content=content,
                                index=len(chunks),
                                section_title=section.title,
                                token_count=tokens,
                            )
                        )
                    continue

                if buffer.tokens and buffer.tokens + paragraph_tokens > self.config.max_tokens:
                    if self._is_leading_fragment(chunks, buffer):
                        buffer.paragraphs.append(paragraph)
                        buffer.tokens += paragraph_tokens
                        buffer.section_title = section.title
                        continue
                    self._flush(chunks, buffer)
                    buffer = self._seeded_buffer(buffer, paragraph, section.title)
                    continue

                buffer.paragraphs.append(paragraph)
                buffer.tokens += paragraph_tokens
                buffer.section_title = section.title

        if buffer.paragraphs:
            self._flush(chunks, buffer)

        return chunks

    def overlap_tail(self, paragraphs: list[str]) -> str | None:
        """Sentences from the end of the last paragraph that fit the overlap budget."""

        if not paragraphs or self.config.overlap_tokens == 0:
            return None

        sentences = self.boundaries.split_sentences(paragraphs[-1])
        tail: list[str] = []
        tokens = 0
        for sentence in reversed(sentences):
            sentence_tokens = estimate_tokens(sentence)
            if tokens + sentence_tokens > self.config.overlap_tokens:
                break
            tail.insert(0, sentence)
            tokens += sentence_tokens
        return " ".join(tail) if tail else None

    def _seeded_buffer(self, flushed: _Buffer, paragraph: str, title: str | None) -> _Buffer:
        overlap = self.overlap_tail(flushed.paragraphs)
        paragraphs = [overlap, paragraph] if overlap else [paragraph]
        tokens = estimate_tokens(_PARAGRAPH_JOIN.join(paragraphs))
        if overlap and tokens > self.config.max_tokens:
            # The seed never pushes a fitting paragraph over the budget.
            paragraphs = [paragraph]
            tokens = estimate_tokens(paragraph)
        return _Buffer(paragraphs=paragraphs, tokens=tokens, section_title=title)

    def _is_leading_fragment(self, chunks: list[TextChunk], buffer: _Buffer) -> bool:
        return not chunks and bool(buffer.paragraphs) and buffer.tokens < self.config.min_tokens

    def _flush(self, chunks: list[TextChunk], buffer: _Buffer) -> None:
        content = _PARAGRAPH_JOIN.join(buffer.paragraphs)
        if buffer.tokens < self.config.min_tokens and chunks:
            previous = chunks[-1]
            previous.content += _PARAGRAPH_JOIN + content
            previous.token_count += buffer.tokens
            return
        chunks.append(
            TextChunk(
                content=content,
                index=len(chunks),
                section_title=buffer.section_title,
                token_count=buffer.tokens,
            )
        )

    def _split_large_paragraph(self, paragraph: str) -> list[tuple[str, int]]:
        pieces: list[tuple[str, int]] = []
        current: list[str] = []
        current_tokens = 0

        for sentence in self.boundaries.split_sentences(paragraph):
            sentence_tokens = estimate_tokens(sentence)
            if current_tokens + sentence_tokens > self.config.max_tokens and current:
                pieces.append((" ".join(current), current_tokens))
                current = []
                current_tokens = 0
            current.append(sentence)
            current_tokens += sentence_tokens

        if current:
            pieces.append((" ".join(current), current_tokens))
        return pieces

    def _split_sections(self, text: str) -> list[_Section]:
        sections: list[_Section] = []
        section = _Section(title=None)
        lines: list[str] = []

        def end_paragraph() -> None:
            if lines:
                section.paragraphs.append(" ".join(lines))
                lines.clear()

        for raw_line in text.split("\n"):
            line = raw_line.strip()
            title = self.boundaries.heading_title(line) if line else None

            if title is not None:
                end_paragraph()
                if section.paragraphs or section.title:
                    sections.append(section)
                section = _Section(title=title)
            elif not line:
                end_paragraph()
            else:
                lines.append(line)

        end_paragraph()
        if section.paragraphs or section.title:
            sections.append(section)
        return sections


def chunk_text(text: str, config: ChunkingConfig | None = None) -> list[TextChunk]:
    return SectionChunker(config).chunk(text)


def chunk_text_with_context(
    text: str,
    document_title: str,
    config: ChunkingConfig | None = None,
) -> list[TextChunk]:
    """Chunk text and prefix every chunk with `Document:`/`Section:` lines."""

    chunks = chunk_text(text, config)
    for chunk in chunks:
        prefix = ""
        if document_title:
            prefix += f"Document: {document_title}\n"
        if chunk.section_title:
            prefix += f"Section: {chunk.section_title}\n"
        if prefix:
            chunk.content = prefix + "\n" + chunk.content
            chunk.token_count += estimate_tokens(prefix)
    return chunks
