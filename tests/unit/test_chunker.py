from kb_engine.config import ChunkingConfig
from kb_engine.ingest.boundaries import RegexBoundaryDetector
from kb_engine.ingest.chunker import (
    SectionChunker,
    chunk_text,
    chunk_text_with_context,
    estimate_tokens,
)


def _review_paragraphs(count: int, sentences_per_paragraph: int = 5) -> list[str]:
    paragraphs = []
    number = 0
    for _ in range(count):
        sentences = []
        for _ in range(sentences_per_paragraph):
            sentences.append(f"Access review {number} happens every quarter for systems.")
            number += 1
        paragraphs.append(" ".join(sentences))
    return paragraphs


def test_estimate_tokens_uses_word_heuristic() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("one two three") == 4
    assert estimate_tokens("a b c d e f g h i j") == 13


def test_chunk_indices_are_contiguous_and_within_budget() -> None:
    config = ChunkingConfig(max_tokens=200, min_tokens=50, overlap_tokens=30)
    chunks = SectionChunker(config).chunk("\n\n".join(_review_paragraphs(12)))

    assert len(chunks) >= 3
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert all(chunk.token_count <= 200 for chunk in chunks)
    assert all(chunk.token_count >= 50 for chunk in chunks)


def test_overlap_seed_is_sentence_suffix_of_previous_chunk() -> None:
    config = ChunkingConfig(max_tokens=200, min_tokens=50, overlap_tokens=30)
    chunks = SectionChunker(config).chunk("\n\n".join(_review_paragraphs(12)))

    for previous, current in zip(chunks, chunks[1:]):
        seed = current.content.split("\n\n")[0]
        assert previous.content.endswith(seed)
        assert estimate_tokens(seed) <= 30
        assert seed.endswith(".")


def test_zero_overlap_disables_seeding() -> None:
    config = ChunkingConfig(max_tokens=200, min_tokens=50, overlap_tokens=0)
    paragraphs = _review_paragraphs(6)
    chunks = SectionChunker(config).chunk("\n\n".join(paragraphs))

    assert chunks[1].content.split("\n\n")[0] == paragraphs[3]


def test_empty_text_yields_no_chunks() -> None:
    assert chunk_text("") == []
    assert chunk_text("   \n\n  ") == []


def test_single_small_document_keeps_undersized_chunk() -> None:
    chunks = chunk_text("Only five words live here")

    assert len(chunks) == 1
    assert chunks[0].token_count == 7
    assert chunks[0].section_title is None


def test_undersized_tail_merges_into_previous_chunk() -> None:
    config = ChunkingConfig(max_tokens=100, min_tokens=50, overlap_tokens=0)
    first = " ".join(f"alpha{i}" for i in range(70))
    tail = " ".join(f"omega{i}" for i in range(20))

    chunks = SectionChunker(config).chunk(f"{first}\n\n{tail}")

    assert len(chunks) == 1
    assert chunks[0].content == f"{first}\n\n{tail}"
    # Merged tails may exceed max_tokens.
    assert chunks[0].token_count == 91 + 26


def test_undersized_opening_carries_forward_into_next_chunk() -> None:
    config = ChunkingConfig(max_tokens=100, min_tokens=50, overlap_tokens=0)
    intro = " ".join(f"intro{i}" for i in range(21))
    body = " ".join(f"body{i}" for i in range(70))
    more = " ".join(f"more{i}" for i in range(70))

    chunks = SectionChunker(config).chunk(f"{intro}\n\n{body}\n\n{more}")

    assert [chunk.token_count for chunk in chunks] == [28 + 91, 91]
    assert chunks[0].content == f"{intro}\n\n{body}"
    assert chunks[1].content == more
    assert all(chunk.token_count >= 50 for chunk in chunks)


def test_undersized_opening_joins_first_piece_of_oversized_paragraph() -> None:
    config = ChunkingConfig(max_tokens=100, min_tokens=50, overlap_tokens=0)
    intro = " ".join(f"intro{i}" for i in range(10))
    rules = " ".join(f"Rule {i} keeps records." for i in range(32))

    chunks = SectionChunker(config).chunk(f"{intro}\n\n{rules}")

    assert [chunk.token_count for chunk in chunks] == [13 + 96, 96]
    assert chunks[0].content.startswith(f"{intro}\n\nRule 0 keeps records.")
    assert chunks[1].content.startswith("Rule 16 keeps records.")


def test_overlap_seed_is_dropped_when_it_would_overflow() -> None:
    config = ChunkingConfig(max_tokens=100, min_tokens=50, overlap_tokens=30)
    first = " ".join(f"a{i}" for i in range(46)) + ". Keep the seed."
    fits = " ".join(f"b{i}" for i in range(70))
    overflows = " ".join(f"c{i}" for i in range(75))

    seeded = SectionChunker(config).chunk(f"{first}\n\n{fits}")
    unseeded = SectionChunker(config).chunk(f"{first}\n\n{overflows}")

    assert seeded[1].content == f"Keep the seed.\n\n{fits}"
    assert unseeded[1].content == overflows
    assert unseeded[1].token_count == 98


def test_headings_set_section_titles() -> None:
    text = (
        "## Billing\n\nInvoices are sent monthly to the account owner.\n\n"
        "## Refunds\n\nRefunds are processed within ten business days."
    )
    config = ChunkingConfig(max_tokens=12, min_tokens=1, overlap_tokens=0)

    chunks = SectionChunker(config).chunk(text)

    assert [chunk.section_title for chunk in chunks] == ["Billing", "Refunds"]
    assert chunks[1].content == "Refunds are processed within ten business days."


def test_lines_of_a_paragraph_are_joined_with_spaces() -> None:
    chunks = chunk_text("first line\nsecond line\n\nthird line")

    assert chunks[0].content == "first line second line\n\nthird line"


def test_oversized_paragraph_is_split_by_sentences_under_second_heading() -> None:
    overview = "\n\n".join(" ".join(["scope"] * 99) + "." for _ in range(10))
    details = " ".join(
        f"Detail sentence number {i} explains one retention rule clearly here."
        for i in range(200)
    )
    text = f"## Overview\n\n{overview}\n\n## Details\n\n{details}"
    assert len(text.split()) >= 3000

    chunks = chunk_text(text)
    detail_chunks = [chunk for chunk in chunks if chunk.section_title == "Details"]

    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert chunks[0].section_title == "Overview"
    assert len(detail_chunks) >= 2
    assert all(chunk.token_count <= 1500 for chunk in detail_chunks)
    assert all(chunk.content.startswith("Detail sentence") for chunk in detail_chunks)
    assert all(chunk.content.endswith("clearly here.") for chunk in detail_chunks)
    assert " ".join(chunk.content for chunk in detail_chunks) == details


def test_chunk_text_with_context_prefixes_document_and_section() -> None:
    plain = chunk_text("## Security\n\nKeys rotate every ninety days.")
    chunks = chunk_text_with_context("## Security\n\nKeys rotate every ninety days.", "Handbook")

    assert chunks[0].content == (
        "Document: Handbook\nSection: Security\n\nKeys rotate every ninety days."
    )
    assert chunks[0].token_count == plain[0].token_count + estimate_tokens(
        "Document: Handbook\nSection: Security\n"
    )


class _ColonHeadings(RegexBoundaryDetector):
    def heading_title(self, line: str) -> str | None:
        if line.startswith("Title:"):
            return line[len("Title:") :].strip()
        return None


def test_boundary_detector_is_pluggable() -> None:
    text = "Title: Onboarding\n\n## not a heading here\n\nNew staff get a laptop."
    chunks = SectionChunker(boundaries=_ColonHeadings()).chunk(text)

    assert chunks[0].section_title == "Onboarding"
    assert chunks[0].content.startswith("## not a heading here")
