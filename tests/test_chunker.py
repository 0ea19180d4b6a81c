"""Tests for paragraph-aware chunking"""

import pytest

from knowledge_search.indexing.chunker import ParagraphChunker, TextChunk, extract_heading


def make_paragraph(topic, length):
    sentences = []
    i = 0
    while len(" ".join(sentences)) < length:
        sentences.append(f"Sentence {i} explains how the {topic} behaves under load.")
        i += 1
    return " ".join(sentences)


class TestChunkerConfiguration:
    """Test constructor validation"""

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            ParagraphChunker(max_chunk_size=100, chunk_overlap=100)

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ParagraphChunker(max_chunk_size=0, chunk_overlap=0)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ValueError):
            ParagraphChunker(max_chunk_size=100, chunk_overlap=-1)


class TestParagraphChunker:
    """Test chunk boundaries, sizes and overlap"""

    @pytest.fixture
    def chunker(self):
        return ParagraphChunker(max_chunk_size=800, chunk_overlap=150)

    @pytest.fixture
    def long_document(self):
        """Two paragraphs of roughly 1000 characters each"""
        return make_paragraph("router", 1000) + "\n\n" + make_paragraph("scheduler", 1000)

    def test_empty_text_returns_no_chunks(self, chunker):
        assert chunker.chunk_text("") == []
        assert chunker.chunk_text("   \n\n\t ") == []

    def test_short_text_is_single_chunk(self, chunker):
        chunks = chunker.chunk_text("  A short note about caching.  \n")
        assert len(chunks) == 1
        assert chunks[0].text == "A short note about caching."
        assert chunks[0].chunk_num == 0

    def test_returns_text_chunks(self, chunker, long_document):
        chunks = chunker.chunk_text(long_document)
        assert len(chunks) >= 3
        assert all(isinstance(c, TextChunk) for c in chunks)
        assert [c.chunk_num for c in chunks] == list(range(len(chunks)))

    def test_chunk_size_respects_limit(self, chunker, long_document):
        for chunk in chunker.chunk_text(long_document):
            assert len(chunk.text) <= 800

    def test_offsets_match_source(self, chunker, long_document):
        for chunk in chunker.chunk_text(long_document):
            assert long_document[chunk.start_offset:chunk.end_offset] == chunk.text

    def test_consecutive_chunks_overlap_exactly(self, chunker, long_document):
        chunks = chunker.chunk_text(long_document)
        for prev, current in zip(chunks, chunks[1:]):
            overlap = min(150, len(prev.text))
            assert current.start_offset == prev.end_offset - overlap
            assert current.text[:overlap] == prev.text[-overlap:]

    def test_chunks_cover_whole_text(self, chunker, long_document):
        chunks = chunker.chunk_text(long_document)
        assert chunks[0].start_offset == 0
        assert chunks[-1].end_offset == len(long_document)
        for prev, current in zip(chunks, chunks[1:]):
            assert current.start_offset < prev.end_offset <= current.end_offset

    def test_paragraphs_are_packed_together(self, chunker):
        first = make_paragraph("cache", 280)
        second = make_paragraph("queue", 280)
        text = first + "\n\n" + second
        chunks = chunker.chunk_text(text)
        assert len(chunks) == 1
        assert chunks[0].text == text

    def test_boundary_prefers_paragraph_break(self, chunker):
        paragraphs = [make_paragraph(topic, 300) for topic in ("cache", "queue", "index")]
        text = "\n\n".join(paragraphs)
        chunks = chunker.chunk_text(text)

        assert len(chunks) == 2
        assert chunks[0].text == paragraphs[0] + "\n\n" + paragraphs[1] + "\n\n"
        body = text[chunks[0].end_offset:chunks[1].end_offset]
        assert body == paragraphs[2]

    def test_small_previous_chunk_is_whole_overlap(self):
        chunker = ParagraphChunker(max_chunk_size=200, chunk_overlap=150)
        text = "Tiny.\n\n" + make_paragraph("pool", 40) + "\n\n" + make_paragraph("lock", 40)
        chunks = chunker.chunk_text(text)
        for prev, current in zip(chunks, chunks[1:]):
            overlap = min(150, len(prev.text))
            assert current.text[:overlap] == prev.text[-overlap:]
            assert len(current.text) <= 200

    def test_hard_split_never_cuts_inside_a_word(self):
        chunker = ParagraphChunker(max_chunk_size=120, chunk_overlap=20)
        text = " ".join(f"token{i}" for i in range(200))
        chunks = chunker.chunk_text(text)

        assert len(chunks) > 1
        for prev in chunks[:-1]:
            boundary = prev.end_offset
            assert text[boundary - 1].isspace() or text[boundary].isspace()
        for chunk in chunks:
            assert len(chunk.text) <= 120

    def test_unsplittable_token_passes_through_whole(self, chunker):
        token = "x" * 1200
        text = "Leading words here. " + token + " trailing words."
        chunks = chunker.chunk_text(text)

        assert any(token in chunk.text for chunk in chunks)
        oversized = [chunk for chunk in chunks if len(chunk.text) > 800]
        assert len(oversized) == 1

    def test_token_longer_than_body_still_fits_limit(self, chunker):
        token = "y" * 700
        text = "Intro words before the token. " * 10 + token + " tail words after."
        chunks = chunker.chunk_text(text)

        assert all(len(chunk.text) <= 800 for chunk in chunks)
        token_chunk = next(chunk for chunk in chunks if token in chunk.text)
        assert len(token_chunk.text) == 800
        for chunk in chunks:
            assert text[chunk.start_offset:chunk.end_offset] == chunk.text

    def test_page_hints_from_form_feeds(self):
        chunker = ParagraphChunker(max_chunk_size=100, chunk_overlap=10)
        text = make_paragraph("page one", 80) + "\n\n\f" + make_paragraph("page two", 80)
        chunks = chunker.chunk_text(text)
        assert chunks[0].page == 1
        assert chunks[-1].page == 2

    def test_no_page_hints_without_form_feeds(self, chunker, long_document):
        assert all(chunk.page is None for chunk in chunker.chunk_text(long_document))


class TestExtractHeading:
    """Test section heading inference"""

    def test_markdown_heading(self):
        assert extract_heading("## Installation\n\nRun the installer.") == "Installation"

    def test_capitalized_short_line(self):
        assert extract_heading("Configuration\nSet the flags below.") == "Configuration"

    def test_lowercase_line_is_not_heading(self):
        assert extract_heading("continued from the previous page") is None

    def test_long_line_is_not_heading(self):
        assert extract_heading("A" + "b" * 150) is None
