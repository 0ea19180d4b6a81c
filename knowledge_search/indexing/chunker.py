"""Paragraph-aware character chunking with exact overlap"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import re

from ..utils.logger import setup_logger

logger = setup_logger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_BREAK = re.compile(r"(?<=[.!?])[\"')\]]*\s+")
WHITESPACE = re.compile(r"\s+")
FORM_FEED = "\f"

MAX_HEADING_LENGTH = 120

Span = Tuple[int, int]


@dataclass
class TextChunk:
    """A chunk of extracted text with its absolute position in the source"""

    text: str
    chunk_num: int
    start_offset: int
    end_offset: int
    section: Optional[str] = None
    page: Optional[int] = None

    @property
    def length(self) -> int:
        return self.end_offset - self.start_offset


class ParagraphChunker:
    """
    Split text into bounded, overlapping chunks.

    Boundaries prefer blank-line paragraph breaks, then sentence ends, then
    whitespace. The body of every chunk is at most ``max_chunk_size -
    chunk_overlap`` characters; the tail of the previous chunk is then
    prepended so consecutive chunks share exactly ``chunk_overlap`` characters
    (or the whole previous chunk when it is shorter than that). A token longer
    than the body size but within ``max_chunk_size`` gets a shortened overlap.
    """

    def __init__(self, max_chunk_size: int = 800, chunk_overlap: int = 150):
        """
        Initialize chunker

        Args:
            max_chunk_size: Maximum chunk length in characters
            chunk_overlap: Characters shared between consecutive chunks

        Raises:
            ValueError: If the size/overlap combination cannot produce chunks
        """
        if max_chunk_size <= 0:
            raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be non-negative, got {chunk_overlap}")
        if chunk_overlap >= max_chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than "
                f"max_chunk_size ({max_chunk_size})"
            )
        self.max_chunk_size = max_chunk_size
        self.chunk_overlap = chunk_overlap
        self.body_size = max_chunk_size - chunk_overlap

    def chunk_text(self, text: str) -> List[TextChunk]:
        """
        Chunk a document's extracted text.

        Args:
            text: Extracted plain text

        Returns:
            Chunks in document order; empty list for empty or whitespace-only text
        """
        if not text or not text.strip():
            return []

        start = len(text) - len(text.lstrip())
        end = len(text.rstrip())

        units = self._split_units(text, start, end)
        segments = self._pack_units(units)

        chunks = []
        has_pages = FORM_FEED in text
        chunk_start = start
        for chunk_num, (seg_start, seg_end) in enumerate(segments):
            if chunk_num > 0:
                chunk_start = max(chunk_start, self._overlap_start(seg_start, seg_end))
            chunks.append(
                TextChunk(
                    text=text[chunk_start:seg_end],
                    chunk_num=chunk_num,
                    start_offset=chunk_start,
                    end_offset=seg_end,
                    section=extract_heading(text[seg_start:seg_end]),
                    page=text.count(FORM_FEED, 0, seg_start) + 1 if has_pages else None,
                )
            )

        logger.debug(
            f"Chunked {end - start} chars into {len(chunks)} chunks "
            f"(max={self.max_chunk_size}, overlap={self.chunk_overlap})"
        )
        return chunks

    def _overlap_start(self, seg_start: int, seg_end: int) -> int:
        """
        Where a chunk starts once the overlap is prepended to its body.

        A body longer than the body size (an unsplittable token) gets only as
        much overlap as still fits in ``max_chunk_size``; a token longer than
        ``max_chunk_size`` itself keeps the full overlap.
        """
        start = seg_start - self.chunk_overlap
        if seg_end - seg_start <= self.max_chunk_size:
            start = max(start, seg_end - self.max_chunk_size)
        return start

    def _split_units(self, text: str, start: int, end: int) -> List[Span]:
        """Contiguous spans covering [start, end), each within the body size where possible"""
        units = []
        for para in _split_on(PARAGRAPH_BREAK, text, start, end):
            if para[1] - para[0] <= self.body_size:
                units.append(para)
                continue
            for sentence in _split_on(SENTENCE_BREAK, text, *para):
                if sentence[1] - sentence[0] <= self.body_size:
                    units.append(sentence)
                else:
                    units.extend(self._hard_split(text, *sentence))
        return units

    def _hard_split(self, text: str, start: int, end: int) -> List[Span]:
        """Split at whitespace; a token longer than the body size becomes its own span"""
        pieces = []
        pos = start
        while end - pos > self.body_size:
            cut = None
            for i in range(pos + self.body_size, pos, -1):
                if text[i].isspace():
                    cut = i
                    break
            if cut is None:
                match = WHITESPACE.search(text, pos + self.body_size, end)
                cut = match.start() if match else end
                logger.debug(f"Unsplittable token of {cut - pos} chars at offset {pos}")
            pieces.append((pos, cut))
            pos = cut
        if pos < end:
            pieces.append((pos, end))
        return pieces

    def _pack_units(self, units: List[Span]) -> List[Span]:
        """Greedily merge adjacent units while the merged span fits the body size"""
        segments = []
        seg_start, seg_end = units[0]
        for unit_start, unit_end in units[1:]:
            if unit_end - seg_start <= self.body_size:
                seg_end = unit_end
            else:
                segments.append((seg_start, seg_end))
                seg_start, seg_end = unit_start, unit_end
        segments.append((seg_start, seg_end))
        return segments


def _split_on(pattern: re.Pattern, text: str, start: int, end: int) -> List[Span]:
    """Split [start, end) after each separator match, keeping separators on the left span"""
    spans = []
    prev = start
    for match in pattern.finditer(text, start, end):
        if match.end() >= end:
            break
        spans.append((prev, match.end()))
        prev = match.end()
    spans.append((prev, end))
    return spans


def extract_heading(text: str) -> Optional[str]:
    """
    Return the first line as a section heading when it looks like one.

    A heading is a short first line that is a markdown header or starts with
    an uppercase letter.
    """
    first_line = text.lstrip().split("\n", 1)[0].strip()
    if not first_line or len(first_line) > MAX_HEADING_LENGTH:
        return None
    if first_line.startswith("#"):
        return first_line.lstrip("#").strip() or None
    if first_line[0].isupper():
        return first_line
    return None
