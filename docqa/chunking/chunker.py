"""
Layered Chunker
----------------
Splits extracted document text into retrieval-sized chunks.  Strategies are
layered; each one feeds candidates through the same minimum-length filter:

  1. PAGE + PARAGRAPH (pdf only):
      split on the "Page <n>:" markers written by the extractor, then on
      blank lines inside each page.  Chunks remember their page segment and
      the paragraph offsets inside it.

  2. PARAGRAPH (docx, image, text):
      blank-line split over the whole text, offsets relative to the text.

  3. SENTENCE GROUP (densification):
      when fewer than MIN_CHUNKS chunks came out of a text longer than
      DENSIFY_THRESHOLD characters, the text is re-chunked from scratch by
      grouping consecutive sentences into chunks of at most
      MAX_GROUP_CHARS characters.  Short-paragraph documents would otherwise
      be represented by a handful of oversized vectors.

  4. FALLBACK:
      a document always ends up with exactly one chunk when nothing else
      survived, holding the trimmed text or a placeholder.

Chunking is a pure function of (document_id, text, kind): chunk ids are
derived from the document id and the chunk's ordinal.
"""
from __future__ import annotations

import re
from typing import Iterator, Optional

from loguru import logger

from docqa.chunking.schemas import Chunk, ChunkMetadata, ChunkPosition, ChunkType
from docqa.extraction.extractor import PAGE_ERROR_PLACEHOLDER
from docqa.schemas import DocumentType


# ── Constants ─────────────────────────────────────────────────────────────────

MIN_CHUNK_CHARS = 10         # Shorter candidates are dropped
MIN_CHUNKS = 5               # Densify below this many chunks...
DENSIFY_THRESHOLD = 1000     # ...when the text is longer than this
MAX_GROUP_CHARS = 500        # Hard ceiling for a sentence group
NO_TEXT_PLACEHOLDER = "[No extractable text content]"

PAGE_MARKER = re.compile(r"Page \d+:")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)")

# (text, start, end, page_number)
_Segment = tuple[str, int, int, Optional[int]]


def split_with_offsets(text: str, separator: re.Pattern[str]) -> list[tuple[str, int, int]]:
    """Split text on a regex, keeping each piece's [start, end) offsets."""
    pieces: list[tuple[str, int, int]] = []
    cursor = 0
    for match in separator.finditer(text):
        pieces.append((text[cursor: match.start()], cursor, match.start()))
        cursor = match.end()
    pieces.append((text[cursor:], cursor, len(text)))
    return pieces


def split_sentences(text: str) -> list[tuple[str, int, int]]:
    """Split text into sentences on terminal punctuation, keeping offsets."""
    sentences = []
    for match in SENTENCE.finditer(text):
        if match.group().strip():
            sentences.append((match.group(), match.start(), match.end()))
    return sentences


def wrap_text(text: str, width: int) -> list[str]:
    """Break text into pieces no longer than width, preferring whitespace."""
    pieces: list[str] = []
    remaining = text.strip()
    while len(remaining) > width:
        cut = remaining.rfind(" ", 0, width + 1)
        if cut <= 0:
            cut = width
        pieces.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    if remaining:
        pieces.append(remaining)
    return pieces


# ── Main Chunker ──────────────────────────────────────────────────────────────

class LayeredChunker:
    """
    Applies the page / paragraph / sentence-group / fallback layers in order.

    Usage:
        chunker = LayeredChunker()
        chunks = chunker.chunk(document.id, document.content, document.type)
    """

    def __init__(
        self,
        min_chunk_chars: int = MIN_CHUNK_CHARS,
        min_chunks: int = MIN_CHUNKS,
        densify_threshold: int = DENSIFY_THRESHOLD,
        max_group_chars: int = MAX_GROUP_CHARS,
    ) -> None:
        self.min_chunk_chars = min_chunk_chars
        self.min_chunks = min_chunks
        self.densify_threshold = densify_threshold
        self.max_group_chars = max_group_chars

    def chunk(self, document_id: str, text: str, kind: DocumentType) -> list[Chunk]:
        """
        Chunk one document's extracted text.

        Returns:
            Chunks in document order (page, then paragraph or sentence group).
        """
        segments = self._segments(text, kind)

        strategy = "paragraph"
        drafts = list(self._paragraphs(segments))

        if len(drafts) < self.min_chunks and len(text) > self.densify_threshold:
            strategy = "sentence_group"
            drafts = list(self._sentence_groups(segments))

        if not drafts:
            strategy = "fallback"
            drafts = [(text.strip() or NO_TEXT_PLACEHOLDER, ChunkMetadata(chunk_type=ChunkType.FALLBACK))]

        chunks = [
            Chunk(
                id=Chunk.make_id(document_id, ordinal),
                document_id=document_id,
                content=content,
                metadata=metadata,
            )
            for ordinal, (content, metadata) in enumerate(drafts)
        ]

        logger.debug(
            f"[Chunker] {document_id[:12]} | {kind.value} | "
            f"{len(text)} chars | {strategy} -> {len(chunks)} chunk(s)"
        )
        return chunks

    # --- Segmentation ---------------------------------------------------------

    def _segments(self, text: str, kind: DocumentType) -> list[_Segment]:
        """Pages for pdf (segment index as page number), the whole text otherwise."""
        if kind != DocumentType.PDF:
            return [(text, 0, len(text), None)]

        segments: list[_Segment] = []
        for page_index, (page, start, end) in enumerate(split_with_offsets(text, PAGE_MARKER)):
            if not page.strip() or page.strip() == PAGE_ERROR_PLACEHOLDER:
                continue
            segments.append((page, start, end, page_index))
        return segments

    def _keep(self, content: str) -> bool:
        stripped = content.strip()
        return len(stripped) >= self.min_chunk_chars and stripped != PAGE_ERROR_PLACEHOLDER

    # --- Strategy: Paragraph --------------------------------------------------

    def _paragraphs(self, segments: list[_Segment]) -> Iterator[tuple[str, ChunkMetadata]]:
        for segment, _, _, page_number in segments:
            for paragraph, start, end in split_with_offsets(segment, PARAGRAPH_BREAK):
                if not self._keep(paragraph):
                    continue
                yield paragraph.strip(), ChunkMetadata(
                    page_number=page_number,
                    position=ChunkPosition(start=start, end=end),
                    chunk_type=ChunkType.PARAGRAPH,
                )

    # --- Strategy: Sentence Group ---------------------------------------------

    def _sentence_groups(self, segments: list[_Segment]) -> Iterator[tuple[str, ChunkMetadata]]:
        for segment, _, _, page_number in segments:
            group: list[str] = []
            group_len = 0
            group_start = group_end = 0

            for sentence, start, end in split_sentences(segment):
                for piece in wrap_text(sentence, self.max_group_chars):
                    if group and group_len + 1 + len(piece) > self.max_group_chars:
                        yield from self._emit_group(group, group_start, group_end, page_number)
                        group, group_len = [], 0
                    if not group:
                        group_start = start
                    group.append(piece)
                    group_len = len(" ".join(group))
                    group_end = end

            if group:
                yield from self._emit_group(group, group_start, group_end, page_number)

    def _emit_group(
        self,
        group: list[str],
        start: int,
        end: int,
        page_number: Optional[int],
    ) -> Iterator[tuple[str, ChunkMetadata]]:
        content = " ".join(group)
        if self._keep(content):
            yield content, ChunkMetadata(
                page_number=page_number,
                position=ChunkPosition(start=start, end=end),
                chunk_type=ChunkType.SENTENCE_GROUP,
            )
