from docqa.chunking.chunker import (
    MAX_GROUP_CHARS,
    NO_TEXT_PLACEHOLDER,
    LayeredChunker,
    split_sentences,
    wrap_text,
)
from docqa.chunking.schemas import ChunkType
from docqa.extraction.extractor import PAGE_ERROR_PLACEHOLDER
from docqa.schemas import DocumentType

SENTENCE = "The pension scheme pays a regular income each month. "


def _paragraph(sentences: int = 8) -> str:
    return (SENTENCE * sentences).strip()


def test_paragraph_split_keeps_offsets():
    text = "First paragraph of the letter.\n\nSecond paragraph, a bit longer.\n\n  \n\nok"
    chunks = LayeredChunker().chunk("doc-1", text, DocumentType.TEXT)

    assert [c.content for c in chunks] == [
        "First paragraph of the letter.",
        "Second paragraph, a bit longer.",
    ]
    for chunk in chunks:
        assert chunk.metadata.chunk_type == ChunkType.PARAGRAPH
        assert chunk.metadata.page_number is None
        pos = chunk.metadata.position
        assert text[pos.start: pos.end].strip() == chunk.content


def test_rechunking_is_idempotent():
    text = "\n\n".join(_paragraph(3) for _ in range(4))
    chunker = LayeredChunker()

    first = chunker.chunk("doc-1", text, DocumentType.DOCX)
    second = chunker.chunk("doc-1", text, DocumentType.DOCX)

    assert first == second
    assert len({c.id for c in first}) == len(first)


def test_chunk_ids_depend_on_document():
    text = "Some paragraph with enough characters."
    a = LayeredChunker().chunk("doc-a", text, DocumentType.TEXT)
    b = LayeredChunker().chunk("doc-b", text, DocumentType.TEXT)
    assert a[0].id != b[0].id


def test_short_text_becomes_single_fallback_chunk():
    chunks = LayeredChunker().chunk("doc-1", "  Hi  ", DocumentType.TEXT)

    assert len(chunks) == 1
    assert chunks[0].content == "Hi"
    assert chunks[0].metadata.chunk_type == ChunkType.FALLBACK


def test_whitespace_text_yields_placeholder_chunk():
    chunks = LayeredChunker().chunk("doc-1", " \n\n \t ", DocumentType.IMAGE)

    assert len(chunks) == 1
    assert chunks[0].content == NO_TEXT_PLACEHOLDER
    assert chunks[0].metadata.chunk_type == ChunkType.FALLBACK


def test_long_text_with_few_paragraphs_is_densified():
    text = "\n\n".join(_paragraph(8) for _ in range(3))
    assert len(text) > 1200

    chunks = LayeredChunker().chunk("doc-1", text, DocumentType.TEXT)

    assert len(chunks) >= 3
    assert all(c.metadata.chunk_type == ChunkType.SENTENCE_GROUP for c in chunks)
    assert all(len(c.content) <= MAX_GROUP_CHARS for c in chunks)


def test_many_paragraphs_are_not_densified():
    text = "\n\n".join(_paragraph(5) for _ in range(6))
    chunks = LayeredChunker().chunk("doc-1", text, DocumentType.TEXT)

    assert len(chunks) == 6
    assert all(c.metadata.chunk_type == ChunkType.PARAGRAPH for c in chunks)


def test_oversized_sentence_is_wrapped():
    run_on = "word " * 300   # no terminal punctuation, 1500 chars
    chunks = LayeredChunker().chunk("doc-1", run_on, DocumentType.TEXT)

    assert len(chunks) >= 3
    assert all(len(c.content) <= MAX_GROUP_CHARS for c in chunks)


def test_pdf_pages_become_page_numbers_and_error_pages_are_skipped():
    text = (
        "Page 1:\nThe transfer value is 12,500 pounds.\n\n"
        f"Page 2:\n{PAGE_ERROR_PLACEHOLDER}\n\n"
        "Page 3:\nBenefits can be taken from age 55.\n\n"
    )
    chunks = LayeredChunker().chunk("doc-1", text, DocumentType.PDF)

    assert [c.metadata.page_number for c in chunks] == [1, 3]
    assert all(PAGE_ERROR_PLACEHOLDER not in c.content for c in chunks)


def test_split_sentences_counts_trailing_fragment():
    sentences = [s.strip() for s, _, _ in split_sentences("One. Two?! three")]
    assert sentences == ["One.", "Two?!", "three"]


def test_wrap_text_prefers_whitespace():
    assert wrap_text("aaa bbb ccc", 7) == ["aaa bbb", "ccc"]
    assert wrap_text("abcdefghij", 4) == ["abcd", "efgh", "ij"]
