from datetime import datetime, timezone

import pytest

from docqa.chunking.chunker import LayeredChunker
from docqa.extraction import extractor as extractor_module
from docqa.extraction.extractor import PAGE_ERROR_PLACEHOLDER, TextExtractor
from docqa.ingestion.pipeline import IngestionPipeline
from docqa.retrieval.retriever import RetrievalMode
from docqa.schemas import UploadedFile

from tests.conftest import FakeEmbedder

PAGES = [
    "Your transfer value is quoted at 12,500 pounds as of April.",
    RuntimeError("broken content stream"),
    "Benefits may be taken from your normal retirement age of 65.",
]


class _Page:
    def __init__(self, value):
        self.value = value

    def extract_text(self):
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


class _Reader:
    def __init__(self, stream):
        self.pages = [_Page(v) for v in PAGES]


def _pipeline(store, embedder=None, mode=RetrievalMode.EMBEDDING, updates=None):
    return IngestionPipeline(
        store=store,
        extractor=TextExtractor(),
        chunker=LayeredChunker(),
        embedder=embedder,
        mode=mode,
        progress=updates.append if updates is not None else None,
    )


def _text(name: str, body: str) -> UploadedFile:
    return UploadedFile(name=name, data=body.encode(), last_modified=datetime(2024, 5, 1, tzinfo=timezone.utc))


async def test_three_page_pdf_with_failed_page(store, embedder, monkeypatch):
    monkeypatch.setattr(extractor_module, "PdfReader", _Reader)

    document_id = await _pipeline(store, embedder).process_file(
        UploadedFile(name="statement.pdf", data=b"%PDF-1.4")
    )

    document = await store.get_document(document_id)
    assert f"Page 2:\n{PAGE_ERROR_PLACEHOLDER}" in document.content
    assert "transfer value" in document.content and "retirement age" in document.content

    chunks = await store.get_chunks(document_id)
    assert len(chunks) >= 2
    assert [c.metadata.page_number for c in chunks] == [1, 3]
    assert len(await store.get_embeddings({document_id})) == len(chunks)


async def test_batch_continues_after_failure(store, embedder):
    report = await _pipeline(store, embedder).process_files(
        [
            _text("a.txt", "The contract ends in June 2027."),
            UploadedFile(name="broken.pdf", data=b""),
            _text("b.txt", "Notice period is three months."),
        ],
        context_id="legal",
        tags=["2024"],
    )

    assert [f.name for f in report.processed] == ["a.txt", "b.txt"]
    assert [f.name for f in report.failed] == ["broken.pdf"]
    assert "broken.pdf" in report.failed[0].error

    documents = await store.get_documents()
    assert len(documents) == 2
    metadata = documents[0].metadata
    assert metadata["context"] == "legal"
    assert metadata["tags"] == ["2024"]
    assert metadata["size"] == len("The contract ends in June 2027.")
    assert metadata["last_modified"] == "2024-05-01T00:00:00+00:00"


async def test_progress_never_decreases_within_a_file(store, embedder, monkeypatch):
    monkeypatch.setattr(extractor_module, "PdfReader", _Reader)
    updates = []

    await _pipeline(store, embedder, updates=updates).process_files(
        [UploadedFile(name="s.pdf", data=b"%PDF"), _text("n.txt", "Some plain notes here.")]
    )

    per_file: list[list[int]] = []
    for status in updates[:-1]:
        if status.message.startswith("Processing "):
            per_file.append([])
        per_file[-1].append(status.progress)

    assert len(per_file) == 2
    for values in per_file:
        assert values == sorted(values)
        assert values[0] == 0 and values[-1] == 100
        assert {50, 75, 90} <= set(values)

    assert updates[-1].message == "All files processed"
    assert updates[-1].progress == 100
    assert updates[-1].is_processing is False


async def test_failure_after_store_rolls_back(store):
    class Broken(FakeEmbedder):
        async def embed(self, texts):
            raise RuntimeError("GPU on fire")

    updates = []
    report = await _pipeline(store, Broken(), updates=updates).process_files(
        [_text("a.txt", "Enough text for a chunk.")]
    )

    assert report.failed[0].error == "GPU on fire"
    assert await store.get_documents() == []
    assert await store.get_all_chunks() == []

    error = next(u for u in updates if u.message.startswith("Error processing a.txt"))
    assert error.is_processing is False
    assert error.progress == 90


async def test_keyword_mode_stores_tokens_without_vectors(store):
    document_id = await _pipeline(store, mode=RetrievalMode.KEYWORD).process_file(
        _text("n.txt", "Invoice 42: payment overdue since March.")
    )

    [record] = await store.get_embeddings({document_id})
    assert record.vector == []
    assert record.tokens == ["invoice", "42", "payment", "overdue", "since", "march"]


def test_embedding_mode_requires_embedder(store):
    with pytest.raises(ValueError):
        _pipeline(store)
