"""
Ingestion Pipeline
-------------------
Takes uploaded files all the way into the store:

    bytes
      |  TextExtractor          (pdf / docx / image / text)       0 .. 40
      v
    Document                    add_document                       50
      |  LayeredChunker                                            75
      v
    Chunks                      add_chunks
      |  Embedder / keyword tokens                                 90
      v
    EmbeddingRecords            add_embeddings                    100

Files in a batch are processed strictly one after another.  A file that
fails is recorded in the IngestionReport and the batch moves on; if the
failure happens after its Document was stored, the Document is removed
again (the store cascades to its chunks and embeddings), so a failed file
never leaves partial data behind.

Progress values reported for one file never go backwards.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger

from docqa.chunking.chunker import LayeredChunker
from docqa.chunking.schemas import Chunk
from docqa.embedding.embedder import Embedder
from docqa.extraction.extractor import TextExtractor, detect_document_type
from docqa.retrieval.keyword import keyword_tokens
from docqa.retrieval.retriever import RetrievalMode
from docqa.schemas import (
    Document,
    EmbeddingRecord,
    FailedFile,
    IngestedFile,
    IngestionReport,
    ProgressCallback,
    ProgressStatus,
    UploadedFile,
)
from docqa.storage.store import DocumentStore


class IngestionPipeline:
    """
    Extract -> store -> chunk -> embed for one or many uploaded files.

    Usage:
        pipeline = IngestionPipeline(store, TextExtractor(), LayeredChunker(), embedder)
        report = await pipeline.process_files(uploads, context_id="legal")
    """

    def __init__(
        self,
        store: DocumentStore,
        extractor: TextExtractor,
        chunker: LayeredChunker,
        embedder: Optional[Embedder] = None,
        mode: RetrievalMode = RetrievalMode.EMBEDDING,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        if mode == RetrievalMode.EMBEDDING and embedder is None:
            raise ValueError("Embedding mode needs an Embedder")
        self.store = store
        self.extractor = extractor
        self.chunker = chunker
        self.embedder = embedder
        self.mode = mode
        self.progress = progress
        self._last_progress = 0

        # Extractor milestones are forwarded through the monotonic reporter
        self.extractor.progress = self._on_extractor_progress

    # --- Batch ----------------------------------------------------------------

    async def process_files(
        self,
        uploads: list[UploadedFile],
        context_id: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> IngestionReport:
        """
        Ingest every upload in order. Per-file failures are collected, not raised.
        """
        metadata: dict[str, Any] = {}
        if context_id:
            metadata["context"] = context_id
        if tags:
            metadata["tags"] = list(tags)

        report = IngestionReport()
        for upload in uploads:
            try:
                document_id = await self.process_file(upload, metadata)
            except Exception as exc:
                logger.error(f"[Ingestion] {upload.name} failed: {exc}")
                report.failed.append(FailedFile(name=upload.name, error=str(exc)))
                continue
            report.processed.append(IngestedFile(name=upload.name, document_id=document_id))

        self._emit(False, 100, "All files processed")
        logger.info(
            f"[Ingestion] Batch complete | {len(report.processed)} processed | "
            f"{len(report.failed)} failed"
        )
        return report

    # --- Single file ----------------------------------------------------------

    async def process_file(self, upload: UploadedFile, metadata: Optional[dict[str, Any]] = None) -> str:
        """
        Ingest one file and return the new document id.

        Raises:
            ExtractionError: the file could not be read.
            Any error from chunking, embedding or the store, after rollback.
        """
        self._last_progress = 0
        self._report(0, f"Processing {upload.name}...")
        document: Optional[Document] = None

        try:
            kind = detect_document_type(upload.name)
            extracted = await self.extractor.extract(upload.data, kind, name=upload.name)

            self._report(50, f"Extracted text from {upload.name}, creating document record...")
            document = Document(
                name=upload.name,
                content=extracted.content,
                raw_content=extracted.raw_content,
                type=kind,
                metadata={
                    **(metadata or {}),
                    "size": upload.size,
                    "last_modified": (upload.last_modified or datetime.now(timezone.utc)).isoformat(),
                },
            )
            await self.store.add_document(document)

            self._report(75, f"Creating text chunks for {upload.name}...")
            chunks = self.chunker.chunk(document.id, document.content, document.type)
            await self.store.add_chunks(chunks)

            self._report(90, f"Creating embeddings for {upload.name}...")
            await self.store.add_embeddings(await self._embed(chunks))
        except Exception as exc:
            if document is not None:
                await self.store.remove_document(document.id)
                logger.warning(f"[Ingestion] Rolled back {upload.name} ({document.id})")
            self._emit(
                False,
                self._last_progress,
                f"Error processing {upload.name}: {exc}",
            )
            raise

        self._report(100, f"Completed processing {upload.name}")
        logger.info(
            f"[Ingestion] {upload.name} | {kind.value} | {len(extracted.content):,} chars | "
            f"{len(chunks)} chunk(s) | id={document.id}"
        )
        return document.id

    async def _embed(self, chunks: list[Chunk]) -> list[EmbeddingRecord]:
        if self.mode == RetrievalMode.KEYWORD:
            return [
                EmbeddingRecord(chunk_id=c.id, vector=[], tokens=keyword_tokens(c.content))
                for c in chunks
            ]

        texts = [c.content for c in chunks]
        vectors = await self.embedder.embed(texts)
        tokens = await self.embedder.tokenize(texts)
        return [
            EmbeddingRecord(chunk_id=c.id, vector=vec.tolist(), tokens=tok)
            for c, vec, tok in zip(chunks, vectors, tokens)
        ]

    # --- Progress -------------------------------------------------------------

    def _on_extractor_progress(self, status: ProgressStatus) -> None:
        self._report(status.progress, status.message)

    def _report(self, progress: int, message: str) -> None:
        self._last_progress = max(self._last_progress, progress)
        self._emit(True, self._last_progress, message)

    def _emit(self, is_processing: bool, progress: int, message: str) -> None:
        if self.progress is not None:
            self.progress(ProgressStatus(is_processing=is_processing, progress=progress, message=message))
