"""
Document Store
---------------
Holds the three logical tables -- documents, chunks, embeddings -- keyed by
their ids, plus two secondary indexes used for cascade lookups:

    document_id -> [chunk_id, ...]     (insertion order)
    chunk_id    -> embedding_id        (1:1)

Referential integrity holds after every write: each mutator performs its write
and then sweeps orphans (chunks whose document is gone, embeddings whose
chunk is gone) inside the same asyncio.Lock critical section, so a sweep can
never interleave with another writer.

Persistence (optional):
  - the whole store is snapshotted to one JSON file (orjson) after every
    mutation, written atomically via a temp file + rename
  - the file write runs in the default executor while the lock is held, so
    snapshots land in mutation order without blocking the event loop
  - DocumentStore.open(path) loads an existing snapshot

Vector dimensionality is fixed by the first non-empty vector and held while
any such vector is stored. Keyword-mode records have empty vectors and never
conflict with it.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from docqa.chunking.schemas import Chunk
from docqa.schemas import Document, EmbeddingRecord
from docqa.utils.helpers import load_json, save_json


class StoreError(Exception):
    """Store-layer corruption (unreadable snapshot, mixed vector sizes). Not recoverable."""


class DocumentStore:
    """
    In-process store for documents, chunks and embeddings.

    All public methods are coroutines so callers can treat the store like any
    other async backend.
    """

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self.path = Path(path) if path else None
        self._lock = asyncio.Lock()

        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, Chunk] = {}
        self._embeddings: dict[str, EmbeddingRecord] = {}

        self._chunk_ids_by_document: dict[str, list[str]] = {}
        self._embedding_id_by_chunk: dict[str, str] = {}
        self._dimensions: Optional[int] = None

    # --- Documents ------------------------------------------------------------

    async def add_document(self, document: Document) -> None:
        async with self._lock:
            self._documents[document.id] = document
            await self._commit("add_document")
        logger.debug(f"[Store] Document added | {document.id} | {document.name}")

    async def get_documents(self) -> list[Document]:
        return list(self._documents.values())

    async def get_document(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    async def update_document_metadata(self, document_id: str, metadata: dict[str, Any]) -> Document:
        """Merge metadata into a document (the only mutable part of a Document)."""
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise KeyError(document_id)
            updated = document.model_copy(update={"metadata": {**document.metadata, **metadata}})
            self._documents[document_id] = updated
            await self._commit("update_document_metadata")
        return updated

    async def remove_document(self, document_id: str) -> bool:
        """Delete a document; its chunks and embeddings go with it."""
        async with self._lock:
            removed = self._documents.pop(document_id, None) is not None
            await self._commit("remove_document")
        if removed:
            logger.info(f"[Store] Document removed | {document_id}")
        return removed

    # --- Chunks ---------------------------------------------------------------

    async def add_chunks(self, chunks: list[Chunk]) -> None:
        async with self._lock:
            for chunk in chunks:
                if chunk.id not in self._chunks:
                    self._chunk_ids_by_document.setdefault(chunk.document_id, []).append(chunk.id)
                self._chunks[chunk.id] = chunk
            await self._commit("add_chunks")
        logger.debug(f"[Store] {len(chunks)} chunk(s) added")

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        return [self._chunks[cid] for cid in self._chunk_ids_by_document.get(document_id, [])]

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        return self._chunks.get(chunk_id)

    async def get_all_chunks(self, document_ids: Optional[set[str]] = None) -> list[Chunk]:
        if document_ids is None:
            return list(self._chunks.values())
        return [c for c in self._chunks.values() if c.document_id in document_ids]

    # --- Embeddings -----------------------------------------------------------

    async def add_embeddings(self, embeddings: list[EmbeddingRecord]) -> None:
        async with self._lock:
            self._dimensions = self._batch_dimensions(embeddings)
            for record in embeddings:
                previous = self._embedding_id_by_chunk.get(record.chunk_id)
                if previous is not None and previous != record.id:
                    self._embeddings.pop(previous, None)
                self._embeddings[record.id] = record
                self._embedding_id_by_chunk[record.chunk_id] = record.id
            await self._commit("add_embeddings")
        logger.debug(f"[Store] {len(embeddings)} embedding(s) added")

    async def get_embeddings(self, document_ids: Optional[set[str]] = None) -> list[EmbeddingRecord]:
        """All embeddings in store order, optionally only those owned by document_ids."""
        if document_ids is None:
            return list(self._embeddings.values())
        return [
            e for e in self._embeddings.values()
            if (chunk := self._chunks.get(e.chunk_id)) is not None
            and chunk.document_id in document_ids
        ]

    async def get_embedding_for_chunk(self, chunk_id: str) -> Optional[EmbeddingRecord]:
        embedding_id = self._embedding_id_by_chunk.get(chunk_id)
        return self._embeddings.get(embedding_id) if embedding_id else None

    @property
    def dimensions(self) -> Optional[int]:
        return self._dimensions

    def _batch_dimensions(self, records: list[EmbeddingRecord]) -> Optional[int]:
        """
        Dimensionality the store will hold once records are added.

        Validates the whole batch before anything is written, so a mismatch
        leaves the store untouched. Empty vectors (keyword-mode records)
        carry no dimensionality and are accepted alongside any size.
        """
        dimensions = self._dimensions
        for record in records:
            size = len(record.vector)
            if size == 0:
                continue
            if dimensions is None:
                dimensions = size
            elif size != dimensions:
                raise StoreError(
                    f"Embedding {record.id} has {size} dimensions, store holds {dimensions}"
                )
        return dimensions

    # --- Integrity ------------------------------------------------------------

    async def prune_orphans(self) -> tuple[int, int]:
        """Run the orphan sweep on demand. Returns (chunks_removed, embeddings_removed)."""
        async with self._lock:
            return await self._commit("prune_orphans")

    def _prune_orphans(self) -> tuple[int, int]:
        """Delete chunks/embeddings unreachable from the live document set. Caller holds the lock."""
        live_documents = set(self._documents)
        orphan_chunks = [cid for cid, c in self._chunks.items() if c.document_id not in live_documents]
        for cid in orphan_chunks:
            del self._chunks[cid]

        live_chunks = set(self._chunks)
        orphan_embeddings = [eid for eid, e in self._embeddings.items() if e.chunk_id not in live_chunks]
        for eid in orphan_embeddings:
            del self._embeddings[eid]

        if orphan_chunks or orphan_embeddings:
            self._rebuild_indexes()
            logger.info(
                f"[Store] Pruned {len(orphan_chunks)} orphan chunk(s), "
                f"{len(orphan_embeddings)} orphan embedding(s)"
            )
        return len(orphan_chunks), len(orphan_embeddings)

    def _rebuild_indexes(self) -> None:
        self._chunk_ids_by_document = {}
        for cid, chunk in self._chunks.items():
            self._chunk_ids_by_document.setdefault(chunk.document_id, []).append(cid)
        self._embedding_id_by_chunk = {e.chunk_id: eid for eid, e in self._embeddings.items()}
        self._dimensions = next((len(e.vector) for e in self._embeddings.values() if e.vector), None)

    async def _commit(self, operation: str) -> tuple[int, int]:
        """Sweep orphans and persist. Caller holds the lock."""
        pruned = self._prune_orphans()
        if self.path is not None:
            payload = self._snapshot()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, save_json, payload, self.path)
        logger.trace(f"[Store] Committed {operation}")
        return pruned

    # --- Stats ----------------------------------------------------------------

    async def stats(self) -> dict:
        return {
            "documents": len(self._documents),
            "chunks": len(self._chunks),
            "embeddings": len(self._embeddings),
            "dimensions": self._dimensions,
            "path": str(self.path) if self.path else None,
        }

    # --- Persistence ----------------------------------------------------------

    def _snapshot(self) -> dict:
        return {
            "documents": [d.model_dump(mode="json") for d in self._documents.values()],
            "chunks": [c.model_dump(mode="json") for c in self._chunks.values()],
            "embeddings": [e.model_dump(mode="json") for e in self._embeddings.values()],
        }

    @classmethod
    def open(cls, path: str | Path) -> "DocumentStore":
        """Load a persisted store, or start an empty one at path."""
        instance = cls(path)
        if not instance.path.exists():
            logger.info(f"[Store] No snapshot at {instance.path}, starting empty")
            return instance

        try:
            raw = load_json(instance.path)
            documents = [Document(**d) for d in raw.get("documents", [])]
            chunks = [Chunk(**c) for c in raw.get("chunks", [])]
            embeddings = [EmbeddingRecord(**e) for e in raw.get("embeddings", [])]
        except Exception as exc:
            raise StoreError(f"Corrupt store snapshot {instance.path}: {exc}") from exc

        instance._documents = {d.id: d for d in documents}
        instance._chunks = {c.id: c for c in chunks}
        instance._batch_dimensions(embeddings)
        instance._embeddings = {e.id: e for e in embeddings}
        instance._rebuild_indexes()
        instance._prune_orphans()

        logger.info(
            f"[Store] Loaded: {len(instance._documents)} documents, "
            f"{len(instance._chunks)} chunks, {len(instance._embeddings)} embeddings"
        )
        return instance
