"""
Brute-force Cosine Search
--------------------------
Ranks stored EmbeddingRecords against a query vector by cosine similarity:

    cos(a, b) = (a . b) / (|a| * |b|)

This is an exact O(n * d) scan with numpy -- corpora here are a few thousand
chunks at most, so no approximate index is needed.

Ordering:
  - descending similarity, stable sort, so equal scores keep the store's
    iteration order.  No secondary tie-break key is defined.
  - when every score is exactly zero (or there is nothing stored) the
    result is empty: callers treat that as "nothing relevant".
"""
from __future__ import annotations

from typing import Optional

import numpy as np
from loguru import logger

from docqa.chunking.schemas import Chunk
from docqa.schemas import EmbeddingRecord
from docqa.storage.store import DocumentStore

DEFAULT_LIMIT = 5


def cosine_similarity(a: np.ndarray | list[float], b: np.ndarray | list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of query against every row of matrix (zero-norm rows score 0)."""
    q = np.asarray(query, dtype=np.float32).reshape(-1)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)


def rank_embeddings(
    query_vector: np.ndarray | list[float],
    embeddings: list[EmbeddingRecord],
    limit: int = DEFAULT_LIMIT,
) -> list[tuple[EmbeddingRecord, float]]:
    """
    Return up to `limit` (EmbeddingRecord, cosine_score) pairs, most similar first.
    """
    if not embeddings or limit <= 0:
        return []

    matrix = np.asarray([e.vector for e in embeddings], dtype=np.float32)
    query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise ValueError(
            f"Query has {query.shape[0]} dimensions, stored vectors have "
            f"{matrix.shape[1] if matrix.ndim == 2 else 0}"
        )

    scores = cosine_scores(query, matrix)
    if not np.any(scores != 0):
        return []

    order = np.argsort(-scores, kind="stable")[:limit]
    return [(embeddings[i], float(scores[i])) for i in order]


class VectorSearch:
    """Cosine search over the embeddings held by a DocumentStore."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def search(
        self,
        query_vector: np.ndarray | list[float],
        limit: int = DEFAULT_LIMIT,
        document_ids: Optional[set[str]] = None,
    ) -> list[tuple[Chunk, float]]:
        """
        Rank stored embeddings (optionally only those of `document_ids`) and
        resolve each hit to its chunk.

        Records whose vector size differs from the query's (keyword-mode
        records with empty vectors, or a store built with another model) are
        skipped with a warning.

        Returns: List of (Chunk, cosine_score) sorted descending.
        """
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        embeddings = await self.store.get_embeddings(document_ids=document_ids)
        comparable = [e for e in embeddings if len(e.vector) == query.shape[0]]
        if len(comparable) < len(embeddings):
            logger.warning(
                f"[VectorSearch] Skipped {len(embeddings) - len(comparable)} embedding(s) "
                f"without {query.shape[0]}-dimension vectors; re-ingest them in embedding mode"
            )
        ranked = rank_embeddings(query, comparable, limit=limit)

        results: list[tuple[Chunk, float]] = []
        for record, score in ranked:
            chunk = await self.store.get_chunk(record.chunk_id)
            if chunk is None:
                logger.warning(f"[VectorSearch] Embedding {record.id} has no chunk, skipped")
                continue
            results.append((chunk, score))

        logger.debug(
            f"[VectorSearch] {len(comparable)} candidates -> {len(results)} hit(s)"
        )
        return results
