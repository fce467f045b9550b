"""
Retriever
----------
Turns a question into the top-k most relevant stored chunks.

Two strategies share one contract (ordered (Chunk, score) list, same limit):

    EMBEDDING : embed the query, cosine-rank stored vectors (VectorSearch)
    KEYWORD   : lexical substring scoring with a context domain bonus
                (KeywordScorer), for deployments without an embedding model

An optional document-id filter restricts candidates to one project context.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from langsmith import traceable
from loguru import logger

from docqa.chunking.schemas import Chunk
from docqa.embedding.embedder import Embedder
from docqa.embedding.vector_search import VectorSearch
from docqa.retrieval.keyword import KeywordScorer
from docqa.schemas import ProjectContext
from docqa.storage.store import DocumentStore


class RetrievalMode(str, Enum):
    EMBEDDING = "embedding"
    KEYWORD = "keyword"


class Retriever:
    """
    Wraps VectorSearch / KeywordScorer with automatic query embedding.

    The retriever is stateless per query -- call retrieve() as many times
    as you like from the same instance.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: Optional[Embedder] = None,
        mode: RetrievalMode = RetrievalMode.EMBEDDING,
        top_k: int = 5,
    ) -> None:
        if mode == RetrievalMode.EMBEDDING and embedder is None:
            raise ValueError("Embedding retrieval needs an Embedder")
        self.store = store
        self.embedder = embedder
        self.mode = mode
        self.top_k = top_k
        self.vector_search = VectorSearch(store)
        self.keyword_scorer = KeywordScorer()

    @traceable(name="retrieve", run_type="retriever")
    async def retrieve(
        self,
        query: str,
        document_ids: Optional[set[str]] = None,
        context: Optional[ProjectContext] = None,
    ) -> list[tuple[Chunk, float]]:
        """
        Return the top-k chunks for a query.

        Args:
            query: Raw user question.
            document_ids: Only consider chunks of these documents (None = all).
            context: Active project context (keyword mode uses its domain terms).

        Returns:
            List of (Chunk, score) sorted by score descending; empty when
            nothing is relevant.
        """
        logger.debug(f"[Retriever] {self.mode.value} | query={query[:80]!r}")

        if self.mode == RetrievalMode.KEYWORD:
            chunks = await self.store.get_all_chunks(document_ids=document_ids)
            results = self.keyword_scorer.search(query, chunks, context=context, limit=self.top_k)
        else:
            query_vec = await self.embedder.embed_query(query)
            results = await self.vector_search.search(
                query_vec, limit=self.top_k, document_ids=document_ids
            )

        if results:
            logger.info(
                f"[Retriever] Retrieved {len(results)} chunk(s) (top score: {results[0][1]:.4f})"
            )
        else:
            logger.info("[Retriever] No results")
        return results
