"""
RAG Serving Pipeline
---------------------
Orchestrates the full question lifecycle:

    user question (+ optional project context)
        |
        v
    preconditions (API key configured, model selected)
        |
        v
    context filter (documents tagged with the context id)
        |
        v
    Retriever (cosine over stored vectors, or keyword scoring; top_k=5)
        |
        v
    prompt (context preamble + cited chunks + question + instructions)
        |
        v
    LLMProvider.generate_answer
        |
        v
    QueryResult (answer + every retrieved source + timings)

An empty context or an empty retrieval short-circuits with a fixed answer
and never calls the provider.

RAGPipeline.from_config() also wires the store, embedder and ingestion side,
so the CLI and the API server share one construction path.
"""
from __future__ import annotations

import time
from typing import Optional

from langsmith import traceable
from loguru import logger

from docqa.chunking.chunker import LayeredChunker
from docqa.config import AppConfig
from docqa.embedding.embedder import Embedder
from docqa.extraction.extractor import TextExtractor
from docqa.generation.prompts import NO_RELEVANT_INFO_RESPONSE, build_prompt
from docqa.generation.providers import (
    LLMModel,
    LLMProvider,
    ModelSelectionError,
    ProviderKind,
    create_provider,
)
from docqa.ingestion.pipeline import IngestionPipeline
from docqa.retrieval.retriever import RetrievalMode, Retriever
from docqa.schemas import ProgressCallback, QueryResult, Source
from docqa.storage.store import DocumentStore

UNKNOWN_DOCUMENT = "Unknown document"


class RAGPipeline:
    """
    End-to-end document Q&A pipeline.

    Usage:
        pipeline = RAGPipeline.from_config(load_config())
        result = await pipeline.answer("When does this agreement expire?", context_id="legal")
        print(result.answer)
        for source in result.sources:
            print(source.document_name, source.score)
    """

    def __init__(
        self,
        store: DocumentStore,
        retriever: Retriever,
        config: AppConfig,
        embedder: Optional[Embedder] = None,
    ) -> None:
        self.store = store
        self.retriever = retriever
        self.config = config
        self.embedder = embedder

    @classmethod
    def from_config(cls, config: AppConfig) -> "RAGPipeline":
        """Open the configured store and build the retrieval side."""
        store = DocumentStore.open(config.storage.path) if config.storage.path else DocumentStore()

        embedder = None
        if config.retrieval.mode == RetrievalMode.EMBEDDING:
            embedder = Embedder(
                model=config.embedding.model,
                batch_size=config.embedding.batch_size,
                device=config.embedding.device,
            )
        retriever = Retriever(store, embedder, mode=config.retrieval.mode, top_k=config.retrieval.top_k)

        logger.info(
            f"[RAGPipeline] Ready | retrieval={config.retrieval.mode.value} | "
            f"provider={config.llm.provider.value} | top_k={config.retrieval.top_k}"
        )
        return cls(store, retriever, config, embedder=embedder)

    def ingestion(self, progress: Optional[ProgressCallback] = None) -> IngestionPipeline:
        """A fresh ingestion pipeline sharing this pipeline's store and embedder."""
        return IngestionPipeline(
            store=self.store,
            extractor=TextExtractor(ocr_language=self.config.extraction.ocr_language),
            chunker=LayeredChunker(),
            embedder=self.embedder,
            mode=self.config.retrieval.mode,
            progress=progress,
        )

    # --- Query ------------------------------------------------------------------

    @traceable(name="rag_query", run_type="chain")
    async def answer(
        self,
        query: str,
        context_id: Optional[str] = None,
        provider: Optional[LLMProvider] = None,
    ) -> QueryResult:
        """
        Answer one question from the stored documents.

        Args:
            query: The raw question from the user.
            context_id: Restrict retrieval to documents tagged with this context.
            provider: Provider to generate with. When omitted, the configured
                      provider is built for this call and closed afterwards.

        Raises:
            ProviderConfigError: no API key for the provider.
            ModelSelectionError: no model selected for the provider.
        """
        owned = provider is None
        active = provider if provider is not None else create_provider(self.config.llm)
        try:
            if not active.model:
                raise ModelSelectionError(
                    f"No {active.display_name} model selected. Please choose a model in the settings."
                )
            return await self._answer(query, context_id, active)
        finally:
            if owned:
                await active.aclose()

    async def _answer(self, query: str, context_id: Optional[str], provider: LLMProvider) -> QueryResult:
        logger.info(f"[RAGPipeline] Query: {query[:100]!r} | context={context_id}")
        result = QueryResult(
            query=query,
            answer=NO_RELEVANT_INFO_RESPONSE,
            context_id=context_id,
            provider=provider.kind.value,
            model=provider.active_model,
        )

        # -- 1. Context filter --------------------------------------------------
        documents = {d.id: d for d in await self.store.get_documents()}
        document_ids: Optional[set[str]] = None
        if context_id is not None:
            document_ids = {doc_id for doc_id, d in documents.items() if d.context == context_id}
            if not document_ids:
                logger.info(f"[RAGPipeline] No documents tagged {context_id!r}")
                return result

        # -- 2. Retrieve --------------------------------------------------------
        context = self.config.get_context(context_id)
        t0 = time.perf_counter()
        hits = await self.retriever.retrieve(query, document_ids=document_ids, context=context)
        result.retrieval_ms = (time.perf_counter() - t0) * 1000
        if not hits:
            return result

        # -- 3. Sources ---------------------------------------------------------
        named = []
        for chunk, score in hits:
            document = documents.get(chunk.document_id)
            name = document.name if document is not None else UNKNOWN_DOCUMENT
            named.append((chunk, name))
            result.sources.append(
                Source(
                    document_id=chunk.document_id,
                    document_name=name,
                    content=chunk.content,
                    metadata=chunk.metadata.model_dump(mode="json", exclude_none=True),
                    score=score,
                )
            )

        # -- 4. Generate --------------------------------------------------------
        prompt = build_prompt(query, named, preamble=context.prompt_prefix if context else None)
        t1 = time.perf_counter()
        result.answer = await provider.generate_answer(prompt)
        result.generation_ms = (time.perf_counter() - t1) * 1000

        logger.info(
            f"[RAGPipeline] Complete | sources={len(result.sources)} | "
            f"retrieve={result.retrieval_ms:.0f}ms generate={result.generation_ms:.0f}ms"
        )
        return result

    # --- Models -----------------------------------------------------------------

    async def fetch_models(self, provider: Optional[ProviderKind | str] = None) -> list[LLMModel]:
        """
        List models for a provider (default: the configured one).

        Raises:
            ProviderConfigError: no API key for the provider.
        """
        async with create_provider(self.config.llm, kind=provider) as active:
            return await active.list_models()
