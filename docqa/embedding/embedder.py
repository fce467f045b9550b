"""
Sentence-Transformers Embedding Generator
------------------------------------------
Wraps a local sentence-transformers model with:
  - Lazy, exactly-once model loading shared by every caller
  - Batched encoding in a worker thread
  - L2 normalisation (cosine similarity == inner product)
  - Usage counters

The model is loaded on first use.  Loading is itself slow and asynchronous,
so the first caller stores a pending-load future and every concurrent caller
awaits that same future instead of starting a second load.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import numpy as np
from langsmith import traceable
from loguru import logger
from sentence_transformers import SentenceTransformer


MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DIMENSIONS = 384           # all-MiniLM-L6-v2 native dimensions
BATCH_SIZE = 64
MAX_RECORDED_TOKENS = 32   # Tokens kept on an EmbeddingRecord (informational)


class Embedder:
    """
    Generates L2-normalised embeddings with a sentence-transformers model.

    One instance owns one model; share the instance to share the model.
    """

    def __init__(
        self,
        model: str = MODEL,
        batch_size: int = BATCH_SIZE,
        device: Optional[str] = None,
    ) -> None:
        self.model = model
        self.batch_size = batch_size
        self.device = device
        self._model: Optional[SentenceTransformer] = None
        self._loading: Optional[asyncio.Future] = None
        self.total_texts_embedded: int = 0
        self.total_batches: int = 0

    # --- Model lifecycle ------------------------------------------------------

    def _load_model(self) -> SentenceTransformer:
        logger.info(f"[Embedder] Loading model {self.model} (device={self.device or 'auto'})...")
        return SentenceTransformer(self.model, device=self.device)

    async def _ensure_model(self) -> SentenceTransformer:
        if self._model is not None:
            return self._model

        if self._loading is None:
            loop = asyncio.get_running_loop()
            self._loading = loop.run_in_executor(None, self._load_model)

        try:
            model = await asyncio.shield(self._loading)
        except Exception:
            # Let the next caller retry from scratch
            self._loading = None
            raise

        if self._model is None:
            self._model = model
            logger.info(
                f"[Embedder] Model ready | {self.model} | "
                f"{model.get_sentence_embedding_dimension()} dimensions"
            )
        return self._model

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    async def dimensions(self) -> int:
        model = await self._ensure_model()
        return int(model.get_sentence_embedding_dimension())

    # --- Embedding ------------------------------------------------------------

    @traceable(name="embed_texts", run_type="embedding")
    async def embed(self, texts: list[str]) -> np.ndarray:
        """
        Embed a list of strings and return an (N, dimensions) float32 array.
        Row i is the embedding of texts[i].
        """
        model = await self._ensure_model()
        if not texts:
            return np.empty((0, model.get_sentence_embedding_dimension()), dtype=np.float32)

        loop = asyncio.get_running_loop()
        batches: list[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch = [t if t.strip() else " " for t in texts[i: i + self.batch_size]]
            vectors = await loop.run_in_executor(None, self._encode, model, batch)
            batches.append(vectors)
            self.total_texts_embedded += len(batch)
            self.total_batches += 1

            logger.debug(
                f"[Embedder] Batch {i // self.batch_size + 1} | {len(batch)} texts | "
                f"Running total: {self.total_texts_embedded} texts"
            )

        matrix = np.vstack(batches).astype(np.float32)
        # L2-normalise so cosine sim == inner product
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms = np.where(norms == 0, 1, norms)  # avoid div-by-zero
        return (matrix / norms).astype(np.float32)

    def _encode(self, model: SentenceTransformer, batch: list[str]) -> np.ndarray:
        return np.asarray(
            model.encode(
                batch,
                batch_size=self.batch_size,
                convert_to_numpy=True,
                show_progress_bar=False,
            ),
            dtype=np.float32,
        )

    async def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string. Returns shape (dimensions,) float32 array."""
        return (await self.embed([text]))[0]

    async def tokenize(self, texts: list[str]) -> list[list[str]]:
        """Model tokens per text, truncated to MAX_RECORDED_TOKENS."""
        model = await self._ensure_model()
        return [model.tokenizer.tokenize(t)[:MAX_RECORDED_TOKENS] for t in texts]

    def usage_summary(self) -> dict:
        return {
            "model": self.model,
            "loaded": self.is_loaded,
            "total_batches": self.total_batches,
            "total_texts_embedded": self.total_texts_embedded,
        }
