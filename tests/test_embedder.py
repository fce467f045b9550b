import asyncio

import numpy as np
import pytest

from tests.conftest import FAKE_DIMENSIONS, FakeEmbedder


async def test_concurrent_callers_share_one_model_load(embedder):
    results = await asyncio.gather(*(embedder.embed_query(f"query {i}") for i in range(8)))

    assert embedder.load_count == 1
    assert all(r.shape == (FAKE_DIMENSIONS,) for r in results)
    assert embedder.is_loaded


async def test_embeddings_are_normalised_and_batched():
    embedder = FakeEmbedder(batch_size=2)
    matrix = await embedder.embed(["alpha beta", "beta gamma", "delta", "   "])

    assert matrix.shape == (4, FAKE_DIMENSIONS)
    norms = np.linalg.norm(matrix[:3], axis=1)
    assert np.allclose(norms, 1.0)
    assert embedder.total_batches == 2
    assert embedder.total_texts_embedded == 4


async def test_empty_input(embedder):
    matrix = await embedder.embed([])
    assert matrix.shape == (0, FAKE_DIMENSIONS)


async def test_failed_load_can_be_retried():
    class Flaky(FakeEmbedder):
        def _load_model(self):
            self.load_count += 1
            if self.load_count == 1:
                raise OSError("model download failed")
            return super()._load_model()

    embedder = Flaky()
    with pytest.raises(OSError):
        await embedder.embed_query("x")

    vector = await embedder.embed_query("x")
    assert vector.shape == (FAKE_DIMENSIONS,)


async def test_tokenize_is_truncated(embedder):
    tokens = await embedder.tokenize(["word " * 100])
    assert len(tokens[0]) == 32
    assert await embedder.dimensions() == FAKE_DIMENSIONS
