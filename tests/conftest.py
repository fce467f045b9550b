"""Shared fixtures: an offline embedding model and a scripted LLM provider."""
from __future__ import annotations

import zlib
from types import SimpleNamespace
from typing import Optional

import numpy as np
import pytest

from docqa.config import AppConfig, ProviderSettings, StorageSettings
from docqa.embedding.embedder import Embedder
from docqa.generation.providers import LLMModel, LLMProvider, ProviderKind
from docqa.retrieval.retriever import Retriever
from docqa.serving.pipeline import RAGPipeline
from docqa.storage.store import DocumentStore

FAKE_DIMENSIONS = 32


# --- Embedding model ----------------------------------------------------------

class FakeSentenceModel:
    """Bag-of-words hashing model: texts sharing words get similar vectors."""

    def __init__(self) -> None:
        self.tokenizer = SimpleNamespace(tokenize=lambda text: text.lower().split())

    def get_sentence_embedding_dimension(self) -> int:
        return FAKE_DIMENSIONS

    def encode(self, texts, **kwargs) -> np.ndarray:
        matrix = np.zeros((len(texts), FAKE_DIMENSIONS), dtype=np.float32)
        for row, text in enumerate(texts):
            for word in text.lower().split():
                word = word.strip(".,!?;:'\"()")
                if word:
                    matrix[row, zlib.crc32(word.encode()) % FAKE_DIMENSIONS] += 1.0
        return matrix


class FakeEmbedder(Embedder):
    def __init__(self, **kwargs) -> None:
        super().__init__(model="fake-model", **kwargs)
        self.load_count = 0

    def _load_model(self):
        self.load_count += 1
        return FakeSentenceModel()


# --- LLM provider -------------------------------------------------------------

class FakeProvider(LLMProvider):
    kind = ProviderKind.OPENAI
    display_name = "Fake"
    default_model = "fake-default"
    default_models = (("fake-default", "Fake Default"),)

    def __init__(self, api_key: Optional[str] = "test-key", model: Optional[str] = "fake-1", answer: str = "stub answer", fail: Optional[Exception] = None) -> None:
        super().__init__(api_key, model)
        self.answer = answer
        self.fail = fail
        self.prompts: list[str] = []
        self.closed = False

    async def _fetch_models(self) -> list[LLMModel]:
        return [LLMModel(id="fake-1", name="Fake One", provider=self.kind)]

    async def _generate(self, prompt: str, model: str) -> str:
        self.prompts.append(prompt)
        if self.fail is not None:
            raise self.fail
        return self.answer

    async def aclose(self) -> None:
        self.closed = True


# --- Fixtures -----------------------------------------------------------------

@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store() -> DocumentStore:
    return DocumentStore()


@pytest.fixture
def app_config() -> AppConfig:
    config = AppConfig(storage=StorageSettings(path=None))
    config.llm.openai = ProviderSettings(api_key="sk-test", model="gpt-4o")
    return config


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def rag(store, embedder, app_config) -> RAGPipeline:
    retriever = Retriever(store, embedder, top_k=app_config.retrieval.top_k)
    return RAGPipeline(store, retriever, app_config, embedder=embedder)
