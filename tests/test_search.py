import numpy as np
import pytest

from docqa.chunking.schemas import Chunk
from docqa.embedding.vector_search import VectorSearch, cosine_similarity, rank_embeddings
from docqa.retrieval.keyword import KeywordScorer, keyword_tokens
from docqa.schemas import Document, DocumentType, EmbeddingRecord, ProjectContext


def _records(vectors):
    return [EmbeddingRecord(id=f"e{i}", chunk_id=f"c{i}", vector=v) for i, v in enumerate(vectors)]


# --- Cosine ---------------------------------------------------------------------

def test_cosine_similarity_basics():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 0]) == 0.0


def test_rank_orders_by_similarity_and_respects_limit():
    rng = np.random.default_rng(7)
    records = _records(rng.normal(size=(20, 8)).tolist())
    query = rng.normal(size=8)

    ranked = rank_embeddings(query, records, limit=5)

    assert len(ranked) == 5
    scores = [s for _, s in ranked]
    assert scores == sorted(scores, reverse=True)
    best = max(records, key=lambda r: cosine_similarity(query, r.vector))
    assert ranked[0][0].id == best.id


def test_rank_ties_keep_store_order():
    records = _records([[1.0, 0.0], [2.0, 0.0], [0.0, 1.0], [3.0, 0.0]])
    ranked = rank_embeddings([1.0, 0.0], records, limit=10)
    assert [r.id for r, _ in ranked] == ["e0", "e1", "e3", "e2"]


def test_rank_empty_and_all_zero():
    assert rank_embeddings([1.0, 0.0], [], limit=5) == []
    assert rank_embeddings([1.0, 0.0], _records([[0.0, 1.0], [0.0, 0.0]]), limit=5) == []


def test_rank_dimension_mismatch():
    with pytest.raises(ValueError):
        rank_embeddings([1.0, 0.0, 0.0], _records([[1.0, 0.0]]), limit=1)


async def test_vector_search_resolves_chunks(store):
    doc = Document(name="a.txt", content="x", type=DocumentType.TEXT)
    await store.add_document(doc)
    chunks = [Chunk(id=f"c{i}", document_id=doc.id, content=f"chunk {i}") for i in range(3)]
    await store.add_chunks(chunks)
    await store.add_embeddings(_records([[1.0, 0.0], [0.6, 0.8], [0.0, 1.0]]))

    results = await VectorSearch(store).search([0.0, 1.0], limit=2)

    assert [c.id for c, _ in results] == ["c2", "c1"]
    assert await VectorSearch(store).search([0.0, 1.0], document_ids={"other"}) == []


async def test_vector_search_skips_vectors_of_another_size(store):
    doc = Document(name="a.txt", content="x", type=DocumentType.TEXT)
    await store.add_document(doc)
    chunks = [Chunk(id=f"c{i}", document_id=doc.id, content=f"chunk {i}") for i in range(2)]
    await store.add_chunks(chunks)
    await store.add_embeddings(_records([[], [0.0, 1.0]]))

    results = await VectorSearch(store).search([0.0, 1.0])

    assert [c.id for c, _ in results] == ["c1"]


# --- Keyword --------------------------------------------------------------------

def test_keyword_tokens_normalise():
    assert keyword_tokens("What is the Transfer value? transfer, VALUE!") == ["transfer", "value"]


def test_keyword_search_counts_substrings():
    chunks = [
        Chunk(id="a", document_id="d", content="Nothing relevant here."),
        Chunk(id="b", document_id="d", content="The transfer value was quoted."),
        Chunk(id="c", document_id="d", content="Transfer value: the transfer value is 10k."),
    ]
    results = KeywordScorer().search("transfer value", chunks, limit=5)

    assert [c.id for c, _ in results] == ["c", "b"]
    assert results[0][1] == 4.0


def test_keyword_domain_bonus_only_applies_to_matches():
    context = ProjectContext(id="finance", name="Finance", keywords=["invoice"])
    chunks = [
        Chunk(id="plain", document_id="d", content="Payment is due in March."),
        Chunk(id="bonus", document_id="d", content="Invoice payment is due in March."),
        Chunk(id="other", document_id="d", content="Invoice number 42."),
    ]
    results = KeywordScorer().search("payment due", chunks, context=context)

    assert [c.id for c, _ in results] == ["bonus", "plain"]
    assert results[0][1] == results[1][1] + 2.0


def test_keyword_search_without_keywords_is_empty():
    chunks = [Chunk(id="a", document_id="d", content="the and of")]
    assert KeywordScorer().search("the of", chunks) == []
