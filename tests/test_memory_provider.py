"""Tests for the in-memory vector provider and the hashing embedder."""

import asyncio
from datetime import timedelta

import numpy as np
import pytest

from clarity.vector_store.base import OperationCancelledError
from clarity.vector_store.embeddings import HashingEmbedder, cosine_similarity
from clarity.vector_store.memory import InMemoryVectorProvider
from clarity.vector_store.models import (
    DocumentType,
    VectorDocument,
    VectorMetadata,
    VectorSearchOptions,
    utc_now,
)


def make_document(doc_id, content, created_at=None, **metadata):
    return VectorDocument(
        id=doc_id,
        content=content,
        metadata=VectorMetadata(
            id=doc_id,
            type=metadata.pop("type", DocumentType.KNOWLEDGE),
            title=metadata.pop("title", doc_id),
            created_at=created_at or utc_now(),
            **metadata
        ),
    )


def test_hashing_embedder_is_deterministic_and_normalized():
    """Same text gives the same unit vector across instances."""
    first = HashingEmbedder(dimension=64).embed_text("Users log in via OAuth")
    second = HashingEmbedder(dimension=64).embed_text("Users log in via OAuth")

    assert first.shape == (64,)
    assert np.allclose(first, second)
    assert np.linalg.norm(first) == pytest.approx(1.0, abs=1e-5)


def test_hashing_embedder_empty_text():
    """Text without tokens embeds to the zero vector."""
    vector = HashingEmbedder(dimension=32).embed_text("the and of")
    assert not vector.any()


def test_cosine_similarity_zero_vectors():
    """Zero-norm rows and queries score 0.0."""
    matrix = np.array([[1.0, 0.0], [0.0, 0.0]], dtype=np.float32)
    scores = cosine_similarity(matrix, np.array([1.0, 0.0], dtype=np.float32))
    assert scores.tolist() == pytest.approx([1.0, 0.0])

    zero_query = cosine_similarity(matrix, np.zeros(2, dtype=np.float32))
    assert zero_query.tolist() == [0.0, 0.0]


@pytest.mark.asyncio
async def test_upsert_is_idempotent(memory_provider):
    """Re-upserting an id replaces the stored document."""
    await memory_provider.initialize()
    await memory_provider.upsert([make_document("doc-1", "first version")])
    await memory_provider.upsert([make_document("doc-1", "second version")])

    assert await memory_provider.count() == 1
    [stored] = await memory_provider.fetch(["doc-1"])
    assert stored.content == "second version"


@pytest.mark.asyncio
async def test_upsert_rejects_wrong_dimension(memory_provider):
    """Precomputed embeddings must match the embedder dimension."""
    doc = make_document("doc-1", "content")
    doc.embedding = np.ones(3, dtype=np.float32)

    with pytest.raises(ValueError):
        await memory_provider.upsert([doc])
    assert await memory_provider.count() == 0


@pytest.mark.asyncio
async def test_search_ranks_and_truncates(memory_provider):
    """Results are sorted by descending score and capped at top_k."""
    await memory_provider.upsert([
        make_document("auth", "OAuth login for users"),
        make_document("billing", "Monthly invoices and billing exports"),
        make_document("login", "Password login screen"),
        make_document("reports", "Quarterly reporting dashboard"),
    ])

    results = await memory_provider.search_by_text("OAuth login", VectorSearchOptions(top_k=2))

    assert len(results) == 2
    assert results[0].id == "auth"
    assert results[0].score >= results[1].score


@pytest.mark.asyncio
async def test_search_filters_before_truncation(memory_provider):
    """top_k counts only documents that pass the filter."""
    await memory_provider.upsert(
        [make_document(f"t1-{i}", "OAuth login flow", team_id="T1") for i in range(5)]
        + [make_document("t2-0", "unrelated shipping notes", team_id="T2")]
    )

    results = await memory_provider.search_by_text(
        "OAuth login flow",
        VectorSearchOptions(top_k=3, filter={"team_id": "T2"})
    )
    assert [r.id for r in results] == ["t2-0"]


@pytest.mark.asyncio
async def test_search_min_score(memory_provider):
    """Results scoring below min_score are dropped."""
    await memory_provider.upsert([
        make_document("match", "OAuth login"),
        make_document("other", "warehouse pallet inventory"),
    ])

    results = await memory_provider.search_by_text(
        "OAuth login",
        VectorSearchOptions(min_score=0.9)
    )
    assert [r.id for r in results] == ["match"]


@pytest.mark.asyncio
async def test_metadata_round_trips(memory_provider):
    """Canonical fields and extras come back unchanged from search."""
    await memory_provider.upsert([make_document(
        "doc-1",
        "OAuth login",
        type=DocumentType.SPECIFICATION,
        title="Auth Flow",
        tags=["high", "draft"],
        team_id="T1",
        specification_id="spec-1",
        extra={"version": 3},
    )])

    [result] = await memory_provider.search_by_text("OAuth", VectorSearchOptions())
    assert result.metadata.type == DocumentType.SPECIFICATION
    assert result.metadata.title == "Auth Flow"
    assert result.metadata.tags == ["high", "draft"]
    assert result.metadata.team_id == "T1"
    assert result.metadata.user_id is None
    assert result.metadata.extra == {"version": 3}


@pytest.mark.asyncio
async def test_delete_by_filter(memory_provider):
    """Matching documents are removed and counted; no match is not an error."""
    await memory_provider.upsert([
        make_document("a", "one", specification_id="spec-1"),
        make_document("b", "two", specification_id="spec-1"),
        make_document("c", "three"),
    ])

    assert await memory_provider.delete_by_filter({"specification_id": "spec-1"}) == 2
    assert await memory_provider.delete_by_filter({"specification_id": "spec-1"}) == 0
    assert await memory_provider.count() == 1

    with pytest.raises(ValueError):
        await memory_provider.delete_by_filter({})


@pytest.mark.asyncio
async def test_delete_and_fetch_ignore_unknown_ids(memory_provider):
    """Unknown ids are skipped."""
    await memory_provider.upsert([make_document("a", "one")])
    await memory_provider.delete(["missing"])
    assert [doc.id for doc in await memory_provider.fetch(["a", "missing"])] == ["a"]

    await memory_provider.delete(["a"])
    assert await memory_provider.fetch(["a"]) == []


@pytest.mark.asyncio
async def test_delete_older_than(memory_provider):
    """Age-based deletion compares created_at."""
    now = utc_now()
    await memory_provider.upsert([
        make_document("old", "one", created_at=now - timedelta(days=30)),
        make_document("new", "two", created_at=now),
    ])

    assert await memory_provider.delete_older_than(now - timedelta(days=7)) == 1
    assert [doc.id for doc in await memory_provider.fetch(["old", "new"])] == ["new"]


@pytest.mark.asyncio
async def test_cancelled_upsert_leaves_no_state(memory_provider):
    """A fired cancel signal aborts the commit."""
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(OperationCancelledError):
        await memory_provider.upsert([make_document("a", "one")], cancel_event=cancel_event)
    assert await memory_provider.count() == 0


def test_search_options_validation():
    """top_k must be a positive integer."""
    with pytest.raises(ValueError):
        VectorSearchOptions(top_k=0)
    with pytest.raises(ValueError):
        VectorSearchOptions(top_k=-3)
