"""Tests for hybrid retrieval."""

import pytest

from chatkb.core.utils import compute_content_hash, tokenize
from chatkb.ingestion.models import KnowledgeChunk, ScoredChunk
from chatkb.tests.fakes import FakeEmbeddingProvider, basis, vector_at
from chatkb.vector.retriever import HybridRetriever, build_context, compute_top_k, lexical_score

BOT = "bot-1"
QUESTION = "How long does shipping take?"


def make_chunk(text, url="https://example.com/shipping", index=0, embedding=None, title="Shipping"):
    return KnowledgeChunk(
        chatbot_id=BOT,
        source_url=url,
        source_title=title,
        chunk_text=text,
        chunk_index=index,
        content_hash=compute_content_hash(f"{url}:{index}:{text}"),
        embedding=embedding,
        lexical_index=sorted(set(tokenize(text))),
    )


async def add(store, *chunks):
    by_url = {}
    for chunk in chunks:
        by_url.setdefault(chunk.source_url, []).append(chunk)
    for url, items in by_url.items():
        await store.replace_source_chunks(BOT, url, items)


def test_compute_top_k_scales_with_corpus():
    """Test K bounds and proportional growth."""
    assert compute_top_k(0) == 5
    assert compute_top_k(20) == 5
    assert compute_top_k(51) == 6
    assert compute_top_k(100) == 10
    assert compute_top_k(10_000) == 30


def test_lexical_score():
    """Test distinct-term coverage with a phrase bonus."""
    terms = sorted(set(tokenize(QUESTION)))
    partial = make_chunk("Shipping usually takes a long time.")
    exact = make_chunk("How long does shipping take? About three days.")
    none = make_chunk("Our newsletter is sent weekly.")

    assert lexical_score(QUESTION, terms, partial) == pytest.approx(2 / 3)
    assert lexical_score(QUESTION, terms, exact) == 1.0
    assert lexical_score(QUESTION, terms, none) == 0.0
    assert lexical_score("", [], exact) == 0.0


@pytest.mark.asyncio
async def test_empty_knowledge_base_returns_nothing(store):
    """Test that a tenant without chunks gets no results and no embedding call."""
    provider = FakeEmbeddingProvider()
    retriever = HybridRetriever(store, provider)

    assert await retriever.retrieve(BOT, QUESTION) == []
    assert provider.calls == []


@pytest.mark.asyncio
async def test_hybrid_ranking(store):
    """Test the weighted blend of semantic and lexical scores."""
    semantic = make_chunk("Delivery times vary by region.", index=0, embedding=vector_at(0.9))
    mixed = make_chunk("Shipping usually takes a long time.", index=1, embedding=vector_at(0.2))
    lexical_only = make_chunk("How long does shipping take? Three days.", index=2)
    irrelevant = make_chunk("Unrelated newsletter signup.", index=3, embedding=vector_at(-0.5))
    await add(store, semantic, mixed, lexical_only, irrelevant)

    retriever = HybridRetriever(store, FakeEmbeddingProvider(vectors={QUESTION: basis()}))
    results = await retriever.retrieve(BOT, QUESTION)

    assert [r.chunk.chunk_index for r in results] == [0, 1, 2]
    assert results[0].score == pytest.approx(0.7 * 0.9, abs=1e-4)
    assert results[1].score == pytest.approx(0.7 * 0.2 + 0.3 * (2 / 3), abs=1e-4)
    assert results[2].semantic_score == 0.0
    assert results[2].lexical_score == 1.0
    assert results[2].score == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_precomputed_query_embedding_is_used(store):
    """Test that a caller-supplied embedding avoids a second embedding call."""
    await add(store, make_chunk("Delivery times vary by region.", embedding=vector_at(0.9)))
    provider = FakeEmbeddingProvider()
    retriever = HybridRetriever(store, provider)

    results = await retriever.retrieve(BOT, QUESTION, query_embedding=basis())

    assert provider.calls == []
    assert results[0].semantic_score == pytest.approx(0.9, abs=1e-4)


@pytest.mark.asyncio
async def test_lexical_only_without_embedder(store):
    """Test retrieval when no embedding provider is configured."""
    await add(
        store,
        make_chunk("Shipping takes three days.", index=0, embedding=vector_at(0.9)),
        make_chunk("Returns are free.", index=1),
    )
    retriever = HybridRetriever(store, None)

    results = await retriever.retrieve(BOT, "shipping")

    assert len(results) == 1
    assert results[0].chunk.chunk_index == 0
    assert results[0].semantic_score == 0.0


@pytest.mark.asyncio
async def test_ties_break_by_source_then_index(store):
    """Test deterministic ordering among equal scores."""
    await add(
        store,
        make_chunk("shipping policy", url="https://example.com/b", index=0),
        make_chunk("shipping policy", url="https://example.com/a", index=1),
        make_chunk("shipping policy", url="https://example.com/a", index=0),
    )
    retriever = HybridRetriever(store, None)

    results = await retriever.retrieve(BOT, "shipping")

    assert [(r.chunk.source_url, r.chunk.chunk_index) for r in results] == [
        ("https://example.com/a", 0),
        ("https://example.com/a", 1),
        ("https://example.com/b", 0),
    ]


@pytest.mark.asyncio
async def test_top_k_limits_results(store):
    """Test explicit and computed result limits."""
    chunks = [make_chunk(f"shipping note {i}", index=i) for i in range(12)]
    await add(store, *chunks)
    retriever = HybridRetriever(store, None)

    assert len(await retriever.retrieve(BOT, "shipping", top_k=3)) == 3
    assert len(await retriever.retrieve(BOT, "shipping")) == 5


@pytest.mark.asyncio
async def test_other_tenants_are_invisible(store):
    """Test that retrieval is scoped to the chatbot."""
    await add(store, make_chunk("shipping policy"))

    results = await HybridRetriever(store, None).retrieve("bot-2", "shipping")

    assert results == []


def test_build_context_formats_sources():
    """Test the grounding context layout."""
    scored = [
        ScoredChunk(chunk=make_chunk("First.", title="Shipping"), score=0.9),
        ScoredChunk(chunk=make_chunk("Second.", title=""), score=0.5),
    ]

    context = build_context(scored, fallback_text="ignored")

    assert context == (
        "[Source: Shipping]\nFirst.\n\n---\n\n[Source: https://example.com/shipping]\nSecond."
    )


def test_build_context_falls_back_to_raw_text():
    """Test the bounded raw-content fallback."""
    assert build_context([], fallback_text="abcdefghij", max_fallback_chars=4) == "abcd"
    assert build_context([], fallback_text="") == ""
