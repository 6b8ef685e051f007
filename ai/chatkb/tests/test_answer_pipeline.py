"""Tests for the question answering pipeline."""

import pytest

from chatkb.core.constants import NO_KB_MSG
from chatkb.core.utils import question_hash
from chatkb.generation.answer_cache import AnswerCache
from chatkb.generation.pipeline import AnswerPipeline
from chatkb.ingestion.pipeline import KnowledgeIngestor
from chatkb.tests.fakes import FakeEmbeddingProvider, FakeLLM
from chatkb.vector.retriever import HybridRetriever

BOT = "bot-1"
SHIPPING = "Shipping: orders ship within three business days from our Berlin warehouse."


def make_pipeline(store, llm=None, embedder=None):
    embedder = embedder or FakeEmbeddingProvider()
    cache = AnswerCache(store, embedder, similarity_threshold=0.85)
    retriever = HybridRetriever(store, embedder)
    return AnswerPipeline(store, cache, retriever, llm), cache


@pytest.mark.asyncio
async def test_repeat_question_served_from_cache(store):
    """Test that asking twice generates once and counts the cache hit."""
    await KnowledgeIngestor(store, FakeEmbeddingProvider()).ingest_document(
        BOT, "shipping.txt", SHIPPING.encode("utf-8")
    )
    llm = FakeLLM()
    pipeline, cache = make_pipeline(store, llm)

    first = await pipeline.answer(BOT, "How fast is shipping?")
    second = await pipeline.answer(BOT, "how fast is shipping?  ")
    await cache.drain()

    assert first["source"] == "generated"
    assert first["answer"] == "Orders ship within three business days."
    assert first["suggested_questions"] == ["How much is shipping?", "Do you ship abroad?"]
    assert first["sources"][0]["url"] == "document://shipping.txt"
    assert second["source"] == "cache"
    assert second["answer"] == first["answer"]
    assert second["suggested_questions"] == first["suggested_questions"]
    assert len(llm.answer_calls) == 1
    entry = await store.get_cache_entry(BOT, question_hash("how fast is shipping?"))
    assert entry.hit_count == 1


@pytest.mark.asyncio
async def test_context_carries_retrieved_chunks_and_history(store):
    """Test the prompt sent to the model."""
    await KnowledgeIngestor(store, FakeEmbeddingProvider()).ingest_document(
        BOT, "shipping.txt", SHIPPING.encode("utf-8")
    )
    llm = FakeLLM()
    pipeline, _ = make_pipeline(store, llm)
    history = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}]

    await pipeline.answer(BOT, "Where do you ship from?", history=history)

    messages = llm.answer_calls[0]
    assert "Berlin warehouse" in messages[0]["content"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1]["content"] == "Where do you ship from?"


@pytest.mark.asyncio
async def test_override_answer_skips_generation(store):
    """Test that a manual override is returned as-is."""
    llm = FakeLLM()
    pipeline, cache = make_pipeline(store, llm)
    await cache.add_override(BOT, "Who founded the company?", "Ada and Grace.", created_by="ops")

    result = await pipeline.answer(BOT, "who founded the company?")

    assert result["source"] == "override"
    assert result["answer"] == "Ada and Grace."
    assert llm.calls == []


@pytest.mark.asyncio
async def test_empty_knowledge_base(store):
    """Test the no-knowledge reply when nothing has been ingested."""
    llm = FakeLLM()
    pipeline, _ = make_pipeline(store, llm)

    result = await pipeline.answer(BOT, "What is your refund policy?")

    assert result["answer"] == NO_KB_MSG
    assert result["sources"] == []
    assert llm.calls == []


@pytest.mark.asyncio
async def test_raw_content_fallback_when_nothing_scores(store):
    """Test that unmatched questions still get the tenant's content as context."""
    embedder = FakeEmbeddingProvider(fail_on=["Shipping", "zebra"])
    await KnowledgeIngestor(store, embedder).ingest_document(BOT, "shipping.txt", SHIPPING.encode("utf-8"))
    llm = FakeLLM()
    pipeline, _ = make_pipeline(store, llm, embedder=embedder)

    result = await pipeline.answer(BOT, "zebra?")

    assert result["source"] == "generated"
    assert result["sources"] == []
    assert "Berlin warehouse" in llm.answer_calls[0][0]["content"]


@pytest.mark.asyncio
async def test_bad_suggestions_are_ignored(store):
    """Test that unparseable follow-ups do not fail the answer."""
    await KnowledgeIngestor(store, FakeEmbeddingProvider()).ingest_document(
        BOT, "shipping.txt", SHIPPING.encode("utf-8")
    )
    pipeline, _ = make_pipeline(store, FakeLLM(suggestions="Sure! Here are some ideas."))

    result = await pipeline.answer(BOT, "How fast is shipping?")

    assert result["suggested_questions"] == []


@pytest.mark.asyncio
async def test_without_llm_returns_no_knowledge_message(store):
    """Test that a missing LLM provider degrades to the fixed reply."""
    await KnowledgeIngestor(store, FakeEmbeddingProvider()).ingest_document(
        BOT, "shipping.txt", SHIPPING.encode("utf-8")
    )
    pipeline, _ = make_pipeline(store, None)

    result = await pipeline.answer(BOT, "How fast is shipping?")

    assert result["answer"] == NO_KB_MSG
