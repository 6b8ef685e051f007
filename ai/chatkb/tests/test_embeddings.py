"""Tests for embedding providers and helpers."""

import os

import numpy as np
import pytest

from chatkb.tests.fakes import FakeEmbeddingProvider
from chatkb.vector.embeddings import LocalEmbeddingProvider, OpenAIEmbeddingProvider, embed_text, embed_texts

needs_model = pytest.mark.skipif(
    not os.getenv("CHATKB_RUN_MODEL_TESTS"), reason="Downloads a sentence-transformers model"
)


@pytest.mark.asyncio
async def test_embed_text_returns_plain_list():
    """Test that async single-text embedding yields a float list."""
    provider = FakeEmbeddingProvider()

    vector = await embed_text(provider, "How do refunds work?")

    assert isinstance(vector, list)
    assert len(vector) == provider.vector_size
    assert all(isinstance(v, float) for v in vector)


@pytest.mark.asyncio
async def test_failed_text_leaves_gap():
    """Test that one failing text does not sink the batch."""
    provider = FakeEmbeddingProvider(fail_on=["poison"])
    texts = ["first chunk", "poison chunk", "third chunk"]

    vectors = await embed_texts(provider, texts, concurrency=2)

    assert len(vectors) == 3
    assert vectors[0] is not None
    assert vectors[1] is None
    assert vectors[2] is not None
    assert sorted(provider.calls) == sorted(texts)


@pytest.mark.asyncio
async def test_embed_texts_preserves_order():
    """Test that results line up with inputs."""
    provider = FakeEmbeddingProvider(vectors={"a": [1.0] + [0.0] * 63, "b": [0.0, 1.0] + [0.0] * 62})

    vectors = await embed_texts(provider, ["b", "a"], concurrency=1)

    assert vectors[0][1] == 1.0
    assert vectors[1][0] == 1.0


@pytest.mark.asyncio
async def test_embed_texts_empty():
    """Test that an empty batch embeds nothing."""
    assert await embed_texts(FakeEmbeddingProvider(), []) == []


@needs_model
def test_local_embedding_provider():
    """Test local embedding provider."""
    provider = LocalEmbeddingProvider()
    texts = ["This is a test", "Another test sentence"]

    embeddings = provider.get_embeddings(texts)

    assert isinstance(embeddings, np.ndarray)
    assert embeddings.shape == (len(texts), provider.vector_size)
    assert embeddings.dtype == np.float32


@needs_model
def test_local_embedding_consistency():
    """Test that same text produces same embedding."""
    provider = LocalEmbeddingProvider()

    embedding1 = provider.get_embedding("Consistency test")
    embedding2 = provider.get_embedding("Consistency test")

    np.testing.assert_array_almost_equal(embedding1, embedding2)
    assert np.linalg.norm(embedding1) == pytest.approx(1.0, rel=1e-3)


@pytest.mark.skipif(not os.getenv("OPENAI_API_KEY"), reason="Requires OpenAI API key")
def test_openai_embedding_provider():
    """Test OpenAI embedding provider (requires API key)."""
    provider = OpenAIEmbeddingProvider()

    embeddings = provider.get_embeddings(["Test sentence 1", "Test sentence 2"])

    assert embeddings.shape[0] == 2
    assert embeddings.dtype == np.float32
