"""Embedding provider abstraction."""

import asyncio
import logging
from typing import Optional

import numpy as np
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from chatkb.core.config import settings

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Abstract embedding provider."""

    def __init__(self):
        self.model_name = ""
        self.vector_size = 0

    def get_embeddings(self, texts: list[str]) -> np.ndarray:
        """Generate embeddings for a list of texts."""
        raise NotImplementedError

    def get_embedding(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        return self.get_embeddings([text])[0]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embedding provider."""

    def __init__(self):
        super().__init__()
        self.client = OpenAI(api_key=settings.openai_api_key)
        self.model_name = settings.openai_embed_model

        # Map model names to vector sizes
        model_sizes = {
            "text-embedding-3-small": 1536,
            "text-embedding-3-large": 3072,
            "text-embedding-ada-002": 1536,
        }
        self.vector_size = model_sizes.get(self.model_name, 1536)

    def get_embeddings(self, texts: list[str]) -> np.ndarray:
        """Generate embeddings using OpenAI API."""
        try:
            response = self.client.embeddings.create(
                model=self.model_name,
                input=texts,
            )
            embeddings = [item.embedding for item in response.data]
            return np.array(embeddings, dtype=np.float32)
        except Exception as e:
            logger.error(f"Error generating OpenAI embeddings: {e}")
            raise


class LocalEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers embedding provider (384 dimensions by default)."""

    def __init__(self, model_name: Optional[str] = None):
        super().__init__()
        self.model_name = model_name or settings.local_embed_model
        logger.info(f"Loading local embedding model: {self.model_name}")
        self.model = SentenceTransformer(self.model_name)
        self.vector_size = self.model.get_sentence_embedding_dimension()

    def get_embeddings(self, texts: list[str]) -> np.ndarray:
        """Generate embeddings using local model."""
        try:
            embeddings = self.model.encode(
                texts, show_progress_bar=False, convert_to_numpy=True, normalize_embeddings=True
            )
            return embeddings.astype(np.float32)
        except Exception as e:
            logger.error(f"Error generating local embeddings: {e}")
            raise


def get_embedding_provider() -> EmbeddingProvider:
    """Get configured embedding provider."""
    if settings.embeddings_provider == "openai":
        if not settings.openai_api_key:
            logger.warning("OpenAI API key not set, falling back to local embeddings")
            return LocalEmbeddingProvider()
        return OpenAIEmbeddingProvider()
    else:
        return LocalEmbeddingProvider()


async def embed_text(provider: EmbeddingProvider, text: str) -> list[float]:
    """Embed one text off the event loop."""
    vector = await asyncio.to_thread(provider.get_embedding, text)
    return np.asarray(vector, dtype=np.float32).tolist()


async def embed_texts(
    provider: EmbeddingProvider,
    texts: list[str],
    concurrency: Optional[int] = None,
) -> list[Optional[list[float]]]:
    """Embed each text independently and in parallel.

    A failed text yields ``None`` in its slot; the other results are kept.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.embedding_concurrency)

    async def _one(text: str) -> list[float]:
        async with semaphore:
            return await embed_text(provider, text)

    outcomes = await asyncio.gather(*(_one(t) for t in texts), return_exceptions=True)

    vectors: list[Optional[list[float]]] = []
    for index, outcome in enumerate(outcomes):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.warning(f"Embedding failed for text {index}: {outcome}")
            vectors.append(None)
        else:
            vectors.append(outcome)
    return vectors
