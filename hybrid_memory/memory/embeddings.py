"""
Embedding Service for generating vector representations.

Uses OpenAI's embedding models by default, with support for local models
via sentence-transformers. Every vector coming back is checked against
the dimension configured for the model before it reaches the index.
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Literal, Optional

from ..errors import DimensionMismatchError, ValidationError
from .base import validate_vector

logger = logging.getLogger("hybrid_memory.memory.embeddings")

# Default dimensions for each supported model
MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "all-MiniLM-L6-v2": 384,
}

# Max cached embeddings before the oldest is evicted
EMBEDDING_CACHE_MAX = 500


def vector_dims_for_model(model: str) -> int:
    """Dimension for a known embedding model."""
    dims = MODEL_DIMENSIONS.get(model)
    if dims is None:
        raise ValidationError(f"Unsupported embedding model: {model}", field="model")
    return dims


class EmbeddingService(ABC):
    """Abstract interface for embedding generation."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        pass


class OpenAIEmbeddingService(EmbeddingService):
    """
    OpenAI embedding service using text-embedding-3 models.

    Keeps a small LRU cache so repeated texts (the same fact re-observed
    across sessions) don't cost another API call.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        cache_size: int = EMBEDDING_CACHE_MAX,
    ):
        self.api_key = api_key
        self.model = model
        self._dimension = vector_dims_for_model(model)
        self._client = None
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._cache_size = cache_size
        logger.info(f"OpenAIEmbeddingService initialized: model={model}, dimensions={self._dimension}")

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def _remember(self, text: str, vector: list[float]) -> None:
        self._cache[text] = vector
        self._cache.move_to_end(text)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return cached

        client = self._get_client()
        response = await client.embeddings.create(model=self.model, input=text)
        vector = response.data[0].embedding
        validate_vector(vector, self._dimension)

        self._remember(text, vector)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts efficiently."""
        if not texts:
            return []

        client = self._get_client()
        response = await client.embeddings.create(model=self.model, input=texts)

        # Sort by index to maintain order
        sorted_data = sorted(response.data, key=lambda x: x.index)
        vectors = [item.embedding for item in sorted_data]
        for text, vector in zip(texts, vectors):
            validate_vector(vector, self._dimension)
            self._remember(text, vector)
        return vectors


class LocalEmbeddingService(EmbeddingService):
    """
    Local embedding service using sentence-transformers.

    Uses all-MiniLM-L6-v2 by default (384 dimensions, fast, good quality).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = MODEL_DIMENSIONS.get(model_name, 384)
        logger.info(f"LocalEmbeddingService initialized with model: {model_name}")

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
            logger.info(f"Loaded local embedding model: {self.model_name}")
        return self._model

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        model = self._get_model()
        vector = model.encode(text, convert_to_numpy=True).tolist()
        validate_vector(vector, self._dimension)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        if not texts:
            return []

        model = self._get_model()
        vectors = model.encode(texts, convert_to_numpy=True).tolist()
        for vector in vectors:
            validate_vector(vector, self._dimension)
        return vectors


async def safe_embed(service: EmbeddingService, text: str) -> Optional[list[float]]:
    """
    Embed, or log and return None when the provider fails.

    DimensionMismatchError propagates: a wrong-length vector means the
    model and the index disagree.
    """
    try:
        return await service.embed(text)
    except DimensionMismatchError:
        raise
    except Exception as e:
        logger.warning(f"Embedding failed: {e}")
        return None


def create_embedding_service(
    provider: Literal["openai", "local"] = "openai",
    api_key: str = "",
    model: str = "",
) -> EmbeddingService:
    """
    Factory function to create the appropriate embedding service.

    Args:
        provider: "openai" or "local"
        api_key: OpenAI API key (required for openai provider)
        model: Model name (optional, uses defaults)

    Returns:
        Configured EmbeddingService instance
    """
    if provider == "openai":
        if not api_key:
            raise ValueError("OpenAI API key required for openai embedding provider")
        return OpenAIEmbeddingService(
            api_key=api_key,
            model=model or "text-embedding-3-small",
        )
    elif provider == "local":
        return LocalEmbeddingService(
            model_name=model or "all-MiniLM-L6-v2",
        )
    else:
        raise ValueError(f"Unknown embedding provider: {provider}")
