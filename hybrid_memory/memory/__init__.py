"""
Vector memory: embeddings and the shared, reference-counted vector index.

The host-facing orchestration lives in hybrid_memory.memory.memory_manager.
"""

from .base import SearchResult, SessionHandle, VectorRecord, VectorStore
from .embeddings import EmbeddingService, create_embedding_service, vector_dims_for_model
from .chroma_store import ChromaVectorIndex

__all__ = [
    "SearchResult",
    "SessionHandle",
    "VectorRecord",
    "VectorStore",
    "EmbeddingService",
    "create_embedding_service",
    "vector_dims_for_model",
    "ChromaVectorIndex",
]
