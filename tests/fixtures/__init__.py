"""
Test fixtures and sample data for hybrid memory tests.
"""

from typing import Optional
from unittest.mock import AsyncMock, MagicMock

from hybrid_memory.decay import now_seconds
from hybrid_memory.llm.base import LLMResponse
from hybrid_memory.memory.embeddings import EmbeddingService
from hybrid_memory.models import MemoryDraft, MemoryEntry

# Small vectors keep the real ChromaDB tests fast
TEST_DIM = 3


def make_draft(
    text: str = "User prefers dark mode",
    category: str = "preference",
    importance: float = 0.7,
    entity: Optional[str] = "user",
    key: Optional[str] = "theme",
    value: Optional[str] = "dark",
    source: str = "conversation",
    **kwargs,
) -> MemoryDraft:
    """Create a sample MemoryDraft for testing."""
    return MemoryDraft(
        text=text,
        category=category,
        importance=importance,
        entity=entity,
        key=key,
        value=value,
        source=source,
        **kwargs,
    )


def make_entry(
    id: str = "550e8400-e29b-41d4-a716-446655440000",
    text: str = "User prefers VS Code with dark mode",
    category: str = "preference",
    entity: Optional[str] = "user",
    key: Optional[str] = "editor",
    value: Optional[str] = "vscode",
    **kwargs,
) -> MemoryEntry:
    """Create a MemoryEntry without going through a store."""
    now = now_seconds()
    return MemoryEntry(
        id=id,
        text=text,
        category=category,
        importance=kwargs.pop("importance", 0.8),
        entity=entity,
        key=key,
        value=value,
        source=kwargs.pop("source", "test"),
        created_at=kwargs.pop("created_at", now),
        last_confirmed_at=kwargs.pop("last_confirmed_at", now),
        **kwargs,
    )


class StubEmbeddingService(EmbeddingService):
    """
    Deterministic embeddings for tests.

    Texts listed in `vectors` get that vector; anything else gets `default`.
    """

    def __init__(
        self,
        vectors: Optional[dict[str, list[float]]] = None,
        default: Optional[list[float]] = None,
        fail: bool = False,
    ):
        self.vectors = vectors or {}
        self.default = default or [0.0, 0.0, 1.0]
        self.fail = fail
        self.calls: list[str] = []

    @property
    def dimension(self) -> int:
        return TEST_DIM

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        return list(self.vectors.get(text, self.default))

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


def make_llm(content: str = "ADD | new information") -> MagicMock:
    """An LLMProvider double whose generate() answers with `content`."""
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content=content, model="gpt-4o-mini"))
    return llm
