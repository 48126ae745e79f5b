"""
Base interfaces and data structures for the vector index.

Defines the abstract contract a vector backend must implement, including
the session reference counting shared by every backend.
"""

import itertools
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from ..decay import now_seconds
from ..errors import DimensionMismatchError

_session_ids = itertools.count(1)


@dataclass
class VectorRecord:
    """
    One embedding row, keyed by the id of the fact it belongs to.

    text, importance and category are denormalized from the fact so
    results can be filtered without a join.
    """
    vector: list[float]
    text: str
    importance: float
    category: str
    id: Optional[str] = None
    created_at: int = field(default_factory=now_seconds)


@dataclass
class SearchResult:
    """A search result from the vector index."""
    record: VectorRecord
    score: float  # Cosine similarity, higher is more similar

    @property
    def id(self) -> str:
        return self.record.id


@dataclass(eq=False)
class SessionHandle:
    """One logical session's claim on a shared vector index. Never persisted."""
    session_id: int = field(default_factory=lambda: next(_session_ids))
    opened_at: int = field(default_factory=now_seconds)
    released: bool = False


def validate_vector(vector: list[float], dimension: int) -> None:
    """Raise DimensionMismatchError unless the vector has the configured length."""
    if len(vector) != dimension:
        raise DimensionMismatchError(expected=dimension, actual=len(vector))


class VectorStore(ABC):
    """
    Abstract interface for a shared, reference-counted vector index.

    One instance exists per storage location. Sessions claim it with
    open() and release it with remove_session(); the physical connection
    closes only when the last claim is released. close() is the host's
    force-shutdown path. Operations reconnect lazily after any close.
    """

    def __init__(self, dimension: int):
        self.dimension = dimension
        self.session_count = 0
        self.closed = False

    @property
    @abstractmethod
    def connection(self):
        """The live backend handle, or None when disconnected."""

    @abstractmethod
    def _disconnect(self) -> None:
        """Release the backend handle."""

    def open(self) -> SessionHandle:
        """
        Claim the index for a new session.

        Clears the closed flag so the next operation reconnects; does not
        connect eagerly.
        """
        self.session_count += 1
        self.closed = False
        return SessionHandle()

    def remove_session(self, handle: Optional[SessionHandle] = None) -> None:
        """
        Release one session's claim. Closes for real when none remain.

        Releasing a handle twice, or releasing with no open sessions, is
        a no-op.
        """
        if handle is not None:
            if handle.released:
                return
            handle.released = True
        if self.session_count == 0:
            return
        self.session_count -= 1
        if self.session_count == 0:
            self._disconnect()
            self.closed = True

    def close(self) -> None:
        """Force-close regardless of open sessions. For host shutdown only."""
        self.session_count = 0
        self._disconnect()
        self.closed = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SessionHandle]:
        """Hold a session for the duration of a block."""
        handle = self.open()
        try:
            yield handle
        finally:
            self.remove_session(handle)

    async def initialize(self) -> None:
        """Connect eagerly (optional; operations connect on first use)."""
        self._ensure_connected()

    @abstractmethod
    def _ensure_connected(self):
        """Return a live backend handle, reconnecting if needed."""

    @abstractmethod
    async def store(self, record: VectorRecord) -> str:
        """
        Store a vector row.

        Args:
            record: The row to write. An id is assigned if absent.

        Returns:
            The id of the stored row
        """

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        limit: int = 5,
        min_score: float = 0.3,
    ) -> list[SearchResult]:
        """
        Nearest-neighbor search.

        Args:
            query_vector: The embedding to search for
            limit: Maximum number of results
            min_score: Minimum similarity threshold

        Returns:
            Results ordered by descending score
        """

    @abstractmethod
    async def get(self, id: str) -> Optional[VectorRecord]:
        """Fetch a single row by id, or None."""

    @abstractmethod
    async def has_duplicate(self, vector: list[float], threshold: float = 0.95) -> bool:
        """True if the nearest existing row scores at or above threshold."""

    @abstractmethod
    async def delete(self, id: str) -> bool:
        """Remove a row. Only used when the owning fact is hard-deleted."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored rows."""
