"""
Similarity resolution: vector hits joined back to live facts.

The vector index keeps rows for superseded facts (they are only removed on
hard delete), so every semantic lookup has to go through the fact store
to find out what is still current.
"""

import logging

from .decay import now_seconds
from .facts import FactStore
from .memory.base import VectorStore
from .models import MemoryEntry

logger = logging.getLogger("hybrid_memory.resolver")

DEFAULT_MIN_SCORE = 0.3


async def find_similar_with_scores(
    vector_index: VectorStore,
    fact_store: FactStore,
    query_vector: list[float],
    limit: int = 5,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[tuple[MemoryEntry, float]]:
    """
    Find live facts whose vectors are nearest to query_vector, with scores.

    Hits whose fact is missing, superseded, retracted or expired are
    dropped. Score order is preserved. Never raises for an empty index.

    Args:
        vector_index: The shared vector index
        fact_store: The structured store to resolve ids against
        query_vector: Embedding to search for
        limit: Maximum number of facts to return
        min_score: Minimum similarity threshold

    Returns:
        At most `limit` (entry, score) pairs, most similar first
    """
    if limit <= 0:
        return []

    # Over-fetch: some hits are expected to resolve to superseded facts
    results = await vector_index.search(query_vector, limit=limit * 2, min_score=min_score)

    now = now_seconds()
    entries: list[tuple[MemoryEntry, float]] = []
    seen: set[str] = set()
    for result in results:
        if result.id in seen:
            continue
        seen.add(result.id)

        entry = fact_store.get(result.id)
        if entry is None:
            logger.debug(f"Vector {result.id} has no fact row; skipping")
            continue
        if entry.is_superseded or entry.is_expired(now):
            continue

        entries.append((entry, result.score))
        if len(entries) >= limit:
            break

    logger.debug(f"Resolved {len(entries)} live facts from {len(results)} vector hits")
    return entries


async def find_similar(
    vector_index: VectorStore,
    fact_store: FactStore,
    query_vector: list[float],
    limit: int = 5,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[MemoryEntry]:
    """Like find_similar_with_scores, without the scores."""
    scored = await find_similar_with_scores(vector_index, fact_store, query_vector, limit, min_score)
    return [entry for entry, _ in scored]
