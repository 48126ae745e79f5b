"""
Memory Manager - Orchestrates the hybrid memory system.

This is the high-level interface an agent session uses.
It handles:
- Claiming and releasing the shared vector index
- Embedding new observations
- Finding the existing facts they may relate to
- Classifying and applying ADD / UPDATE / DELETE / NOOP
- Recalling facts by meaning and by keyword
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..classification import ClassificationEngine, MemoryClassification, classify_memory_operation
from ..config import Config, session_context
from ..facts import FactStore
from ..llm.base import LLMProvider
from ..llm.factory import create_llm_provider
from ..models import ApplyOutcome, MemoryDraft, MemoryEntry
from ..resolver import DEFAULT_MIN_SCORE, find_similar_with_scores
from ..wal import WriteAheadLog
from .base import SessionHandle, VectorStore
from .chroma_store import ChromaVectorIndex
from .embeddings import EmbeddingService, create_embedding_service, safe_embed, vector_dims_for_model

logger = logging.getLogger("hybrid_memory.memory.manager")


@dataclass
class RecallResult:
    """A recalled fact and how it was found."""
    entry: MemoryEntry
    score: float
    backend: str  # "semantic" or "keyword"


class MemoryManager:
    """
    High-level memory management for one agent session.

    Several managers may share one vector index; each holds its own
    session on it between initialize() and close().
    """

    def __init__(
        self,
        fact_store: FactStore,
        vector_index: VectorStore,
        embedding_service: EmbeddingService,
        llm: Optional[LLMProvider] = None,
        wal: Optional[WriteAheadLog] = None,
        classify: bool = True,
        candidate_limit: int = 5,
        min_score: float = DEFAULT_MIN_SCORE,
        duplicate_threshold: float = 0.95,
        owns_fact_store: bool = False,
    ):
        self.fact_store = fact_store
        self.vector_index = vector_index
        self.embedding_service = embedding_service
        self.llm = llm
        self.classify = classify
        self.candidate_limit = candidate_limit
        self.min_score = min_score
        self.duplicate_threshold = duplicate_threshold
        self.owns_fact_store = owns_fact_store
        self.engine = ClassificationEngine(fact_store, vector_index, wal=wal)
        self._handle: Optional[SessionHandle] = None
        logger.info("MemoryManager created")

    async def initialize(self) -> None:
        """Claim a session on the vector index and recover any unfinished writes."""
        if self._handle is not None:
            return
        self._handle = self.vector_index.open()
        session_context.set(self._handle.session_id)

        # Journal replay belongs to the first session in the process
        if self.vector_index.session_count == 1:
            recovered = await self.engine.recover()
            if recovered:
                logger.info(f"Recovered {recovered} unfinished writes")

        count = self.fact_store.count(include_superseded=False)
        logger.info(f"MemoryManager initialized with {count} live facts")

    def _ensure_initialized(self) -> None:
        """Ensure the system is initialized."""
        if self._handle is None:
            raise RuntimeError("MemoryManager not initialized. Call initialize() first.")

    async def _candidates(
        self,
        draft: MemoryDraft,
        vector: Optional[list[float]],
    ) -> list[tuple[MemoryEntry, float]]:
        """Nearest live facts by embedding, else by entity/key/keywords."""
        if vector is not None:
            scored = await find_similar_with_scores(
                self.vector_index,
                self.fact_store,
                vector,
                limit=self.candidate_limit,
                min_score=self.min_score,
            )
            if scored:
                return scored

        entries = self.fact_store.find_similar_for_classification(
            draft.text, draft.entity, draft.key, limit=self.candidate_limit
        )
        # No similarity score without a vector
        return [(entry, 0.0) for entry in entries]

    def _decide_without_llm(
        self,
        draft: MemoryDraft,
        scored: list[tuple[MemoryEntry, float]],
    ) -> MemoryClassification:
        if self.fact_store.has_duplicate(draft.text):
            return MemoryClassification(action="NOOP", reason="exact duplicate of an existing fact")
        if scored and scored[0][1] >= self.duplicate_threshold:
            best, score = scored[0]
            return MemoryClassification(action="NOOP", reason=f"near-duplicate of {best.id} (score {score:.3f})")
        return MemoryClassification(action="ADD", reason="classification disabled")

    async def remember(self, draft: MemoryDraft) -> ApplyOutcome:
        """
        Store a new observation, or update/retract what it contradicts.

        Args:
            draft: The observed fact

        Returns:
            ApplyOutcome describing the action taken
        """
        self._ensure_initialized()

        vector = await safe_embed(self.embedding_service, draft.text)
        scored = await self._candidates(draft, vector)

        if self.llm is not None and self.classify:
            decision = await classify_memory_operation(
                draft.text,
                draft.entity,
                draft.key,
                [entry for entry, _ in scored],
                self.llm,
            )
        else:
            decision = self._decide_without_llm(draft, scored)

        outcome = await self.engine.apply(decision, draft, vector)
        logger.info(f"remember: {outcome.action} ({outcome.reason})")
        return outcome

    async def recall(
        self,
        query: str,
        limit: int = 5,
        min_score: Optional[float] = None,
    ) -> list[RecallResult]:
        """
        Find live facts relevant to a query.

        Semantic and keyword hits are merged by fact id, keeping the
        higher score, and returned best first.

        Args:
            query: Free-text query
            limit: Maximum results
            min_score: Semantic similarity floor (defaults to the manager's)

        Returns:
            At most `limit` results
        """
        self._ensure_initialized()
        if limit <= 0:
            return []

        merged: dict[str, RecallResult] = {}

        vector = await safe_embed(self.embedding_service, query)
        if vector is not None:
            semantic = await find_similar_with_scores(
                self.vector_index,
                self.fact_store,
                vector,
                limit=limit,
                min_score=self.min_score if min_score is None else min_score,
            )
            for entry, score in semantic:
                merged[entry.id] = RecallResult(entry=entry, score=score, backend="semantic")

        for entry, score in self.fact_store.search(query, limit=limit):
            existing = merged.get(entry.id)
            if existing is None or score > existing.score:
                merged[entry.id] = RecallResult(entry=entry, score=score, backend="keyword")

        results = sorted(merged.values(), key=lambda r: r.score, reverse=True)[:limit]
        logger.info(f"Recalled {len(results)} facts for query")
        return results

    async def forget(self, fact_id: str) -> bool:
        """Hard-delete a fact and its vector. Returns False if the fact was absent."""
        self._ensure_initialized()
        await self.vector_index.delete(fact_id)
        return self.fact_store.delete(fact_id)

    async def prune(self) -> int:
        """Hard-delete expired facts along with their vectors. Returns the count removed."""
        self._ensure_initialized()
        pruned = self.fact_store.prune_expired()
        for fact_id in pruned:
            await self.vector_index.delete(fact_id)
        return len(pruned)

    def format_for_context(self, results: list[RecallResult], max_items: int = 10) -> str:
        """Format recalled facts for inclusion in LLM context."""
        if not results:
            return ""
        lines = ["## Relevant memories"]
        for result in results[:max_items]:
            lines.append(f"- {result.entry.to_context_string()}")
        return "\n".join(lines)

    async def stats(self) -> dict:
        self._ensure_initialized()
        return {
            "facts": self.fact_store.count(include_superseded=False),
            "facts_total": self.fact_store.count(),
            "vectors": await self.vector_index.count(),
            "decay_classes": self.fact_store.stats_breakdown(),
        }

    async def close(self) -> None:
        """Release this session's claim on the vector index."""
        if self._handle is not None:
            self.vector_index.remove_session(self._handle)
            self._handle = None
        if self.owns_fact_store:
            self.fact_store.close()
        logger.info("MemoryManager closed")


async def create_memory_manager(
    config: Config,
    vector_index: Optional[VectorStore] = None,
) -> MemoryManager:
    """
    Factory function to create a configured MemoryManager.

    Args:
        config: Loaded configuration
        vector_index: An existing index to share. Sessions over the same
            storage directory must share one instance; a new one is
            built from config when omitted.

    Returns:
        Initialized MemoryManager
    """
    embedding_service = create_embedding_service(
        provider=config.embedding.provider,
        api_key=config.embedding.api_key,
        model=config.embedding.model,
    )

    if vector_index is None:
        vector_index = ChromaVectorIndex(
            persist_directory=config.storage.vector_path,
            dimension=vector_dims_for_model(config.embedding.model),
        )

    fact_store = FactStore(
        db_path=config.storage.sqlite_path,
        categories=config.store.all_categories,
        fuzzy_dedupe=config.store.fuzzy_dedupe,
    )

    wal = None
    if config.storage.wal_path:
        wal = WriteAheadLog(config.storage.wal_path, max_age=config.storage.wal_max_age_seconds)

    llm = None
    if config.classification.enabled:
        llm = create_llm_provider(
            provider=config.classification.provider,
            api_key=config.classification.api_key,
            model=config.classification.model,
        )

    manager = MemoryManager(
        fact_store=fact_store,
        vector_index=vector_index,
        embedding_service=embedding_service,
        llm=llm,
        wal=wal,
        classify=config.classification.enabled,
        candidate_limit=config.classification.candidate_limit,
        min_score=config.store.min_score,
        duplicate_threshold=config.store.duplicate_threshold,
        owns_fact_store=True,
    )

    await manager.initialize()
    return manager
