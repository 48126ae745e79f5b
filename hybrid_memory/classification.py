"""
Memory operation classification (ADD / UPDATE / DELETE / NOOP).

A cheap LLM call judges a new observation against its nearest existing
facts and answers with a single line, `ACTION [ID] | reason`. Parsing is
fail-open: anything malformed degrades to ADD, so a bad judgment can
over-store but never lose information or raise.

ClassificationEngine then applies the decision to the fact store and the
vector index as one unit, compensating (and journaling, when a WAL is
configured) so a failure half-way never leaves the two out of step.
"""

import dataclasses
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from .facts import FactStore
from .llm.base import LLMProvider
from .memory.base import VectorRecord, VectorStore
from .models import ApplyOutcome, MemoryDraft, MemoryEntry
from .wal import WALEntry, WriteAheadLog

logger = logging.getLogger("hybrid_memory.classification")

ACTIONS = ("ADD", "UPDATE", "DELETE", "NOOP")

# Candidates shown to the model, and how much of each text it sees
MAX_CANDIDATES = 5
CANDIDATE_TEXT_CHARS = 300
NEW_FACT_CHARS = 500

_RESPONSE_PATTERN = re.compile(r"^(ADD|UPDATE|DELETE|NOOP)\s*([a-f0-9-]*)\s*\|\s*(.+)$", re.IGNORECASE)

CLASSIFY_PROMPT = """You maintain a long-term memory of facts about a user and their work.
A new fact has been observed. Compare it with the existing facts below and decide what to do.

New fact: {new_fact}{entity_line}{key_line}

Existing facts:
{existing_facts}

Answer with exactly one line in this format:
ACTION [ID] | reason

Where ACTION is one of:
- ADD: the new fact is new information (no ID)
- UPDATE <id>: the new fact replaces or corrects the existing fact with that id
- DELETE <id>: the new fact says the existing fact with that id is no longer true
- NOOP: the new fact is already known (no ID)

Use the id exactly as shown in [id=...]."""


@dataclass
class MemoryClassification:
    """A parsed judgment. target_id is only meaningful for UPDATE and DELETE."""
    action: str
    reason: str
    target_id: Optional[str] = None


def parse_classification_response(content: str, candidates: list[MemoryEntry]) -> MemoryClassification:
    """
    Parse `ACTION [ID] | reason` into a MemoryClassification.

    Never raises. UPDATE/DELETE must reference one of the candidate ids;
    a missing or unknown id, or text that doesn't fit the grammar at all,
    falls back to ADD with a diagnostic reason.
    """
    content = (content or "").strip()
    match = _RESPONSE_PATTERN.match(content)
    if not match:
        return MemoryClassification(action="ADD", reason=f"unparseable LLM response: {content[:80]}")

    action = match.group(1).upper()
    reason = match.group(3).strip()
    # Only UPDATE and DELETE point at an existing fact
    target_id = (match.group(2).strip() or None) if action in ("UPDATE", "DELETE") else None

    if action in ("UPDATE", "DELETE"):
        if not target_id:
            return MemoryClassification(action="ADD", reason=f"missing targetId for {action}; treating as ADD")
        if not any(c.id == target_id for c in candidates):
            return MemoryClassification(
                action="ADD",
                reason=f"LLM referenced unknown id {target_id}; treating as ADD",
            )

    return MemoryClassification(action=action, reason=reason, target_id=target_id)


def _format_candidate(index: int, entry: MemoryEntry) -> str:
    line = f"{index}. [id={entry.id}] {entry.category}"
    if entry.entity:
        line += f" | entity: {entry.entity}"
    if entry.key:
        line += f" | key: {entry.key}"
    return f"{line}: {entry.text[:CANDIDATE_TEXT_CHARS]}"


def build_classification_prompt(
    text: str,
    entity: Optional[str],
    key: Optional[str],
    candidates: list[MemoryEntry],
) -> str:
    existing = "\n".join(
        _format_candidate(i, c) for i, c in enumerate(candidates[:MAX_CANDIDATES], start=1)
    )
    return CLASSIFY_PROMPT.format(
        new_fact=text[:NEW_FACT_CHARS],
        entity_line=f"\nEntity: {entity}" if entity else "",
        key_line=f"\nKey: {key}" if key else "",
        existing_facts=existing,
    )


async def classify_memory_operation(
    text: str,
    entity: Optional[str],
    key: Optional[str],
    candidates: list[MemoryEntry],
    llm: LLMProvider,
) -> MemoryClassification:
    """
    Ask the LLM how a new fact relates to its nearest existing facts.

    Falls back to ADD when there is nothing to compare against or the
    call fails.
    """
    if not candidates:
        return MemoryClassification(action="ADD", reason="no similar facts found")

    prompt = build_classification_prompt(text, entity, key, candidates)
    try:
        response = await llm.generate(prompt=prompt, temperature=0.0, max_tokens=100)
    except Exception as e:
        logger.warning(f"Classification call failed: {e}")
        return MemoryClassification(action="ADD", reason="classification failed; defaulting to ADD")

    decision = parse_classification_response(response.content, candidates)
    logger.debug(f"Classified as {decision.action} ({decision.target_id}): {decision.reason}")
    return decision


class ClassificationEngine:
    """
    Applies classification decisions to the fact store and vector index.

    Each mutating path either completes on both stores or is rolled back
    before the error propagates. With a WAL configured, the intent is
    journaled first so recover() can clean up after a crash.
    """

    def __init__(
        self,
        fact_store: FactStore,
        vector_index: VectorStore,
        wal: Optional[WriteAheadLog] = None,
    ):
        self.fact_store = fact_store
        self.vector_index = vector_index
        self.wal = wal

    async def apply(
        self,
        decision: MemoryClassification,
        draft: MemoryDraft,
        vector: Optional[list[float]] = None,
    ) -> ApplyOutcome:
        """
        Apply a decision for a new observation.

        Args:
            decision: What to do
            draft: The observed fact
            vector: Its embedding. Without one, only the fact row is written.

        Returns:
            ApplyOutcome describing what was actually done
        """
        if decision.action == "NOOP":
            logger.info(f"NOOP: {decision.reason}")
            return ApplyOutcome(action="NOOP", reason=decision.reason)

        if decision.action == "DELETE":
            return self._retract(decision)

        if decision.action == "UPDATE":
            old = self.fact_store.get(decision.target_id) if decision.target_id else None
            if old is None or old.is_superseded:
                reason = f"target {decision.target_id} is no longer current; treating as ADD"
                logger.warning(reason)
                return await self._add(draft, vector, reason)
            return await self._update(old, draft, vector, decision.reason)

        return await self._add(draft, vector, decision.reason)

    def _retract(self, decision: MemoryClassification) -> ApplyOutcome:
        # A single row update; nothing to pair with
        changed = self.fact_store.supersede(decision.target_id, None, strict=True)
        if not changed:
            logger.info(f"DELETE: {decision.target_id} was already superseded")
        else:
            logger.info(f"DELETE: retracted {decision.target_id}: {decision.reason}")
        return ApplyOutcome(action="DELETE", reason=decision.reason, target_id=decision.target_id)

    def _journal(
        self,
        operation: str,
        fact_id: str,
        with_vector: bool,
        target_id: Optional[str] = None,
    ) -> Optional[WALEntry]:
        if self.wal is None:
            return None
        entry = WALEntry(operation=operation, fact_id=fact_id, target_id=target_id, with_vector=with_vector)
        self.wal.write(entry)
        return entry

    def _finish(self, journal: Optional[WALEntry]) -> None:
        if self.wal is not None and journal is not None:
            self.wal.remove(journal.id)

    async def _index(self, entry: MemoryEntry, vector: Optional[list[float]]) -> Optional[str]:
        if vector is None:
            return None
        record = VectorRecord(
            id=entry.id,
            vector=vector,
            text=entry.text,
            importance=entry.importance,
            category=entry.category,
            created_at=entry.created_at,
        )
        return await self.vector_index.store(record)

    async def _compensate(
        self,
        fact_id: str,
        fact_stored: bool,
        vector_stored: bool,
        journal: Optional[WALEntry],
    ) -> None:
        """Undo a partial write. Leaves the journal entry behind if undo fails."""
        try:
            if vector_stored:
                await self.vector_index.delete(fact_id)
            if fact_stored:
                self.fact_store.delete(fact_id)
        except Exception as e:
            logger.error(f"Rollback of {fact_id} failed, left for recovery: {e}")
            return
        self._finish(journal)
        logger.warning(f"Rolled back partial write of {fact_id}")

    async def _add(self, draft: MemoryDraft, vector: Optional[list[float]], reason: str) -> ApplyOutcome:
        fact_id = str(uuid.uuid4())
        journal = self._journal("ADD", fact_id, with_vector=vector is not None)
        fact_stored = vector_stored = False
        try:
            entry = self.fact_store.store(draft, fact_id=fact_id)
            if entry.id != fact_id:
                # Fuzzy dedupe returned an existing row
                self._finish(journal)
                logger.info(f"ADD resolved to existing fact {entry.id}")
                return ApplyOutcome(
                    action="NOOP",
                    reason=f"duplicate of existing fact {entry.id}",
                    entry=entry,
                )
            fact_stored = True
            vector_id = await self._index(entry, vector)
            vector_stored = vector_id is not None
        except Exception:
            await self._compensate(fact_id, fact_stored, vector_stored, journal)
            raise

        self._finish(journal)
        logger.info(f"ADD: stored {entry.id} ({'with' if vector_stored else 'without'} vector)")
        return ApplyOutcome(action="ADD", reason=reason, entry=entry, vector_id=vector_id)

    async def _update(
        self,
        old: MemoryEntry,
        draft: MemoryDraft,
        vector: Optional[list[float]],
        reason: str,
    ) -> ApplyOutcome:
        merged = dataclasses.replace(
            draft,
            importance=max(draft.importance, old.importance),
            entity=draft.entity or old.entity,
            key=draft.key or old.key,
            value=draft.value if draft.value is not None else old.value,
            decay_class=draft.decay_class or old.decay_class,
        )

        fact_id = str(uuid.uuid4())
        journal = self._journal("UPDATE", fact_id, with_vector=vector is not None, target_id=old.id)
        fact_stored = vector_stored = False
        vector_id = None
        try:
            entry = self.fact_store.store(merged, fact_id=fact_id)
            fact_stored = entry.id == fact_id
            if not fact_stored:
                # Fuzzy dedupe hit: the new text already exists as its own fact
                if entry.id == old.id:
                    self._finish(journal)
                    return ApplyOutcome(action="NOOP", reason=f"duplicate of {old.id}", entry=old)
            else:
                vector_id = await self._index(entry, vector)
                vector_stored = vector_id is not None
            if not self.fact_store.supersede(old.id, entry.id, strict=True):
                logger.warning(f"UPDATE: {old.id} was superseded concurrently; keeping {entry.id}")
        except Exception:
            await self._compensate(fact_id, fact_stored, vector_stored, journal)
            raise

        self._finish(journal)
        logger.info(f"UPDATE: superseded {old.id} with {entry.id}: {reason}")
        return ApplyOutcome(action="UPDATE", reason=reason, entry=entry, target_id=old.id, vector_id=vector_id)

    async def recover(self) -> int:
        """
        Finish or undo mutations left in the WAL by a crash.

        A pending ADD or UPDATE is rolled back unless both of its rows made
        it; an UPDATE whose rows did make it is rolled forward by
        superseding its target. Entries older than the log's max_age are
        always rolled back, since their target may have changed since.

        Returns:
            Number of journal entries resolved
        """
        if self.wal is None:
            return 0

        pending = self.wal.read_all()
        now = time.time()
        for journal in pending:
            fact = self.fact_store.get(journal.fact_id) if journal.fact_id else None
            has_vector = bool(journal.fact_id) and await self.vector_index.get(journal.fact_id) is not None
            complete = fact is not None and (has_vector or not journal.with_vector)

            if complete and not self.wal.is_stale(journal, now):
                if journal.operation == "UPDATE" and journal.target_id:
                    self.fact_store.supersede(journal.target_id, fact.id)
                logger.info(f"Recovered {journal.operation} {fact.id}: completed")
            else:
                if has_vector:
                    await self.vector_index.delete(journal.fact_id)
                if fact is not None:
                    self.fact_store.delete(fact.id)
                logger.info(f"Recovered {journal.operation} {journal.fact_id}: rolled back")
            self.wal.remove(journal.id)

        if pending:
            logger.info(f"WAL recovery resolved {len(pending)} entries")
        return len(pending)
