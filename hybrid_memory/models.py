"""
Structured fact records.

A MemoryEntry is owned by the fact store. Entries are never edited in
place: an update stores a new entry and marks the old one superseded.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_MEMORY_CATEGORIES = (
    "preference",
    "fact",
    "decision",
    "entity",
    "technical",
    "other",
)

DEFAULT_IMPORTANCE = 0.7


@dataclass
class MemoryDraft:
    """A fact that has not been stored yet."""
    text: str
    category: str = "other"
    importance: float = DEFAULT_IMPORTANCE
    entity: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None
    source: str = "conversation"

    # Computed by the store when left unset
    decay_class: Optional[str] = None
    expires_at: Optional[int] = None
    confidence: float = 1.0


@dataclass
class MemoryEntry:
    """A stored fact."""
    # Identity
    id: str
    text: str
    category: str
    importance: float

    # Structured decomposition (subject / attribute / value)
    entity: Optional[str]
    key: Optional[str]
    value: Optional[str]

    source: str
    created_at: int

    # Lifecycle
    decay_class: str = "stable"
    expires_at: Optional[int] = None
    last_confirmed_at: int = 0
    confidence: float = 1.0

    # Supersession (weak back-reference, never ownership)
    superseded_at: Optional[int] = None
    superseded_by: Optional[str] = None

    @property
    def is_superseded(self) -> bool:
        """Superseded by a replacement or retracted by a delete."""
        return self.superseded_at is not None

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_context_string(self) -> str:
        """Format this fact for inclusion in LLM context."""
        subject = ""
        if self.entity and self.key:
            subject = f"{self.entity}.{self.key}: "
        elif self.entity:
            subject = f"{self.entity}: "
        return f"[{self.category}] {subject}{self.text}"


@dataclass
class ApplyOutcome:
    """What the classification engine did with an observation."""
    action: str
    reason: str
    entry: Optional[MemoryEntry] = None
    target_id: Optional[str] = None
    vector_id: Optional[str] = None
