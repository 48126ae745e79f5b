"""
Write-Ahead Log for mutation intents.

The classification engine writes an intent here before touching the fact
store or vector index and removes it once both are consistent. Anything
left over after a crash is replayed by ClassificationEngine.recover().

Append-only NDJSON; fsync after every write.
"""

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("hybrid_memory.wal")

WAL_OPERATIONS = ("ADD", "UPDATE")
REMOVE_OP = "remove"


@dataclass
class WALEntry:
    """One pending mutation."""
    operation: str  # ADD or UPDATE
    fact_id: Optional[str] = None  # New fact
    target_id: Optional[str] = None  # Fact being superseded (UPDATE)
    with_vector: bool = True  # False for fact-only writes
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_dict(cls, data: dict) -> Optional["WALEntry"]:
        if not isinstance(data, dict) or data.get("operation") not in WAL_OPERATIONS:
            return None
        try:
            return cls(
                operation=data["operation"],
                fact_id=data.get("fact_id"),
                target_id=data.get("target_id"),
                with_vector=bool(data.get("with_vector", True)),
                id=data["id"],
                timestamp=float(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


class WriteAheadLog:
    """Append-only journal of in-flight mutations."""

    def __init__(self, wal_path: str, max_age: float = 300.0):
        self.wal_path = Path(wal_path)
        self.max_age = max_age
        self.wal_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"WriteAheadLog initialized: {wal_path}")

    def _append(self, payload: dict) -> None:
        line = json.dumps(payload) + "\n"
        with open(self.wal_path, "a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    def write(self, entry: WALEntry) -> None:
        """Journal an intent. Raises OSError if it could not be made durable."""
        try:
            self._append(asdict(entry))
        except OSError as e:
            logger.error(f"WAL write failed: {e}")
            raise

    def remove(self, id: str) -> None:
        """Mark an intent as finished. Clears the file once nothing is pending."""
        try:
            self._append({"op": REMOVE_OP, "id": id})
        except OSError as e:
            logger.error(f"WAL remove failed: {e}")
            raise
        if not self.read_all():
            self.clear()

    def read_all(self) -> list[WALEntry]:
        """All intents that have not been removed, oldest first."""
        if not self.wal_path.exists():
            return []

        lines = self.wal_path.read_text(encoding="utf-8").splitlines()
        records = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt WAL line: {line[:80]}")

        removed = {r.get("id") for r in records if isinstance(r, dict) and r.get("op") == REMOVE_OP}
        entries = []
        for record in records:
            entry = WALEntry.from_dict(record)
            if entry is not None and entry.id not in removed:
                entries.append(entry)
        return entries

    def clear(self) -> None:
        if self.wal_path.exists():
            self.wal_path.unlink()

    def is_stale(self, entry: WALEntry, now: Optional[float] = None) -> bool:
        """True once an intent is older than max_age."""
        if now is None:
            now = time.time()
        return now - entry.timestamp >= self.max_age
