"""
Structured Fact Storage.

SQLite-backed store of memory entries. This is the source of truth for
what the agent knows:
- Identity and audit metadata for every fact ever learned
- Supersession history (old facts are marked, never rewritten)
- Decay metadata so stale facts drop out of retrieval
- Keyword search through an FTS5 shadow table
"""

import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Iterable, Optional

from .decay import DECAY_CLASSES, TTL_DEFAULTS, calculate_expiry, classify_decay, normalized_hash, now_seconds
from .errors import ClosedError, NotFoundError, ValidationError
from .models import DEFAULT_MEMORY_CATEGORIES, MemoryDraft, MemoryEntry

logger = logging.getLogger("hybrid_memory.facts")

# Freshness window for keyword search scoring
FRESHNESS_WINDOW = 7 * 24 * 3600


class FactStore:
    """
    SQLite-backed storage for memory entries.

    Superseded entries stay on disk for audit but are excluded from every
    read path unless include_superseded is requested.
    """

    def __init__(
        self,
        db_path: str = "facts.db",
        categories: Iterable[str] = DEFAULT_MEMORY_CATEGORIES,
        fuzzy_dedupe: bool = False,
    ):
        self.db_path = db_path
        self.categories = tuple(dict.fromkeys([*DEFAULT_MEMORY_CATEGORIES, *categories]))
        self.fuzzy_dedupe = fuzzy_dedupe
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()
        logger.info(f"FactStore initialized with database: {db_path}")

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def _db(self) -> sqlite3.Connection:
        """Live connection, or ClosedError once close() has been called."""
        if self._conn is None:
            raise ClosedError("FactStore is closed", store="facts")
        return self._conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._db
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS facts (
                id TEXT PRIMARY KEY,
                text TEXT NOT NULL,
                category TEXT NOT NULL DEFAULT 'other',
                importance REAL NOT NULL DEFAULT 0.7,
                entity TEXT,
                key TEXT,
                value TEXT,
                source TEXT NOT NULL DEFAULT 'conversation',
                created_at INTEGER NOT NULL,
                decay_class TEXT NOT NULL DEFAULT 'stable',
                expires_at INTEGER,
                last_confirmed_at INTEGER,
                confidence REAL NOT NULL DEFAULT 1.0,
                superseded_at INTEGER,
                superseded_by TEXT,
                normalized_hash TEXT
            )
        """)

        # Keyword search shadow table, kept in sync by triggers
        conn.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS facts_fts USING fts5(
                text, category, entity, key, value,
                content=facts,
                content_rowid=rowid,
                tokenize='porter unicode61'
            )
        """)
        conn.execute("""
            CREATE TRIGGER IF NOT EXISTS facts_ai AFTER INSERT ON facts BEGIN
                INSERT INTO facts_fts(rowid, text, category, entity, key, value)
                VALUES (new.rowid, new.text, new.category, new.entity, new.key, new.value);
            END
        """)
        conn.execute("""
            CREATE TRIGGER IF NOT EXISTS facts_ad AFTER DELETE ON facts BEGIN
                INSERT INTO facts_fts(facts_fts, rowid, text, category, entity, key, value)
                VALUES ('delete', old.rowid, old.text, old.category, old.entity, old.key, old.value);
            END
        """)
        conn.execute("""
            CREATE TRIGGER IF NOT EXISTS facts_au AFTER UPDATE ON facts BEGIN
                INSERT INTO facts_fts(facts_fts, rowid, text, category, entity, key, value)
                VALUES ('delete', old.rowid, old.text, old.category, old.entity, old.key, old.value);
                INSERT INTO facts_fts(rowid, text, category, entity, key, value)
                VALUES (new.rowid, new.text, new.category, new.entity, new.key, new.value);
            END
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_facts_category ON facts(category)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_facts_entity ON facts(entity)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_facts_created ON facts(created_at)")
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_facts_superseded
            ON facts(superseded_at) WHERE superseded_at IS NOT NULL
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_facts_expires
            ON facts(expires_at) WHERE expires_at IS NOT NULL
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_facts_normalized_hash
            ON facts(normalized_hash) WHERE normalized_hash IS NOT NULL
        """)
        conn.commit()

    def _validate(self, draft: MemoryDraft) -> None:
        if not isinstance(draft.text, str) or not draft.text.strip():
            raise ValidationError("text must be a non-empty string", field="text")
        if draft.category not in self.categories:
            raise ValidationError(
                f"Unknown category '{draft.category}' (expected one of {', '.join(self.categories)})",
                field="category",
            )
        for name in ("importance", "confidence"):
            value = getattr(draft, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number, got {value!r}", field=name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"{name} must be in [0, 1], got {value}", field=name)
        if draft.decay_class is not None and draft.decay_class not in DECAY_CLASSES:
            raise ValidationError(f"Unknown decay class '{draft.decay_class}'", field="decay_class")
        if not draft.source:
            raise ValidationError("source must be set", field="source")

    def _row_to_entry(self, row: sqlite3.Row) -> MemoryEntry:
        """Convert a database row to a MemoryEntry."""
        return MemoryEntry(
            id=row["id"],
            text=row["text"],
            category=row["category"],
            importance=row["importance"],
            entity=row["entity"],
            key=row["key"],
            value=row["value"],
            source=row["source"],
            created_at=row["created_at"],
            decay_class=row["decay_class"] or "stable",
            expires_at=row["expires_at"],
            last_confirmed_at=row["last_confirmed_at"] or 0,
            confidence=row["confidence"] if row["confidence"] is not None else 1.0,
            superseded_at=row["superseded_at"],
            superseded_by=row["superseded_by"],
        )

    def store(self, draft: MemoryDraft, fact_id: Optional[str] = None) -> MemoryEntry:
        """
        Persist a new fact.

        Args:
            draft: The fact to store. decay_class and expires_at are
                derived from the text and key when left unset.
            fact_id: Pre-allocated id, for callers that journal the write
                before it happens. A fresh uuid is used when omitted.

        Returns:
            The stored entry, or the existing one when fuzzy dedupe finds
            a row with the same normalized text.

        Raises:
            ValidationError: If a field constraint is violated.
        """
        self._validate(draft)
        conn = self._db

        text_hash = normalized_hash(draft.text)
        if self.fuzzy_dedupe:
            row = conn.execute(
                "SELECT * FROM facts WHERE normalized_hash = ? AND superseded_at IS NULL LIMIT 1",
                (text_hash,),
            ).fetchone()
            if row:
                logger.debug(f"Fuzzy dedupe matched existing fact {row['id']}")
                return self._row_to_entry(row)

        now = now_seconds()
        decay_class = draft.decay_class or classify_decay(draft.entity, draft.key, draft.value, draft.text)
        expires_at = draft.expires_at if draft.expires_at is not None else calculate_expiry(decay_class, now)

        entry = MemoryEntry(
            id=fact_id or str(uuid.uuid4()),
            text=draft.text,
            category=draft.category,
            importance=draft.importance,
            entity=draft.entity,
            key=draft.key,
            value=draft.value,
            source=draft.source,
            created_at=now,
            decay_class=decay_class,
            expires_at=expires_at,
            last_confirmed_at=now,
            confidence=draft.confidence,
        )

        with conn:
            conn.execute(
                """
                INSERT INTO facts
                (id, text, category, importance, entity, key, value, source, created_at,
                 decay_class, expires_at, last_confirmed_at, confidence, normalized_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.text,
                    entry.category,
                    entry.importance,
                    entry.entity,
                    entry.key,
                    entry.value,
                    entry.source,
                    entry.created_at,
                    entry.decay_class,
                    entry.expires_at,
                    entry.last_confirmed_at,
                    entry.confidence,
                    text_hash,
                ),
            )

        logger.info(f"Stored fact {entry.id} ({entry.category}, {entry.decay_class})")
        return entry

    def get(self, id: str) -> Optional[MemoryEntry]:
        """Get one fact by id, superseded or not. None if absent."""
        row = self._db.execute("SELECT * FROM facts WHERE id = ?", (id,)).fetchone()
        return self._row_to_entry(row) if row else None

    def lookup(
        self,
        entity: str,
        key: Optional[str] = None,
        include_superseded: bool = False,
    ) -> list[MemoryEntry]:
        """
        Structured lookup by entity (and optionally key), case-insensitive.

        Expired facts are skipped. Best matches first: highest confidence,
        then most recent.
        """
        sql = "SELECT * FROM facts WHERE lower(entity) = lower(?) AND (expires_at IS NULL OR expires_at > ?)"
        params: list = [entity, now_seconds()]
        if key is not None:
            sql += " AND lower(key) = lower(?)"
            params.append(key)
        if not include_superseded:
            sql += " AND superseded_at IS NULL"
        sql += " ORDER BY confidence DESC, created_at DESC, rowid DESC"

        rows = self._db.execute(sql, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_by_key(self, entity: str, key: str) -> Optional[MemoryEntry]:
        """Point lookup of the current fact for an entity/key pair."""
        matches = self.lookup(entity, key)
        return matches[0] if matches else None

    def supersede(self, id: str, replacement_id: Optional[str], strict: bool = False) -> bool:
        """
        Mark a fact as replaced (or retracted, when replacement_id is None).

        Idempotent: superseding an already-superseded fact changes nothing
        and still succeeds.

        Returns:
            True if this call changed the row.

        Raises:
            NotFoundError: If strict is set and the fact does not exist.
        """
        conn = self._db
        with conn:
            cursor = conn.execute(
                "UPDATE facts SET superseded_at = ?, superseded_by = ? WHERE id = ? AND superseded_at IS NULL",
                (now_seconds(), replacement_id, id),
            )
        changed = cursor.rowcount > 0

        if not changed and strict and self.get(id) is None:
            raise NotFoundError(f"Cannot supersede unknown fact {id}", id=id)

        if changed:
            logger.info(f"Superseded fact {id} -> {replacement_id or 'retracted'}")
        return changed

    def query(
        self,
        category: Optional[str] = None,
        source: Optional[str] = None,
        entity: Optional[str] = None,
        include_superseded: bool = False,
        include_expired: bool = False,
        limit: Optional[int] = None,
    ) -> list[MemoryEntry]:
        """
        Filter facts, newest first.

        include_superseded=True is audit mode: replaced and retracted facts
        are returned alongside live ones.
        """
        clauses = []
        params: list = []
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if source is not None:
            clauses.append("source = ?")
            params.append(source)
        if entity is not None:
            clauses.append("lower(entity) = lower(?)")
            params.append(entity)
        if not include_superseded:
            clauses.append("superseded_at IS NULL")
        if not include_expired:
            clauses.append("(expires_at IS NULL OR expires_at > ?)")
            params.append(now_seconds())

        sql = "SELECT * FROM facts"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self._db.execute(sql, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _fts_query(text: str, min_word_length: int = 2, max_words: Optional[int] = None) -> str:
        """Quote each word so user text can't inject FTS syntax."""
        words = [w for w in text.replace('"', "").replace("'", "").split() if len(w) >= min_word_length]
        if max_words is not None:
            words = words[:max_words]
        return " OR ".join(f'"{w}"' for w in words)

    def search(
        self,
        text: str,
        limit: int = 5,
        include_superseded: bool = False,
    ) -> list[tuple[MemoryEntry, float]]:
        """
        Keyword search over fact text and structured fields.

        Returns (entry, score) pairs. The score blends BM25 rank (60%),
        freshness against expiry (25%) and confidence (15%).
        """
        match = self._fts_query(text)
        if not match:
            return []

        now = now_seconds()
        superseded_filter = "" if include_superseded else "AND f.superseded_at IS NULL"
        rows = self._db.execute(
            f"""
            SELECT f.*, rank,
                CASE
                    WHEN f.expires_at IS NULL THEN 1.0
                    WHEN f.expires_at <= :now THEN 0.0
                    ELSE MIN(1.0, CAST(f.expires_at - :now AS REAL) / :window)
                END AS freshness
            FROM facts f
            JOIN facts_fts ON f.rowid = facts_fts.rowid
            WHERE facts_fts MATCH :query
                AND (f.expires_at IS NULL OR f.expires_at > :now)
                {superseded_filter}
            ORDER BY rank
            LIMIT :limit
            """,
            {"query": match, "now": now, "window": float(FRESHNESS_WINDOW), "limit": limit * 2},
        ).fetchall()

        if not rows:
            return []

        ranks = [row["rank"] for row in rows]
        min_rank, max_rank = min(ranks), max(ranks)
        spread = (max_rank - min_rank) or 1.0

        results = []
        for row in rows:
            bm25_score = (1 - (row["rank"] - min_rank) / spread) or 0.8
            freshness = row["freshness"] or 1.0
            confidence = row["confidence"] or 1.0
            score = bm25_score * 0.6 + freshness * 0.25 + confidence * 0.15
            results.append((self._row_to_entry(row), score))

        results.sort(key=lambda r: (r[1], r[0].created_at), reverse=True)
        return results[:limit]

    def find_similar_for_classification(
        self,
        text: str,
        entity: Optional[str],
        key: Optional[str],
        limit: int = 5,
    ) -> list[MemoryEntry]:
        """
        Candidate facts for classification when no embedding is available.

        Priority: same entity+key (likely UPDATE), then same entity, then
        keyword overlap.
        """
        now = now_seconds()
        live = "superseded_at IS NULL AND (expires_at IS NULL OR expires_at > ?)"
        results: list[MemoryEntry] = []
        seen: set[str] = set()

        def add_rows(rows) -> None:
            for row in rows:
                if len(results) >= limit:
                    return
                if row["id"] not in seen:
                    seen.add(row["id"])
                    results.append(self._row_to_entry(row))

        conn = self._db
        if entity and key:
            add_rows(conn.execute(
                f"SELECT * FROM facts WHERE lower(entity) = lower(?) AND lower(key) = lower(?) AND {live} "
                "ORDER BY created_at DESC LIMIT ?",
                (entity, key, now, limit),
            ).fetchall())

        if entity and len(results) < limit:
            add_rows(conn.execute(
                f"SELECT * FROM facts WHERE lower(entity) = lower(?) AND {live} ORDER BY created_at DESC LIMIT ?",
                (entity, now, limit * 2),
            ).fetchall())

        match = self._fts_query(text, min_word_length=3, max_words=5)
        if match and len(results) < limit:
            try:
                add_rows(conn.execute(
                    """
                    SELECT f.* FROM facts f JOIN facts_fts ON f.rowid = facts_fts.rowid
                    WHERE facts_fts MATCH ?
                        AND f.superseded_at IS NULL
                        AND (f.expires_at IS NULL OR f.expires_at > ?)
                    LIMIT ?
                    """,
                    (match, now, limit * 2),
                ).fetchall())
            except sqlite3.OperationalError as e:
                logger.warning(f"Keyword candidate search failed: {e}")

        return results

    def delete(self, id: str) -> bool:
        """Hard-delete a fact. Returns True if a row was removed."""
        conn = self._db
        with conn:
            cursor = conn.execute("DELETE FROM facts WHERE id = ?", (id,))
        if cursor.rowcount > 0:
            logger.info(f"Deleted fact {id}")
            return True
        return False

    def has_duplicate(self, text: str) -> bool:
        """Exact text match, or normalized match when fuzzy dedupe is on."""
        conn = self._db
        if conn.execute("SELECT 1 FROM facts WHERE text = ? AND superseded_at IS NULL LIMIT 1", (text,)).fetchone():
            return True
        if self.fuzzy_dedupe:
            return conn.execute(
                "SELECT 1 FROM facts WHERE normalized_hash = ? AND superseded_at IS NULL LIMIT 1",
                (normalized_hash(text),),
            ).fetchone() is not None
        return False

    def confirm(self, id: str) -> bool:
        """Corroborate a fact: full confidence and a fresh expiry window."""
        conn = self._db
        row = conn.execute("SELECT decay_class FROM facts WHERE id = ?", (id,)).fetchone()
        if not row:
            return False

        now = now_seconds()
        with conn:
            conn.execute(
                "UPDATE facts SET confidence = 1.0, last_confirmed_at = ?, expires_at = ? WHERE id = ?",
                (now, calculate_expiry(row["decay_class"], now), id),
            )
        return True

    def prune_expired(self) -> list[str]:
        """
        Hard-delete facts whose expiry has passed.

        Returns:
            Ids of the removed facts, so callers can drop their vectors too
        """
        conn = self._db
        with conn:
            rows = conn.execute(
                "SELECT id FROM facts WHERE expires_at IS NOT NULL AND expires_at < ?",
                (now_seconds(),),
            ).fetchall()
            ids = [row["id"] for row in rows]
            conn.executemany("DELETE FROM facts WHERE id = ?", [(id,) for id in ids])
        if ids:
            logger.info(f"Pruned {len(ids)} expired facts")
        return ids

    def count(self, include_superseded: bool = True) -> int:
        sql = "SELECT COUNT(*) FROM facts"
        if not include_superseded:
            sql += " WHERE superseded_at IS NULL"
        return self._db.execute(sql).fetchone()[0]

    def stats_breakdown(self) -> dict[str, int]:
        """Fact counts per decay class."""
        rows = self._db.execute(
            "SELECT decay_class, COUNT(*) AS cnt FROM facts GROUP BY decay_class"
        ).fetchall()
        stats = {dc: 0 for dc in TTL_DEFAULTS}
        for row in rows:
            stats[row["decay_class"] or "unknown"] = row["cnt"]
        return stats

    def close(self) -> None:
        """Release the database handle. Later calls raise ClosedError."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("FactStore closed")
