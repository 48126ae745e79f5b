"""
ChromaDB Vector Index Implementation.

ChromaDB persists everything in a local directory with no server, which
fits an agent-side memory:
- One collection per storage directory, shared by every session
- Cosine space, so scores are 1 - distance
- Synchronous client calls, so a single operation never interleaves
  with another session's close()
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

import chromadb
from chromadb.config import Settings

from .base import SearchResult, VectorRecord, VectorStore, validate_vector

logger = logging.getLogger("hybrid_memory.memory.chroma")

COLLECTION_NAME = "memories"


class ChromaVectorIndex(VectorStore):
    """
    ChromaDB implementation of the shared vector index.

    Construct one per storage directory and pass it to every consumer.
    """

    def __init__(
        self,
        persist_directory: str = "./vector_store",
        dimension: int = 1536,
        collection_name: str = COLLECTION_NAME,
    ):
        super().__init__(dimension)
        self.persist_directory = Path(persist_directory)
        self.collection_name = collection_name
        self._client = None
        self._collection = None
        logger.info(f"ChromaVectorIndex configured with directory: {persist_directory} (dim={dimension})")

    @property
    def connection(self):
        return self._collection

    def _ensure_connected(self):
        """
        Return the live collection, connecting first if needed.

        Runs without awaiting, so the check-and-reconnect is atomic with
        respect to other sessions. Callers bind the result to a local and
        use that for the rest of the operation.
        """
        collection = self._collection
        if collection is not None:
            return collection

        if self.closed:
            logger.info("Vector index was closed; reconnecting on use")

        self.persist_directory.mkdir(parents=True, exist_ok=True)
        self._client = chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=Settings(
                anonymized_telemetry=False,
                allow_reset=True,
            ),
        )
        collection = self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine", "dimension": self.dimension},
        )
        self._collection = collection
        self.closed = False

        logger.info(f"ChromaDB connected with {collection.count()} existing vectors")
        return collection

    def _disconnect(self) -> None:
        # PersistentClient has no explicit close; dropping the references releases it
        self._client = None
        self._collection = None
        logger.info("ChromaDB connection closed")

    def _record_to_metadata(self, record: VectorRecord) -> dict:
        return {
            "importance": float(record.importance),
            "category": record.category,
            "created_at": int(record.created_at),
        }

    def _to_record(self, id: str, metadata: dict, document: str, embedding) -> VectorRecord:
        return VectorRecord(
            id=id,
            vector=[float(x) for x in embedding] if embedding is not None else [],
            text=document or "",
            importance=metadata.get("importance", 0.0),
            category=metadata.get("category", "other"),
            created_at=metadata.get("created_at", 0),
        )

    async def store(self, record: VectorRecord) -> str:
        """Store a vector row, reconnecting transparently if the index was closed."""
        validate_vector(record.vector, self.dimension)
        collection = self._ensure_connected()

        record_id = record.id or str(uuid.uuid4())
        try:
            collection.add(
                ids=[record_id],
                embeddings=[list(record.vector)],
                documents=[record.text],
                metadatas=[self._record_to_metadata(record)],
            )
        except Exception as e:
            logger.warning(f"ChromaDB store failed for {record_id}: {e}")
            raise

        record.id = record_id
        logger.debug(f"Stored vector: {record_id}")
        return record_id

    async def search(
        self,
        query_vector: list[float],
        limit: int = 5,
        min_score: float = 0.3,
    ) -> list[SearchResult]:
        """Search for similar vectors, best first."""
        validate_vector(query_vector, self.dimension)
        collection = self._ensure_connected()

        total = collection.count()
        if total == 0 or limit <= 0:
            return []

        results = collection.query(
            query_embeddings=[list(query_vector)],
            n_results=min(limit, total),
            include=["documents", "metadatas", "distances", "embeddings"],
        )

        search_results = []
        if results["ids"] and results["ids"][0]:
            embeddings = results.get("embeddings")
            for i, id in enumerate(results["ids"][0]):
                # Cosine distance -> similarity
                score = 1 - results["distances"][0][i]
                if score < min_score:
                    continue
                record = self._to_record(
                    id=id,
                    metadata=results["metadatas"][0][i] or {},
                    document=results["documents"][0][i],
                    embedding=embeddings[0][i] if embeddings is not None else None,
                )
                search_results.append(SearchResult(record=record, score=score))

        search_results.sort(key=lambda r: r.score, reverse=True)
        return search_results[:limit]

    async def get(self, id: str) -> Optional[VectorRecord]:
        """Fetch a single row by id."""
        collection = self._ensure_connected()
        results = collection.get(ids=[id], include=["documents", "metadatas", "embeddings"])
        if not results["ids"]:
            return None
        embeddings = results.get("embeddings")
        return self._to_record(
            id=results["ids"][0],
            metadata=results["metadatas"][0] or {},
            document=results["documents"][0],
            embedding=embeddings[0] if embeddings is not None else None,
        )

    async def has_duplicate(self, vector: list[float], threshold: float = 0.95) -> bool:
        results = await self.search(vector, limit=1, min_score=threshold)
        return bool(results)

    async def delete(self, id: str) -> bool:
        """Remove a row. Returns False if it was not there."""
        collection = self._ensure_connected()
        if not collection.get(ids=[id], include=["metadatas"])["ids"]:
            return False
        collection.delete(ids=[id])
        logger.info(f"Deleted vector: {id}")
        return True

    async def count(self) -> int:
        """Get total number of stored vectors."""
        return self._ensure_connected().count()
