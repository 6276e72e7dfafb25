"""
Knowledge feature: Document store for embedded chunks.

Two backends share one interface:
  - SupabaseDocumentStore: `knowledge_chunks` table + pgvector (production)
  - InMemoryDocumentStore: process-local, numpy cosine similarity (dev/tests)
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone

import numpy as np
from supabase import Client

from kb_assistant.core.exceptions import ExternalServiceError
from kb_assistant.features.knowledge.schemas import (
    ChunkMetadata,
    KnowledgeChunk,
    NewChunk,
    ScoredChunk,
)

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Persistence for knowledge chunks and their vectors."""

    @abstractmethod
    def insert(self, content: str, metadata: ChunkMetadata, embedding: list[float]) -> int:
        """Persist one chunk and return its id."""

    @abstractmethod
    def find_by_external_id(self, file_id: str) -> list[KnowledgeChunk]:
        """Chunks of one source document, ordered by chunk index."""

    @abstractmethod
    def delete_by_external_id(self, file_id: str) -> int:
        """Delete every chunk of one source document, returning the count."""

    def replace_by_external_id(self, file_id: str, chunks: list[NewChunk]) -> list[int]:
        """Swap a document's chunk set: delete all, then insert the new ones.

        Not a single transaction. A crash in between leaves the document
        empty and the next sync picks it up as new.
        """
        removed = self.delete_by_external_id(file_id)
        ids = self.insert_many(chunks)
        logger.debug(f"Replaced {removed} chunk(s) of {file_id} with {len(ids)}")
        return ids

    def insert_many(self, chunks: list[NewChunk]) -> list[int]:
        return [self.insert(c.content, c.metadata, c.embedding) for c in chunks]

    @abstractmethod
    def list_all(self) -> list[KnowledgeChunk]:
        """All chunks without vectors, newest first."""

    @abstractmethod
    def delete_by_id(self, chunk_id: int) -> bool:
        """Delete one chunk. Returns False if it did not exist."""

    @abstractmethod
    def search(self, query_vector: list[float], k: int) -> list[ScoredChunk]:
        """Top-k chunks by cosine similarity (highest first)."""

    @abstractmethod
    def count(self) -> int:
        ...


# ── Supabase / pgvector ──────────────────────────────────

@contextmanager
def _db_call(operation: str):
    try:
        yield
    except ExternalServiceError:
        raise
    except Exception as e:
        logger.error(f"❌ Vector store {operation} failed: {e}")
        raise ExternalServiceError("vector_store", f"{operation}: {e}") from e


def _row_to_chunk(row: dict) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=row["id"],
        content=row["content"],
        metadata=ChunkMetadata(**(row.get("metadata") or {})),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class SupabaseDocumentStore(DocumentStore):
    """Chunks in the `knowledge_chunks` table, searched via the
    `match_knowledge_chunks` SQL function (see migrations/)."""

    TABLE = "knowledge_chunks"
    MATCH_FUNCTION = "match_knowledge_chunks"
    BATCH_SIZE = 50
    _COLUMNS = "id, content, metadata, created_at, updated_at"

    def __init__(self, db: Client):
        self.db = db

    def insert(self, content: str, metadata: ChunkMetadata, embedding: list[float]) -> int:
        with _db_call("insert"):
            result = self.db.table(self.TABLE).insert({
                "content": content,
                "metadata": metadata.model_dump(exclude_none=True),
                "embedding": embedding,
            }).execute()
        return result.data[0]["id"]

    def insert_many(self, chunks: list[NewChunk]) -> list[int]:
        ids: list[int] = []
        rows = [
            {
                "content": c.content,
                "metadata": c.metadata.model_dump(exclude_none=True),
                "embedding": c.embedding,
            }
            for c in chunks
        ]
        # Insert in batches so one request does not carry hundreds of vectors
        for i in range(0, len(rows), self.BATCH_SIZE):
            with _db_call("insert"):
                result = self.db.table(self.TABLE).insert(rows[i:i + self.BATCH_SIZE]).execute()
            ids.extend(r["id"] for r in result.data)
        return ids

    def find_by_external_id(self, file_id: str) -> list[KnowledgeChunk]:
        with _db_call("lookup"):
            result = (
                self.db.table(self.TABLE)
                .select(self._COLUMNS)
                .eq("metadata->>external_file_id", file_id)
                .execute()
            )
        chunks = [_row_to_chunk(r) for r in result.data or []]
        return sorted(chunks, key=lambda c: (c.metadata.chunk_index or 0, c.id))

    def delete_by_external_id(self, file_id: str) -> int:
        with _db_call("delete"):
            result = (
                self.db.table(self.TABLE)
                .delete()
                .eq("metadata->>external_file_id", file_id)
                .execute()
            )
        return len(result.data or [])

    def list_all(self) -> list[KnowledgeChunk]:
        with _db_call("list"):
            result = (
                self.db.table(self.TABLE)
                .select(self._COLUMNS)
                .order("created_at", desc=True)
                .execute()
            )
        return [_row_to_chunk(r) for r in result.data or []]

    def delete_by_id(self, chunk_id: int) -> bool:
        with _db_call("delete"):
            result = self.db.table(self.TABLE).delete().eq("id", chunk_id).execute()
        return bool(result.data)

    def search(self, query_vector: list[float], k: int) -> list[ScoredChunk]:
        with _db_call("search"):
            result = self.db.rpc(
                self.MATCH_FUNCTION,
                {"query_embedding": query_vector, "match_count": k},
            ).execute()
        return [
            ScoredChunk(chunk=_row_to_chunk(r), similarity=float(r.get("similarity", 0.0)))
            for r in result.data or []
        ]

    def count(self) -> int:
        with _db_call("count"):
            result = self.db.table(self.TABLE).select("id", count="exact").limit(1).execute()
        return result.count or 0


# ── In-memory ────────────────────────────────────────────

class InMemoryDocumentStore(DocumentStore):
    """Thread-safe process-local store. Contents are lost on restart."""

    def __init__(self):
        self._chunks: dict[int, KnowledgeChunk] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def insert(self, content: str, metadata: ChunkMetadata, embedding: list[float]) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            chunk_id = next(self._ids)
            self._chunks[chunk_id] = KnowledgeChunk(
                id=chunk_id,
                content=content,
                metadata=metadata.model_copy(),
                embedding=list(embedding),
                created_at=now,
                updated_at=now,
            )
        return chunk_id

    def find_by_external_id(self, file_id: str) -> list[KnowledgeChunk]:
        with self._lock:
            found = [
                c.model_copy(update={"embedding": None})
                for c in self._chunks.values()
                if c.metadata.external_file_id == file_id
            ]
        return sorted(found, key=lambda c: (c.metadata.chunk_index or 0, c.id))

    def delete_by_external_id(self, file_id: str) -> int:
        with self._lock:
            ids = [i for i, c in self._chunks.items() if c.metadata.external_file_id == file_id]
            for i in ids:
                del self._chunks[i]
        return len(ids)

    def list_all(self) -> list[KnowledgeChunk]:
        with self._lock:
            chunks = [c.model_copy(update={"embedding": None}) for c in self._chunks.values()]
        return sorted(chunks, key=lambda c: (c.created_at, c.id), reverse=True)

    def delete_by_id(self, chunk_id: int) -> bool:
        with self._lock:
            return self._chunks.pop(chunk_id, None) is not None

    def search(self, query_vector: list[float], k: int) -> list[ScoredChunk]:
        if k <= 0:
            return []
        with self._lock:
            chunks = [c for c in self._chunks.values() if c.embedding]
        if not chunks:
            return []

        matrix = np.array([c.embedding for c in chunks], dtype="float64")
        query = np.array(query_vector, dtype="float64")
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        # Stable: equal scores keep insertion (id) order
        order = np.argsort(-scores, kind="stable")[:k]
        return [
            ScoredChunk(
                chunk=chunks[i].model_copy(update={"embedding": None}),
                similarity=float(scores[i]),
            )
            for i in order
        ]

    def count(self) -> int:
        with self._lock:
            return len(self._chunks)
