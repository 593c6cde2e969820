"""Vector index abstraction."""

from __future__ import annotations

import heapq
import math
import sqlite3
import threading
from dataclasses import dataclass
from typing import Protocol, Sequence

from pet_context.core.errors import DimensionMismatchError, IndexUnavailableError
from pet_context.core.logging import get_logger
from pet_context.db.sqlite import SQLiteDatabase
from pet_context.ingest.embeddings import vector_from_bytes, vector_to_bytes
from pet_context.models.entities import ScopeFilter, VectorEntry

logger = get_logger(__name__)


@dataclass(slots=True)
class SearchResult:
    record_id: str
    score: float
    content: str = ""
    inserted_at: int | None = None


class VectorIndex(Protocol):
    """Similarity-search store for journal entry embeddings.

    ``upsert`` never enforces uniqueness. ``replace`` drops every entry for the
    record and inserts the new one as a single step, returning how many it removed.
    ``delete`` removes every entry for a record id and is a no-op when none
    exist. ``query`` returns an empty list rather than raising when the
    backing store is unreachable.
    """

    dim: int

    @property
    def backend(self) -> str: ...

    @property
    def size(self) -> int: ...

    def ensure_ready(self) -> None: ...

    def upsert(self, entry: VectorEntry) -> None: ...

    def replace(self, entry: VectorEntry) -> int: ...

    def delete(self, record_id: str) -> int: ...

    def query(
        self,
        vector: Sequence[float],
        scope: ScopeFilter | None = None,
        top_k: int = 3,
    ) -> list[SearchResult]: ...

    def count(self, record_id: str | None = None) -> int: ...


class InMemoryVectorIndex:
    """Process-local vector index using cosine similarity."""

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._entries: list[VectorEntry] = []
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return "memory"

    @property
    def size(self) -> int:
        return len(self._entries)

    def ensure_ready(self) -> None:
        return None

    def upsert(self, entry: VectorEntry) -> None:
        _check_dim(self.dim, entry.embedding)
        with self._lock:
            self._entries.append(entry)

    def replace(self, entry: VectorEntry) -> int:
        _check_dim(self.dim, entry.embedding)
        with self._lock:
            before = len(self._entries)
            self._entries = [item for item in self._entries if item.record_id != entry.record_id]
            removed = before - len(self._entries)
            self._entries.append(entry)
            return removed

    def delete(self, record_id: str) -> int:
        with self._lock:
            before = len(self._entries)
            self._entries = [entry for entry in self._entries if entry.record_id != record_id]
            return before - len(self._entries)

    def query(
        self,
        vector: Sequence[float],
        scope: ScopeFilter | None = None,
        top_k: int = 3,
    ) -> list[SearchResult]:
        _check_dim(self.dim, vector)
        with self._lock:
            entries = list(self._entries)
        candidates = [
            entry for entry in entries if scope is None or scope.matches(entry.owner_id, entry.subject_id)
        ]
        scored = [
            SearchResult(
                record_id=entry.record_id,
                score=cosine_similarity(entry.embedding, vector),
                content=entry.content,
                inserted_at=entry.inserted_at,
            )
            for entry in candidates
        ]
        return heapq.nlargest(top_k, scored, key=lambda item: item.score)

    def count(self, record_id: str | None = None) -> int:
        with self._lock:
            if record_id is None:
                return len(self._entries)
            return sum(1 for entry in self._entries if entry.record_id == record_id)


class SQLiteVectorIndex:
    """Vector entries persisted in SQLite, scored in-process."""

    def __init__(self, db: SQLiteDatabase, dim: int) -> None:
        self.db = db
        self.dim = dim

    @property
    def backend(self) -> str:
        return "sqlite"

    @property
    def size(self) -> int:
        return self.count()

    def ensure_ready(self) -> None:
        try:
            self.db.ensure_schema()
        except (sqlite3.Error, OSError) as exc:
            raise IndexUnavailableError(f"Vector index store unavailable: {exc}") from exc

    def upsert(self, entry: VectorEntry) -> None:
        _check_dim(self.dim, entry.embedding)
        try:
            with self.db.transaction() as cursor:
                _insert_entry(cursor, entry)
        except sqlite3.Error as exc:
            raise IndexUnavailableError(f"Vector upsert failed for {entry.record_id}: {exc}") from exc

    def replace(self, entry: VectorEntry) -> int:
        _check_dim(self.dim, entry.embedding)
        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM vector_entries WHERE record_id = ?", [entry.record_id])
                removed = cursor.rowcount
                _insert_entry(cursor, entry)
                return removed
        except sqlite3.Error as exc:
            raise IndexUnavailableError(f"Vector replace failed for {entry.record_id}: {exc}") from exc

    def delete(self, record_id: str) -> int:
        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM vector_entries WHERE record_id = ?", [record_id])
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise IndexUnavailableError(f"Vector delete failed for {record_id}: {exc}") from exc

    def query(
        self,
        vector: Sequence[float],
        scope: ScopeFilter | None = None,
        top_k: int = 3,
    ) -> list[SearchResult]:
        _check_dim(self.dim, vector)
        clauses: list[str] = ["dim = ?"]
        params: list[object] = [self.dim]
        if scope is not None and scope.owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(scope.owner_id)
        if scope is not None and scope.subject_id is not None:
            clauses.append("subject_id = ?")
            params.append(scope.subject_id)
        try:
            rows = self.db.query(
                f"SELECT record_id, embedding, content, inserted_at FROM vector_entries WHERE {' AND '.join(clauses)}",
                params,
            )
        except sqlite3.Error as exc:
            logger.warning("Vector index query failed, returning no results: %s", exc)
            return []
        scored = [
            SearchResult(
                record_id=row["record_id"],
                score=cosine_similarity(vector_from_bytes(row["embedding"]), vector),
                content=row["content"],
                inserted_at=row["inserted_at"],
            )
            for row in rows
        ]
        return heapq.nlargest(top_k, scored, key=lambda item: item.score)

    def count(self, record_id: str | None = None) -> int:
        try:
            if record_id is None:
                row = self.db.execute("SELECT COUNT(*) AS count FROM vector_entries").fetchone()
            else:
                row = self.db.execute(
                    "SELECT COUNT(*) AS count FROM vector_entries WHERE record_id = ?",
                    [record_id],
                ).fetchone()
        except sqlite3.Error as exc:
            raise IndexUnavailableError(f"Vector count failed: {exc}") from exc
        return int(row["count"]) if row else 0


def _insert_entry(cursor: sqlite3.Cursor, entry: VectorEntry) -> None:
    cursor.execute(
        """
        INSERT INTO vector_entries (record_id, owner_id, subject_id, dim, embedding, content, inserted_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            entry.record_id,
            entry.owner_id,
            entry.subject_id,
            len(entry.embedding),
            vector_to_bytes(entry.embedding),
            entry.content,
            entry.inserted_at,
        ],
    )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _check_dim(expected: int, vector: Sequence[float]) -> None:
    if len(vector) != expected:
        raise DimensionMismatchError(expected, len(vector))


__all__ = [
    "VectorIndex",
    "InMemoryVectorIndex",
    "SQLiteVectorIndex",
    "SearchResult",
    "cosine_similarity",
]
