"""
Embedding record store using SQLite.

Stores the durable embedding records, one per chunk of each indexed entity,
separately from the vector index. This store is the source of truth: the
vector index can always be rebuilt from it.

Also records how projects relate to their repository, which drives
inheritance-aware retrieval.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Optional

from .types import EmbeddingRecord, ProjectScope, utc_now

logger = logging.getLogger(__name__)

# Stay under SQLite's default host-parameter limit
_IN_BATCH = 500

_RECORD_COLUMNS = (
    "id, entity_type, entity_id, repo_id, project_id, embedding, embedding_model, "
    "dimension, content_hash, category, priority, chunk_index, total_chunks, "
    "chunk_start_offset, chunk_end_offset, created_at, updated_at"
)


def _row_to_record(row: sqlite3.Row) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=row["id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        repo_id=row["repo_id"],
        project_id=row["project_id"],
        vector=json.loads(row["embedding"]),
        embedding_model=row["embedding_model"],
        dimension=row["dimension"],
        content_hash=row["content_hash"],
        category=row["category"],
        priority=row["priority"],
        chunk_index=row["chunk_index"],
        total_chunks=row["total_chunks"],
        chunk_start_offset=row["chunk_start_offset"],
        chunk_end_offset=row["chunk_end_offset"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class EmbeddingStore:
    """
    SQLite-backed store for embedding records and project scopes.

    Shares its database file with the rowid map, which the index lifecycle
    manager accesses through its own short-lived connections.
    """

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000):
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long to wait on a locked database
        """
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        # WAL lets lifecycle connections read while this one writes
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS vector_embeddings (
                id TEXT NOT NULL PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                repo_id TEXT NOT NULL,
                project_id TEXT,
                embedding TEXT NOT NULL,
                embedding_model TEXT NOT NULL DEFAULT '',
                dimension INTEGER NOT NULL DEFAULT 0,
                content_hash TEXT NOT NULL DEFAULT '',
                category TEXT,
                priority TEXT,
                chunk_index INTEGER NOT NULL DEFAULT 0,
                total_chunks INTEGER NOT NULL DEFAULT 1,
                chunk_start_offset INTEGER NOT NULL DEFAULT 0,
                chunk_end_offset INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_embeddings_entity_chunk
            ON vector_embeddings(entity_type, entity_id, chunk_index)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_repo
            ON vector_embeddings(repo_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_project
            ON vector_embeddings(project_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_created
            ON vector_embeddings(created_at, id)
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT NOT NULL PRIMARY KEY,
                repo_id TEXT NOT NULL,
                inherits_from_repo INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create(self, record: EmbeddingRecord) -> EmbeddingRecord:
        """Insert one record. Fails on a duplicate (entity_type, entity_id, chunk_index)."""
        return self.create_batch([record])[0]

    def create_batch(self, records: list[EmbeddingRecord]) -> list[EmbeddingRecord]:
        """
        Insert records in a single transaction.

        Fills in timestamps and dimension when missing.

        Raises:
            sqlite3.IntegrityError: On a duplicate id or entity chunk key
        """
        rows = []
        for record in records:
            now = utc_now()
            record.created_at = record.created_at or now
            record.updated_at = now
            record.dimension = record.dimension or len(record.vector)
            rows.append((
                record.id, record.entity_type, record.entity_id, record.repo_id,
                record.project_id, json.dumps(record.vector), record.embedding_model,
                record.dimension, record.content_hash, record.category, record.priority,
                record.chunk_index, record.total_chunks, record.chunk_start_offset,
                record.chunk_end_offset, record.created_at, record.updated_at,
            ))
        with self._lock, self._conn:
            self._conn.executemany(
                f"INSERT INTO vector_embeddings ({_RECORD_COLUMNS}) "
                f"VALUES ({', '.join('?' * 17)})",
                rows,
            )
        return records

    def delete(self, id: str) -> bool:
        """Delete one record by id."""
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM vector_embeddings WHERE id = ?", (id,))
        return cursor.rowcount > 0

    def delete_by_entity(self, entity_type: str, entity_id: str) -> list[str]:
        """Delete every chunk record of an entity; returns the deleted ids."""
        with self._lock, self._conn:
            ids = [
                row["id"] for row in self._conn.execute(
                    "SELECT id FROM vector_embeddings WHERE entity_type = ? AND entity_id = ?",
                    (entity_type, entity_id),
                )
            ]
            self._conn.execute(
                "DELETE FROM vector_embeddings WHERE entity_type = ? AND entity_id = ?",
                (entity_type, entity_id),
            )
        return ids

    def delete_by_scope(
        self,
        repo_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> list[str]:
        """Delete every record of a repo and/or project; returns the deleted ids."""
        where, params = self._scope_clause(repo_id, project_id)
        with self._lock, self._conn:
            ids = [
                row["id"] for row in self._conn.execute(
                    f"SELECT id FROM vector_embeddings WHERE {where}", params
                )
            ]
            self._conn.execute(f"DELETE FROM vector_embeddings WHERE {where}", params)
        return ids

    @staticmethod
    def _scope_clause(repo_id: Optional[str], project_id: Optional[str]) -> tuple[str, tuple]:
        if repo_id is None and project_id is None:
            raise ValueError("repo_id or project_id is required")
        clauses = []
        params: list[str] = []
        if repo_id is not None:
            clauses.append("repo_id = ?")
            params.append(repo_id)
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        return " AND ".join(clauses), tuple(params)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[EmbeddingRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM vector_embeddings WHERE id = ?", (id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_by_key(
        self, entity_type: str, entity_id: str, chunk_index: int = 0
    ) -> Optional[EmbeddingRecord]:
        """Get the record for one chunk of an entity."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM vector_embeddings "
                "WHERE entity_type = ? AND entity_id = ? AND chunk_index = ?",
                (entity_type, entity_id, chunk_index),
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_many(self, ids: Iterable[str]) -> dict[str, EmbeddingRecord]:
        """Get records by id; missing ids are absent from the result."""
        id_list = list(dict.fromkeys(ids))
        found: dict[str, EmbeddingRecord] = {}
        with self._lock:
            for start in range(0, len(id_list), _IN_BATCH):
                batch = id_list[start:start + _IN_BATCH]
                placeholders = ",".join("?" * len(batch))
                for row in self._conn.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM vector_embeddings WHERE id IN ({placeholders})",
                    batch,
                ):
                    found[row["id"]] = _row_to_record(row)
        return found

    def find_by_entity(self, entity_type: str, entity_id: str) -> list[EmbeddingRecord]:
        """All chunk records of an entity in chunk order."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM vector_embeddings "
                "WHERE entity_type = ? AND entity_id = ? ORDER BY chunk_index",
                (entity_type, entity_id),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def find_all(self) -> list[EmbeddingRecord]:
        """All records in creation order."""
        return list(self.iter_records())

    def iter_records(self) -> Iterator[EmbeddingRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM vector_embeddings ORDER BY created_at, id"
            ).fetchall()
        for row in rows:
            yield _row_to_record(row)

    def iter_vectors(self) -> Iterator[tuple[str, list[float]]]:
        """(id, vector) for every record, in creation order. Used for rebuilds."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, embedding FROM vector_embeddings ORDER BY created_at, id"
            ).fetchall()
        for row in rows:
            yield row["id"], json.loads(row["embedding"])

    def list_ids(self) -> list[str]:
        with self._lock:
            return [
                row["id"] for row in self._conn.execute(
                    "SELECT id FROM vector_embeddings ORDER BY created_at, id"
                )
            ]

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM vector_embeddings").fetchone()[0]

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    def upsert_project(self, project_id: str, repo_id: str, inherits_from_repo: bool = False) -> ProjectScope:
        """Record a project's repository and inheritance policy."""
        with self._lock, self._conn:
            self._conn.execute("""
                INSERT INTO projects (id, repo_id, inherits_from_repo, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    repo_id = excluded.repo_id,
                    inherits_from_repo = excluded.inherits_from_repo,
                    updated_at = excluded.updated_at
            """, (project_id, repo_id, int(inherits_from_repo), utc_now()))
        return ProjectScope(project_id=project_id, repo_id=repo_id, inherits_from_repo=inherits_from_repo)

    def get_project(self, project_id: str) -> Optional[ProjectScope]:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, repo_id, inherits_from_repo FROM projects WHERE id = ?",
                (project_id,),
            ).fetchone()
        if row is None:
            return None
        return ProjectScope(
            project_id=row["id"],
            repo_id=row["repo_id"],
            inherits_from_repo=bool(row["inherits_from_repo"]),
        )

    def delete_project(self, project_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        return cursor.rowcount > 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
