"""
Mapping between vector index rowids and embedding ids.

The vector index is keyed by small integers; embedding records by UUID
strings. This table is the bridge. It lives in the same SQLite database
as the embedding records and is only ever written by the index lifecycle
manager, inside its own transactions.
"""

import sqlite3
from collections.abc import Iterable
from typing import Optional

from .types import IndexEntry

TABLE = "vector_embeddings_rowid_map"

# Stay under SQLite's default host-parameter limit
_IN_BATCH = 500


def create_table(conn: sqlite3.Connection) -> None:
    # AUTOINCREMENT: a freed rowid is never handed out again
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
            rowid INTEGER PRIMARY KEY AUTOINCREMENT,
            embedding_id TEXT NOT NULL UNIQUE
        )
    """)


class RowidMap:
    """
    Rowid <-> embedding id map on a caller-owned connection.

    Never commits; the caller decides the transaction boundary so that a
    map change and the matching index change succeed or fail together.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def allocate(self, embedding_id: str) -> int:
        """Allocate a fresh rowid for embedding_id."""
        cursor = self._conn.execute(
            f"INSERT INTO {TABLE} (embedding_id) VALUES (?)", (embedding_id,)
        )
        return int(cursor.lastrowid)

    def rowid_for(self, embedding_id: str) -> Optional[int]:
        row = self._conn.execute(
            f"SELECT rowid FROM {TABLE} WHERE embedding_id = ?", (embedding_id,)
        ).fetchone()
        return int(row[0]) if row else None

    def resolve(self, rowids: Iterable[int]) -> dict[int, str]:
        """Map rowids to embedding ids; unmapped rowids are absent."""
        rowid_list = list(dict.fromkeys(int(r) for r in rowids))
        resolved: dict[int, str] = {}
        for start in range(0, len(rowid_list), _IN_BATCH):
            batch = rowid_list[start:start + _IN_BATCH]
            placeholders = ",".join("?" * len(batch))
            for rowid, embedding_id in self._conn.execute(
                f"SELECT rowid, embedding_id FROM {TABLE} WHERE rowid IN ({placeholders})",
                batch,
            ):
                resolved[int(rowid)] = embedding_id
        return resolved

    def delete(self, embedding_id: str) -> Optional[int]:
        """Remove the entry for embedding_id; returns its rowid if it existed."""
        rowid = self.rowid_for(embedding_id)
        if rowid is not None:
            self._conn.execute(f"DELETE FROM {TABLE} WHERE rowid = ?", (rowid,))
        return rowid

    def truncate(self) -> None:
        self._conn.execute(f"DELETE FROM {TABLE}")

    def rowids(self) -> set[int]:
        return {int(r[0]) for r in self._conn.execute(f"SELECT rowid FROM {TABLE}")}

    def count(self) -> int:
        return int(self._conn.execute(f"SELECT COUNT(*) FROM {TABLE}").fetchone()[0])

    def entries(self) -> list[IndexEntry]:
        return [
            IndexEntry(rowid=int(rowid), embedding_id=embedding_id)
            for rowid, embedding_id in self._conn.execute(
                f"SELECT rowid, embedding_id FROM {TABLE} ORDER BY rowid"
            )
        ]
