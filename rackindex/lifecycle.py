"""
Index lifecycle management.

Keeps the vector index file and the rowid map in step with each other,
and rebuilds both from the durable embedding records when the index is
missing, unreadable or out of step.

Every write is one unit: the rowid map changes inside a single SQLite
transaction, the index change is applied to a copy of the in-memory index,
the copy is written to disk atomically, and only then is the transaction
committed and the copy swapped in. A failure anywhere leaves the previous
state of both halves in place.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import IndexCorrupt, IndexUnavailable
from .index_store import FaissIndexStore, file_epoch
from .protocol import RecordSource
from .rowid_map import RowidMap, create_table
from .types import IndexHealth, IndexState

try:  # pragma: no cover - POSIX only
    import fcntl
except ImportError:  # pragma: no cover - Windows: in-process locking only
    fcntl = None

logger = logging.getLogger(__name__)


class IndexLifecycleManager:
    """
    Sole owner of the vector index and the rowid map.

    Writers are serialized by a process-wide RLock plus an advisory file
    lock next to the index file, so separate processes sharing a store do
    not interleave. Readers reload the index when the file on disk was
    replaced by another process.
    """

    def __init__(
        self,
        db_path: Path,
        index_path: Path,
        dimension: int,
        record_source: RecordSource,
        busy_timeout_ms: int = 5000,
    ):
        """
        Args:
            db_path: SQLite database holding the rowid map
            index_path: Path of the FAISS index file
            dimension: Vector dimension the index is created with
            record_source: Durable records to rebuild from
            busy_timeout_ms: How long to wait on a locked database
        """
        self._db_path = db_path
        self._index_path = index_path
        self._lock_path = index_path.with_name(index_path.name + ".lock")
        self._dimension = dimension
        self._records = record_source
        self._busy_timeout_ms = busy_timeout_ms

        self._lock = threading.RLock()
        self._lock_depth = 0
        self._lock_handle = None

        self._store: Optional[FaissIndexStore] = None
        self._epoch: Optional[tuple[int, int]] = None
        self._state = IndexState.UNAVAILABLE
        self._rebuild_count = 0

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            create_table(conn)

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def rebuild_count(self) -> int:
        """Number of rebuilds attempted by this manager."""
        return self._rebuild_count

    @property
    def dimension(self) -> int:
        return self._dimension

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    @contextmanager
    def _connection(self):
        """Short-lived connection with manual transaction control."""
        conn = sqlite3.connect(
            str(self._db_path),
            isolation_level=None,
            timeout=self._busy_timeout_ms / 1000,
        )
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _write_lock(self):
        """
        Exclusive lock for one write unit, reentrant within a thread.

        The file lock is only taken at the outermost level; flock locks are
        per open file, so nesting a second one would deadlock.
        """
        with self._lock:
            if self._lock_depth == 0 and fcntl is not None:
                self._lock_path.parent.mkdir(parents=True, exist_ok=True)
                self._lock_handle = open(self._lock_path, "a+")
                try:
                    fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_EX)
                except BaseException:
                    self._lock_handle.close()
                    self._lock_handle = None
                    raise
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
                if self._lock_depth == 0 and self._lock_handle is not None:
                    try:
                        fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_UN)
                    finally:
                        self._lock_handle.close()
                        self._lock_handle = None

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _sync(self) -> FaissIndexStore:
        """
        Make the in-memory index match the file on disk.

        Creates an empty index file when none exists. Reloads when the
        file's epoch changed since it was last read or written here.

        Raises:
            IndexUnavailable: If the file cannot be loaded, or the rowid map
                references vectors the index does not hold
        """
        epoch = file_epoch(self._index_path)
        if self._store is not None and epoch is not None and epoch == self._epoch:
            return self._store

        with self._write_lock():
            epoch = file_epoch(self._index_path)
            if epoch is None:
                store = FaissIndexStore(self._dimension)
                with self._connection() as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        # Vectors are gone; mappings to them are meaningless
                        RowidMap(conn).truncate()
                        store.save(self._index_path)
                        conn.execute("COMMIT")
                    except BaseException:
                        conn.execute("ROLLBACK")
                        raise
                logger.info("Created vector index %s (dimension %d)", self._index_path, self._dimension)
            else:
                store = FaissIndexStore.from_file(self._index_path, self._dimension)
                with self._connection() as conn:
                    mapped = RowidMap(conn).rowids()
                missing = mapped - store.rowids()
                if missing:
                    raise IndexUnavailable(
                        f"Rowid map references {len(missing)} vectors missing from {self._index_path}"
                    )
            self._store = store
            self._epoch = file_epoch(self._index_path)
            if self._state is not IndexState.REBUILDING:
                self._state = IndexState.READY
            return store

    def ensure_index_ready(self) -> IndexState:
        """
        Create or load the index. Idempotent.

        A load failure marks the index UNAVAILABLE instead of raising; the
        next query rebuilds it.
        """
        with self._lock:
            try:
                self._sync()
            except IndexUnavailable as e:
                logger.warning("Vector index unavailable: %s", e)
                self._state = IndexState.UNAVAILABLE
            return self._state

    def _sync_for_write(self) -> None:
        try:
            self._sync()
        except IndexUnavailable as e:
            logger.warning("Vector index unavailable before write (%s); rebuilding", e)
            self._state = IndexState.UNAVAILABLE
            self.rebuild_all()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _apply(self, mutate: Callable[[RowidMap, FaissIndexStore], tuple[Any, bool]]) -> Any:
        """
        Run one write unit against a copy of the index and the rowid map.

        mutate returns (result, changed); nothing is written when unchanged.
        """
        current = self._store
        working = current.snapshot()
        saved = False
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result, changed = mutate(RowidMap(conn), working)
                if changed:
                    working.save(self._index_path)
                    saved = True
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                if saved:
                    self._restore_file(current)
                raise
        if saved:
            self._store = working
            self._epoch = file_epoch(self._index_path)
        return result

    def _restore_file(self, previous: FaissIndexStore) -> None:
        try:
            previous.save(self._index_path)
        except (OSError, RuntimeError) as e:
            # The next load finds the map and file out of step and rebuilds
            logger.error("Could not restore index file after failed write: %s", e)
            self._store = None
        self._epoch = file_epoch(self._index_path)

    def insert(self, embedding_id: str, vector: list[float]) -> int:
        """
        Index one vector under embedding_id, replacing any previous entry.

        Returns:
            The rowid allocated to the entry
        """
        return self.insert_many([(embedding_id, vector)])[0]

    def insert_many(self, items: Iterable[tuple[str, list[float]]]) -> list[int]:
        """Index several vectors as one write unit."""
        items = list(items)
        if not items:
            return []

        def mutate(rowid_map: RowidMap, working: FaissIndexStore):
            rowids = []
            for embedding_id, vector in items:
                previous = rowid_map.delete(embedding_id)
                if previous is not None:
                    working.delete(previous)
                rowid = rowid_map.allocate(embedding_id)
                working.insert(rowid, vector)
                rowids.append(rowid)
            return rowids, True

        with self._write_lock():
            self._sync_for_write()
            rowids = self._apply(mutate)
        logger.debug("Indexed %d vectors", len(rowids))
        return rowids

    def remove(self, embedding_id: str) -> bool:
        """Remove embedding_id from the index. Returns False if it was not indexed."""
        return self.remove_many([embedding_id]) > 0

    def remove_many(self, embedding_ids: Iterable[str]) -> int:
        """Remove several entries as one write unit; returns how many existed."""
        embedding_ids = list(embedding_ids)
        if not embedding_ids:
            return 0

        def mutate(rowid_map: RowidMap, working: FaissIndexStore):
            removed = 0
            for embedding_id in embedding_ids:
                rowid = rowid_map.delete(embedding_id)
                if rowid is not None:
                    working.delete(rowid)
                    removed += 1
            return removed, removed > 0

        with self._write_lock():
            self._sync_for_write()
            removed = self._apply(mutate)
        if removed:
            logger.debug("Removed %d vectors from index", removed)
        return removed

    def rebuild_all(self) -> int:
        """
        Rebuild the index and rowid map from the durable records.

        Records are replayed in creation order with fresh rowids into a new
        index, which replaces the old one only on success.

        Returns:
            Number of entries indexed

        Raises:
            IndexCorrupt: If the rebuild fails; both halves are left empty
        """
        with self._write_lock():
            self._state = IndexState.REBUILDING
            self._rebuild_count += 1
            fresh = FaissIndexStore(self._dimension)
            count = 0
            try:
                # Read records before taking the database write lock; record
                # writers hold their own lock while waiting for it
                snapshot = list(self._records.iter_vectors())
                with self._connection() as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        rowid_map = RowidMap(conn)
                        rowid_map.truncate()
                        for embedding_id, vector in snapshot:
                            fresh.insert(rowid_map.allocate(embedding_id), vector)
                            count += 1
                        fresh.save(self._index_path)
                        conn.execute("COMMIT")
                    except BaseException:
                        conn.execute("ROLLBACK")
                        raise
            except Exception as e:
                self._state = IndexState.UNAVAILABLE
                self._clear_after_failed_rebuild()
                raise IndexCorrupt(f"Index rebuild failed: {e}") from e

            self._store = fresh
            self._epoch = file_epoch(self._index_path)
            self._state = IndexState.READY
        logger.info("Rebuilt vector index: %d entries", count)
        return count

    def _clear_after_failed_rebuild(self) -> None:
        """Leave both halves empty rather than half-populated."""
        empty = FaissIndexStore(self._dimension)
        try:
            with self._connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    RowidMap(conn).truncate()
                    empty.save(self._index_path)
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except (sqlite3.Error, OSError, RuntimeError) as e:
            logger.error("Could not clear index after failed rebuild: %s", e)
            self._store = None
            self._epoch = None
            return
        self._store = empty
        self._epoch = file_epoch(self._index_path)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _current_store(self) -> FaissIndexStore:
        # Writes swap in a new store instead of mutating this one, so it can
        # be searched after the lock is released
        with self._lock:
            return self._sync()

    def _query_once(self, vector: list[float], k: int) -> list[tuple[int, float]]:
        return self._current_store().knn(vector, k)

    def query(self, vector: list[float], k: int) -> list[tuple[int, float]]:
        """
        k nearest neighbours as (rowid, cosine distance), closest first.

        An unreadable index, or an empty one while durable records exist,
        triggers one rebuild and a retry. At most one rebuild per call.
        The lock is held only to pick up the current index, so concurrent
        queries search in parallel.

        Raises:
            IndexCorrupt: If the rebuild fails or the index still fails after it
        """
        if k <= 0:
            return []
        try:
            store = self._current_store()
        except IndexUnavailable as e:
            logger.warning("Vector index unavailable (%s); rebuilding", e)
            self._state = IndexState.UNAVAILABLE
            self.rebuild_all()
            return self._retry_after_rebuild(vector, k)

        hits = store.knn(vector, k)
        if not hits and store.count() == 0:
            pending = self._records.count()
            if pending:
                logger.info("Vector index is empty but %d records exist; rebuilding", pending)
                self.rebuild_all()
                return self._retry_after_rebuild(vector, k)
        return hits

    def _retry_after_rebuild(self, vector: list[float], k: int) -> list[tuple[int, float]]:
        try:
            return self._query_once(vector, k)
        except IndexUnavailable as e:
            self._state = IndexState.UNAVAILABLE
            raise IndexCorrupt(f"Vector index still unavailable after rebuild: {e}") from e

    def resolve(self, rowids: Iterable[int]) -> dict[int, str]:
        """Map rowids to embedding ids; stale rowids are absent."""
        with self._connection() as conn:
            return RowidMap(conn).resolve(rowids)

    def rowid_for(self, embedding_id: str) -> Optional[int]:
        with self._connection() as conn:
            return RowidMap(conn).rowid_for(embedding_id)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def verify(self) -> IndexHealth:
        """Check the index, the rowid map and the durable records against each other."""
        with self._write_lock():
            try:
                index_rowids = self._sync().rowids()
            except IndexUnavailable as e:
                logger.warning("Verifying unreadable index: %s", e)
                index_rowids = set()
            with self._connection() as conn:
                entries = RowidMap(conn).entries()
            record_ids = set(self._records.list_ids())

        map_rowids = {entry.rowid for entry in entries}
        map_ids = {entry.embedding_id for entry in entries}
        health = IndexHealth(
            index_rowids=len(index_rowids),
            map_entries=len(entries),
            records=len(record_ids),
            orphaned_rowids=sorted(index_rowids - map_rowids),
            missing_vector_rowids=sorted(map_rowids - index_rowids),
            stale_map_ids=sorted(map_ids - record_ids),
            unindexed_record_ids=sorted(record_ids - map_ids),
        )
        if not health.consistent:
            logger.warning(
                "Index inconsistent: %d orphaned rowids, %d missing vectors, "
                "%d stale map entries, %d unindexed records",
                len(health.orphaned_rowids), len(health.missing_vector_rowids),
                len(health.stale_map_ids), len(health.unindexed_record_ids),
            )
        return health

    def stats(self) -> dict[str, Any]:
        with self._connection() as conn:
            mapped = RowidMap(conn).count()
        return {
            "state": self._state.value,
            "indexed": self._store.count() if self._store is not None else 0,
            "mapped": mapped,
            "rebuilds": self._rebuild_count,
            "dimension": self._dimension,
            "index_file_exists": self._index_path.exists(),
        }

    def close(self) -> None:
        with self._lock:
            self._store = None
            self._epoch = None
