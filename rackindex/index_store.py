"""
FAISS-backed vector index keyed by small integer rowids.

A thin k-NN primitive: it knows nothing about embedding ids or scopes.
Vectors are L2-normalized on the way in so that inner product equals
cosine similarity; distances are reported as cosine distance in [0, 2].
"""

import logging
import os
from pathlib import Path
from typing import Optional

import faiss
import numpy as np

from .errors import IndexUnavailable

logger = logging.getLogger(__name__)


def _as_matrix(vector, dimension: int) -> np.ndarray:
    matrix = np.ascontiguousarray(np.asarray(vector, dtype=np.float32).reshape(1, -1))
    if matrix.shape[1] != dimension:
        raise ValueError(f"Vector has dimension {matrix.shape[1]}, index expects {dimension}")
    faiss.normalize_L2(matrix)
    return matrix


class FaissIndexStore:
    """
    In-memory FAISS index with explicit load/save to a single file.

    Uses an IndexIDMap2 over a flat inner-product index so that arbitrary
    int64 rowids can be added and removed.
    """

    def __init__(self, dimension: int):
        self._dimension = dimension
        self._index = self.create_index(dimension)

    @staticmethod
    def create_index(dimension: int) -> "faiss.IndexIDMap2":
        """Create an empty id-mapped inner-product index."""
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        return faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

    @property
    def dimension(self) -> int:
        return self._dimension

    def count(self) -> int:
        return int(self._index.ntotal)

    def rowids(self) -> set[int]:
        if self._index.ntotal == 0:
            return set()
        return {int(i) for i in faiss.vector_to_array(self._index.id_map)}

    def insert(self, rowid: int, vector) -> None:
        """Add a vector under rowid, replacing any vector already stored there."""
        matrix = _as_matrix(vector, self._dimension)
        ids = np.asarray([rowid], dtype=np.int64)
        self._index.remove_ids(ids)
        self._index.add_with_ids(matrix, ids)

    def delete(self, rowid: int) -> bool:
        removed = self._index.remove_ids(np.asarray([rowid], dtype=np.int64))
        return int(removed) > 0

    def truncate(self) -> None:
        self._index = self.create_index(self._dimension)

    def knn(self, vector, k: int) -> list[tuple[int, float]]:
        """
        Nearest neighbours of vector, closest first.

        Returns:
            (rowid, cosine distance) pairs, at most k of them
        """
        if k <= 0 or self._index.ntotal == 0:
            return []
        matrix = _as_matrix(vector, self._dimension)
        k = min(k, int(self._index.ntotal))
        scores, ids = self._index.search(matrix, k)
        results = []
        for score, rowid in zip(scores[0], ids[0]):
            if rowid < 0:
                continue
            distance = min(2.0, max(0.0, 1.0 - float(score)))
            results.append((int(rowid), distance))
        return results

    def load(self, path: Path) -> None:
        """
        Replace the in-memory index with the one stored at path.

        Raises:
            IndexUnavailable: If the file is missing, unreadable or has the
                wrong dimension
        """
        if not path.exists():
            raise IndexUnavailable(f"Index file not found: {path}")
        try:
            index = faiss.read_index(str(path))
        except RuntimeError as e:
            raise IndexUnavailable(f"Cannot read index file {path}: {e}") from e
        if index.d != self._dimension:
            raise IndexUnavailable(
                f"Index file {path} has dimension {index.d}, expected {self._dimension}"
            )
        if not isinstance(index, faiss.IndexIDMap2):
            try:
                index = faiss.downcast_index(index)
            except RuntimeError as e:
                raise IndexUnavailable(f"Unexpected index type in {path}: {e}") from e
            if not isinstance(index, faiss.IndexIDMap2):
                raise IndexUnavailable(f"Unexpected index type in {path}: {type(index).__name__}")
        self._index = index
        logger.debug("Loaded index %s (%d vectors)", path, index.ntotal)

    def save(self, path: Path) -> None:
        """Write the index to path atomically (temp file + rename)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            faiss.write_index(self._index, str(tmp_path))
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def snapshot(self) -> "FaissIndexStore":
        """Deep copy, used to build a replacement index off to the side."""
        clone = FaissIndexStore(self._dimension)
        clone._index = faiss.clone_index(self._index)
        return clone

    @classmethod
    def from_file(cls, path: Path, dimension: int) -> "FaissIndexStore":
        store = cls(dimension)
        store.load(path)
        return store


def file_epoch(path: Path) -> Optional[tuple[int, int]]:
    """(mtime_ns, size) of the index file, or None when it does not exist."""
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return (st.st_mtime_ns, st.st_size)
