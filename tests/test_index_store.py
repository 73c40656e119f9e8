"""
Tests for the FAISS-backed vector index primitive.
"""

import pytest

from rackindex.errors import IndexUnavailable
from rackindex.index_store import FaissIndexStore, file_epoch

from conftest import blend, unit_vector


@pytest.fixture
def store():
    return FaissIndexStore(384)


class TestInsertAndSearch:

    def test_exact_match_distance_zero(self, store):
        v = unit_vector(1)
        store.insert(7, v)
        hits = store.knn(v, 1)
        assert hits[0][0] == 7
        assert hits[0][1] == pytest.approx(0.0, abs=1e-5)

    def test_ordered_by_distance(self, store):
        q = unit_vector(1)
        store.insert(1, unit_vector(2))
        store.insert(2, blend(q, unit_vector(3), 0.1))
        store.insert(3, q)
        assert [rowid for rowid, _ in store.knn(q, 3)] == [3, 2, 1]

    def test_distance_in_range(self, store):
        q = unit_vector(1)
        store.insert(1, [-x for x in q])
        (rowid, distance), = store.knn(q, 1)
        assert 0.0 <= distance <= 2.0
        assert distance == pytest.approx(2.0, abs=1e-5)

    def test_unnormalized_input_is_normalized(self, store):
        v = unit_vector(4)
        store.insert(1, [x * 10 for x in v])
        assert store.knn(v, 1)[0][1] == pytest.approx(0.0, abs=1e-5)

    def test_k_larger_than_count(self, store):
        store.insert(1, unit_vector(1))
        assert len(store.knn(unit_vector(2), 10)) == 1

    def test_empty_index(self, store):
        assert store.knn(unit_vector(1), 5) == []

    def test_insert_replaces(self, store):
        store.insert(1, unit_vector(1))
        store.insert(1, unit_vector(2))
        assert store.count() == 1
        assert store.knn(unit_vector(2), 1)[0][1] == pytest.approx(0.0, abs=1e-5)

    def test_wrong_dimension_rejected(self, store):
        with pytest.raises(ValueError):
            store.insert(1, [0.1, 0.2])


class TestDelete:

    def test_delete(self, store):
        store.insert(1, unit_vector(1))
        store.insert(2, unit_vector(2))
        assert store.delete(1) is True
        assert store.rowids() == {2}

    def test_delete_missing(self, store):
        assert store.delete(99) is False

    def test_truncate(self, store):
        store.insert(1, unit_vector(1))
        store.truncate()
        assert store.count() == 0
        assert store.rowids() == set()


class TestPersistence:

    def test_save_and_load(self, store, tmp_path):
        path = tmp_path / "vectors.faiss"
        store.insert(5, unit_vector(5))
        store.insert(9, unit_vector(9))
        store.save(path)

        loaded = FaissIndexStore.from_file(path, 384)
        assert loaded.rowids() == {5, 9}
        assert loaded.knn(unit_vector(9), 1)[0][0] == 9

    def test_save_leaves_no_temp_file(self, store, tmp_path):
        path = tmp_path / "vectors.faiss"
        store.save(path)
        assert [p.name for p in tmp_path.iterdir()] == ["vectors.faiss"]

    def test_missing_file(self, store, tmp_path):
        with pytest.raises(IndexUnavailable):
            store.load(tmp_path / "missing.faiss")

    def test_corrupt_file(self, store, tmp_path):
        path = tmp_path / "vectors.faiss"
        path.write_bytes(b"not a faiss index")
        with pytest.raises(IndexUnavailable):
            store.load(path)

    def test_dimension_mismatch(self, tmp_path):
        path = tmp_path / "vectors.faiss"
        small = FaissIndexStore(8)
        small.insert(1, [1.0] * 8)
        small.save(path)
        with pytest.raises(IndexUnavailable, match="dimension"):
            FaissIndexStore.from_file(path, 384)

    def test_snapshot_is_independent(self, store):
        store.insert(1, unit_vector(1))
        copy = store.snapshot()
        copy.insert(2, unit_vector(2))
        assert store.rowids() == {1}
        assert copy.rowids() == {1, 2}

    def test_file_epoch(self, store, tmp_path):
        path = tmp_path / "vectors.faiss"
        assert file_epoch(path) is None
        store.save(path)
        assert file_epoch(path) is not None
