"""
Tests for the SQLite embedding record store.
"""

import sqlite3

import pytest

from rackindex.types import EmbeddingRecord

from conftest import unit_vector


def _record(id, entity_id="e1", chunk_index=0, repo_id="repo1", project_id=None, **kwargs):
    return EmbeddingRecord(
        id=id,
        entity_type=kwargs.pop("entity_type", "document"),
        entity_id=entity_id,
        repo_id=repo_id,
        project_id=project_id,
        vector=unit_vector(sum(map(ord, id)), 8),
        chunk_index=chunk_index,
        **kwargs,
    )


class TestRecords:

    def test_create_and_get(self, records):
        created = records.create(_record("a", category="billing", priority="high"))
        assert created.created_at
        assert created.dimension == 8

        loaded = records.get("a")
        assert loaded.entity_id == "e1"
        assert loaded.category == "billing"
        assert loaded.priority == "high"
        assert loaded.vector == pytest.approx(created.vector)

    def test_get_missing(self, records):
        assert records.get("nope") is None

    def test_unique_entity_chunk(self, records):
        records.create(_record("a"))
        with pytest.raises(sqlite3.IntegrityError):
            records.create(_record("b"))

    def test_batch_is_atomic(self, records):
        records.create(_record("a"))
        with pytest.raises(sqlite3.IntegrityError):
            records.create_batch([_record("b", entity_id="e2"), _record("c")])
        assert records.get("b") is None

    def test_get_by_key(self, records):
        records.create_batch([_record("a"), _record("b", chunk_index=1)])
        assert records.get_by_key("document", "e1", 1).id == "b"
        assert records.get_by_key("document", "e1", 2) is None

    def test_find_by_entity_in_chunk_order(self, records):
        records.create_batch([_record("b", chunk_index=1), _record("a", chunk_index=0)])
        assert [r.id for r in records.find_by_entity("document", "e1")] == ["a", "b"]

    def test_creation_order(self, records):
        for i, id in enumerate(["z", "y", "x"]):
            records.create(_record(id, entity_id=f"e{i}", created_at=f"2026-01-0{i + 1}T00:00:00.000000"))
        assert records.list_ids() == ["z", "y", "x"]
        assert [id for id, _ in records.iter_vectors()] == ["z", "y", "x"]
        assert [r.id for r in records.find_all()] == ["z", "y", "x"]

    def test_get_many(self, records):
        records.create_batch([_record("a"), _record("b", entity_id="e2")])
        found = records.get_many(["a", "b", "missing"])
        assert set(found) == {"a", "b"}


class TestDeletes:

    def test_delete_by_entity(self, records):
        records.create_batch([
            _record("a"), _record("b", chunk_index=1), _record("c", entity_id="e2"),
        ])
        assert sorted(records.delete_by_entity("document", "e1")) == ["a", "b"]
        assert records.list_ids() == ["c"]

    def test_delete_by_scope(self, records):
        records.create_batch([
            _record("a", entity_id="e1", project_id="p1"),
            _record("b", entity_id="e2"),
            _record("c", entity_id="e3", repo_id="repo2"),
        ])
        assert records.delete_by_scope(project_id="p1") == ["a"]
        assert records.delete_by_scope(repo_id="repo1") == ["b"]
        assert records.count() == 1

    def test_delete_by_scope_requires_scope(self, records):
        with pytest.raises(ValueError):
            records.delete_by_scope()


class TestProjects:

    def test_upsert_and_get(self, records):
        records.upsert_project("p1", "repo1", inherits_from_repo=True)
        project = records.get_project("p1")
        assert project.repo_id == "repo1"
        assert project.inherits_from_repo is True

    def test_update(self, records):
        records.upsert_project("p1", "repo1", inherits_from_repo=True)
        records.upsert_project("p1", "repo1", inherits_from_repo=False)
        assert records.get_project("p1").inherits_from_repo is False

    def test_missing_project(self, records):
        assert records.get_project("nope") is None

    def test_delete_project(self, records):
        records.upsert_project("p1", "repo1")
        assert records.delete_project("p1") is True
        assert records.delete_project("p1") is False
