"""
Tests for the error taxonomy, error logging and entity fetcher registry.
"""

import pytest

from rackindex.errors import (
    ConfigurationError,
    EntityFetchFailure,
    IndexCorrupt,
    RackIndexError,
    log_exception,
)
from rackindex.fetchers import EntityFetcherRegistry


class TestTaxonomy:

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)
        assert issubclass(ConfigurationError, RackIndexError)

    def test_fetch_failure_message(self):
        failure = EntityFetchFailure("task", "t1", "timeout")
        assert str(failure) == "Failed to fetch task:t1: timeout"
        assert (failure.entity_type, failure.entity_id) == ("task", "t1")


class TestLogException:

    def test_writes_traceback(self, tmp_path):
        try:
            raise IndexCorrupt("index gone")
        except IndexCorrupt as e:
            path = log_exception(e, "vector search", tmp_path)
        content = path.read_text()
        assert path == tmp_path / "rackindex-errors.log"
        assert "vector search" in content
        assert "IndexCorrupt: index gone" in content

    def test_appends(self, tmp_path):
        log_exception(ValueError("first"), store_path=tmp_path)
        log_exception(ValueError("second"), store_path=tmp_path)
        content = (tmp_path / "rackindex-errors.log").read_text()
        assert content.index("first") < content.index("second")

    def test_env_store_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RACKINDEX_STORE_PATH", str(tmp_path))
        assert log_exception(ValueError("x")) == tmp_path / "rackindex-errors.log"


class TestEntityFetcherRegistry:

    def test_dispatch_by_type(self):
        fetcher = EntityFetcherRegistry({"task": {"t1": {"title": "Ship"}}.get})
        assert fetcher.fetch("task", "t1") == {"title": "Ship"}
        assert fetcher.fetch("task", "t2") is None

    def test_unknown_type_returns_none(self):
        assert EntityFetcherRegistry().fetch("task", "t1") is None

    def test_empty_id_returns_none(self):
        fetcher = EntityFetcherRegistry({"task": lambda id: pytest.fail("should not load")})
        assert fetcher.fetch("task", "") is None

    def test_register_and_unregister(self):
        fetcher = EntityFetcherRegistry()
        fetcher.register("pattern", lambda id: {"id": id})
        fetcher.register("convention", lambda id: None)
        assert fetcher.entity_types == ["convention", "pattern"]
        fetcher.unregister("pattern")
        assert fetcher.fetch("pattern", "p1") is None

    def test_loader_errors_propagate(self):
        def broken(entity_id):
            raise RuntimeError("db down")

        fetcher = EntityFetcherRegistry({"task": broken})
        with pytest.raises(RuntimeError):
            fetcher.fetch("task", "t1")
