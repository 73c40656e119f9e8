"""
Tests for the provider registry and logging helpers.
"""

import logging

import pytest

from rackindex.logging_config import configure_ops_log, configure_quiet_mode
from rackindex.providers import EmbeddingProvider, EntityFetcher, ProviderRegistry, get_registry
from rackindex.providers.embeddings import SentenceTransformerEmbedding

from conftest import DictFetcher, MockEmbeddingProvider


class TestProviderRegistry:

    def test_sentence_transformers_registered(self):
        assert "sentence-transformers" in get_registry().list_embedding_providers()

    def test_create_is_lazy(self):
        provider = get_registry().create_embedding("sentence-transformers", {"model": "all-MiniLM-L6-v2"})
        assert isinstance(provider, SentenceTransformerEmbedding)
        assert provider.model_name == "all-MiniLM-L6-v2"
        assert provider._model is None

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            ProviderRegistry().create_embedding("nope")

    def test_register_custom(self):
        registry = ProviderRegistry()
        registry.register_embedding("mock", MockEmbeddingProvider)
        assert isinstance(registry.create_embedding("mock"), MockEmbeddingProvider)

    def test_empty_batch_skips_model(self):
        assert SentenceTransformerEmbedding().embed_batch([]) == []


class TestProtocols:

    def test_mock_satisfies_embedding_protocol(self):
        assert isinstance(MockEmbeddingProvider(), EmbeddingProvider)

    def test_registry_satisfies_fetcher_protocol(self):
        assert isinstance(DictFetcher(), EntityFetcher)


class TestLogging:

    def test_ops_log_handler(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        try:
            logging.getLogger("rackindex.test").info("hello %s", "ops")
            handler.flush()
            assert "hello ops" in (tmp_path / "rackindex-ops.log").read_text()
        finally:
            logging.getLogger("rackindex").removeHandler(handler)
            handler.close()

    def test_quiet_mode_silences_libraries(self):
        configure_quiet_mode(True)
        assert logging.getLogger("sentence_transformers").level == logging.ERROR
        assert logging.getLogger("faiss").level == logging.ERROR
