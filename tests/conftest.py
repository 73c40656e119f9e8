"""
Shared pytest fixtures for rackindex tests.

Provides a mock embedding provider to avoid loading ML models during testing.
"""

import hashlib

import numpy as np
import pytest

from rackindex.api import ContextIndex
from rackindex.config import create_default_config
from rackindex.document_store import EmbeddingStore
from rackindex.fetchers import EntityFetcherRegistry
from rackindex.lifecycle import IndexLifecycleManager
from rackindex.types import EmbeddingRecord

DIMENSION = 384


def unit_vector(seed: int, dimension: int = DIMENSION) -> list[float]:
    """Deterministic random unit vector."""
    rng = np.random.default_rng(seed)
    v = rng.standard_normal(dimension)
    return (v / np.linalg.norm(v)).tolist()


def blend(a: list[float], b: list[float], weight: float) -> list[float]:
    """Unit vector between a and b; weight 0 gives a, weight 1 gives b."""
    v = (1 - weight) * np.asarray(a) + weight * np.asarray(b)
    return (v / np.linalg.norm(v)).tolist()


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent unit vectors seeded by the text hash - no ML model loading.
    """

    dimension = DIMENSION
    model_name = "mock-model"

    def __init__(self):
        self.embed_calls = 0
        self.batch_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        seed = int(hashlib.md5(text.encode()).hexdigest()[:8], 16)
        return unit_vector(seed)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self.embed(t) for t in texts]


class DictFetcher(EntityFetcherRegistry):
    """Entity fetcher over in-memory dicts, one per entity type."""

    def __init__(self):
        super().__init__()
        self.entities: dict[str, dict[str, dict]] = {}

    def add(self, entity_type: str, entity_id: str, data: dict) -> None:
        if entity_type not in self.entities:
            self.entities[entity_type] = {}
            self.register(entity_type, self.entities[entity_type].get)
        self.entities[entity_type][entity_id] = data


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def records(tmp_path):
    store = EmbeddingStore(tmp_path / "rackindex.db")
    yield store
    store.close()


@pytest.fixture
def lifecycle(tmp_path, records):
    manager = IndexLifecycleManager(
        db_path=tmp_path / "rackindex.db",
        index_path=tmp_path / "vectors.faiss",
        dimension=DIMENSION,
        record_source=records,
    )
    manager.ensure_index_ready()
    yield manager
    manager.close()


@pytest.fixture
def add_record(records, lifecycle):
    """Factory: persist a record and index it, like the indexer does."""
    counter = {"n": 0}

    def _add(
        vector,
        entity_id=None,
        entity_type="business_rule",
        repo_id="repo1",
        project_id=None,
        chunk_index=0,
        index=True,
    ) -> EmbeddingRecord:
        counter["n"] += 1
        record = EmbeddingRecord(
            id=f"emb-{counter['n']:04d}",
            entity_type=entity_type,
            entity_id=entity_id or f"entity-{counter['n']}",
            repo_id=repo_id,
            project_id=project_id,
            vector=vector,
            chunk_index=chunk_index,
            embedding_model="mock-model",
        )
        records.create(record)
        if index:
            lifecycle.insert(record.id, vector)
        return record

    return _add


@pytest.fixture
def fetcher():
    return DictFetcher()


@pytest.fixture
def context_index(tmp_path, mock_embedding_provider, fetcher):
    config = create_default_config(tmp_path / "store")
    with ContextIndex(
        config=config,
        embedding_provider=mock_embedding_provider,
        entity_fetcher=fetcher,
    ) as index:
        yield index
