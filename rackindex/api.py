"""
Core API for the context index.

This is the minimal working implementation focused on:
- index_entity(): chunk, embed and index a business-context entity
- search_by_text(): scope-aware semantic search with entity data
- find_similar(): neighbours of an indexed entity
- rebuild_index() / verify_index(): index maintenance
"""

import logging
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Union

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .document_store import EmbeddingStore
from .errors import ConfigurationError
from .fetchers import EntityFetcherRegistry
from .indexer import EntityIndexer
from .lifecycle import IndexLifecycleManager
from .logging_config import configure_ops_log
from .protocol import ProjectLookup
from .providers.base import EmbeddingProvider, EntityFetcher, get_registry
from .search import RetrievalEngine
from .types import (
    EntityWithData,
    IndexHealth,
    IndexResult,
    IndexState,
    ProjectScope,
    ScopedResult,
    SearchOptions,
)

logger = logging.getLogger(__name__)


class ContextIndex:
    """
    Local semantic index over business-context entities.

    Everything lives under one store directory: the TOML config, the SQLite
    database (embedding records, rowid map, projects) and the FAISS index
    file. Embeddings are computed locally.
    """

    def __init__(
        self,
        store_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[StoreConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        entity_fetcher: Optional[EntityFetcher] = None,
        project_lookup: Optional[ProjectLookup] = None,
    ) -> None:
        """
        Open or create a context index store.

        Args:
            store_path: Store directory. Defaults to RACKINDEX_STORE_PATH or ~/.rackindex.
            config: Pre-loaded StoreConfig (skips config file discovery).
            embedding_provider: Injected embedding provider (skips the registry).
            entity_fetcher: Loads entity records for search results.
                Defaults to an empty EntityFetcherRegistry.
            project_lookup: Project inheritance source. Defaults to the
                store's own projects table.
        """
        if config is not None:
            self._config = config.validate()
        else:
            path = Path(store_path).resolve() if store_path is not None else get_default_store_path()
            self._config = load_or_create_config(path)
        self._store_path = self._config.path
        self._store_path.mkdir(parents=True, exist_ok=True)

        if embedding_provider is None:
            embedding_provider = get_registry().create_embedding(
                self._config.embedding.name,
                self._config.embedding.params,
            )
        elif embedding_provider.dimension != self._config.index.dimension:
            raise ConfigurationError(
                f"Embedding provider dimension {embedding_provider.dimension} does not match "
                f"index dimension {self._config.index.dimension}"
            )
        self._embedder = embedding_provider
        self._ops_handler = configure_ops_log(self._store_path)

        self._records = EmbeddingStore(
            self._config.database_path,
            busy_timeout_ms=self._config.index.busy_timeout_ms,
        )
        self._lifecycle = IndexLifecycleManager(
            db_path=self._config.database_path,
            index_path=self._config.index_path,
            dimension=self._config.index.dimension,
            record_source=self._records,
            busy_timeout_ms=self._config.index.busy_timeout_ms,
        )
        self._fetcher = entity_fetcher if entity_fetcher is not None else EntityFetcherRegistry()
        self._engine = RetrievalEngine(
            lifecycle=self._lifecycle,
            records=self._records,
            embedder=self._embedder,
            fetcher=self._fetcher,
            projects=project_lookup if project_lookup is not None else self._records,
            config=self._config.search,
            error_log_dir=self._store_path,
        )
        self._indexer = EntityIndexer(
            records=self._records,
            lifecycle=self._lifecycle,
            embedder=self._embedder,
            chunking=self._config.chunking,
        )

        state = self._lifecycle.ensure_index_ready()
        logger.debug("Opened context index at %s (index %s)", self._store_path, state.value)

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def fetcher(self) -> EntityFetcher:
        return self._fetcher

    @property
    def index_state(self) -> IndexState:
        return self._lifecycle.state

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def index_entity(
        self,
        entity_type: str,
        entity_id: str,
        content: Union[str, Mapping[str, Any]],
        repo_id: str,
        project_id: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> IndexResult:
        """
        Index (or re-index) an entity.

        Args:
            entity_type: One of the business-context entity types
            entity_id: The entity's id in the surrounding application
            content: Raw text, or the entity record to build text from
            repo_id: Owning repository
            project_id: Owning project, None for repo-level context
            category: Optional category carried into search results
            priority: Optional priority carried into search results

        Returns:
            IndexResult; updated is False when the content was unchanged
        """
        return self._indexer.index_entity(
            entity_type, entity_id, content, repo_id,
            project_id=project_id, category=category, priority=priority,
        )

    def remove_entity(self, entity_type: str, entity_id: str) -> int:
        """Remove an entity from the index. Returns the number of chunks removed."""
        return self._indexer.remove_entity(entity_type, entity_id)

    def remove_scope(self, repo_id: Optional[str] = None, project_id: Optional[str] = None) -> int:
        """Remove everything indexed for a repository or project."""
        return self._indexer.remove_scope(repo_id=repo_id, project_id=project_id)

    def register_project(self, project_id: str, repo_id: str, inherits_from_repo: bool = False) -> ProjectScope:
        """Record a project's repository and whether it inherits repo-level context."""
        return self._records.upsert_project(project_id, repo_id, inherits_from_repo)

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    def _options(self, options: Optional[SearchOptions], **overrides) -> SearchOptions:
        if options is None:
            options = SearchOptions(top_k=self._config.search.default_top_k)
        return replace(options, **{k: v for k, v in overrides.items() if v is not None})

    def search(
        self,
        query_vector: list[float],
        options: Optional[SearchOptions] = None,
    ) -> list[ScopedResult]:
        """Vector search without entity data."""
        return self._engine.search(query_vector, options)

    def search_by_text(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        *,
        repo_id: Optional[str] = None,
        project_id: Optional[str] = None,
        entity_types: Optional[list[str]] = None,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> list[EntityWithData]:
        """
        Semantic search by natural-language query.

        Keyword arguments override the matching fields of options.
        """
        options = self._options(
            options,
            repo_id=repo_id, project_id=project_id, entity_types=entity_types,
            top_k=top_k, min_similarity=min_similarity,
        )
        return self._engine.search_by_text(query, options, timeout=timeout)

    def get_related_context(
        self,
        repo_id: str,
        query: str,
        options: Optional[SearchOptions] = None,
        timeout: Optional[float] = None,
    ) -> list[EntityWithData]:
        """Search one repository's context."""
        return self._engine.get_related_context(repo_id, query, options, timeout=timeout)

    def find_similar(
        self,
        entity_id: str,
        entity_type: str,
        options: Optional[SearchOptions] = None,
    ) -> list[EntityWithData]:
        """Entities similar to an indexed one. Raises NotFound if it has no embedding."""
        return self._engine.find_similar(entity_id, entity_type, options)

    def get_entity_embedding(self, entity_type: str, entity_id: str) -> Optional[list[float]]:
        return self._engine.get_entity_embedding(entity_type, entity_id)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def rebuild_index(self) -> int:
        """Rebuild the vector index from the stored records."""
        return self._lifecycle.rebuild_all()

    def verify_index(self) -> IndexHealth:
        return self._lifecycle.verify()

    def stats(self) -> dict[str, Any]:
        stats = self._lifecycle.stats()
        stats["records"] = self._records.count()
        stats["store_path"] = str(self._store_path)
        stats["embedding_model"] = self._embedder.model_name
        return stats

    def close(self) -> None:
        """Close the database and release the ops log handler."""
        engine = getattr(self, "_engine", None)
        if engine is not None:
            engine.close()
        lifecycle = getattr(self, "_lifecycle", None)
        if lifecycle is not None:
            lifecycle.close()
        records = getattr(self, "_records", None)
        if records is not None:
            records.close()
        handler = getattr(self, "_ops_handler", None)
        if handler is not None:
            logging.getLogger("rackindex").removeHandler(handler)
            handler.close()
            self._ops_handler = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False
