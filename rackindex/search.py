"""
Scope-aware semantic retrieval.

Queries go: embed -> k-NN through the lifecycle manager -> rowid
resolution -> join with embedding records -> scope filtering -> two-tier
ranking -> truncation -> entity data fetch.
"""

import concurrent.futures
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .config import SearchConfig
from .errors import (
    ConfigurationError,
    EmbeddingFailure,
    EntityFetchFailure,
    IndexCorrupt,
    NotFound,
    log_exception,
)
from .lifecycle import IndexLifecycleManager
from .protocol import EmbeddingRecordStoreProtocol, ProjectLookup
from .providers.base import EmbeddingProvider, EntityFetcher
from .types import (
    EmbeddingRecord,
    EntityWithData,
    ScopedResult,
    SearchOptions,
    Tier,
    similarity_from_distance,
)

logger = logging.getLogger(__name__)


def _in_scope(
    record: EmbeddingRecord,
    repo_id: Optional[str],
    project_id: Optional[str],
    inheriting: bool,
) -> bool:
    if repo_id is not None and record.repo_id != repo_id:
        return False
    if project_id is None:
        return True
    if inheriting:
        return record.project_id == project_id or record.project_id is None
    return record.project_id == project_id


class RetrievalEngine:
    """
    Answers similarity queries against the index with scope and inheritance.

    Read-only apart from the implicit rebuild the lifecycle manager may run.
    """

    def __init__(
        self,
        lifecycle: IndexLifecycleManager,
        records: EmbeddingRecordStoreProtocol,
        embedder: EmbeddingProvider,
        fetcher: Optional[EntityFetcher] = None,
        projects: Optional[ProjectLookup] = None,
        config: Optional[SearchConfig] = None,
        error_log_dir: Optional[Path] = None,
    ):
        self._lifecycle = lifecycle
        self._records = records
        self._embedder = embedder
        self._fetcher = fetcher
        self._projects = projects
        self._config = config or SearchConfig()
        self._error_log_dir = error_log_dir
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    # -------------------------------------------------------------------------
    # Embedding
    # -------------------------------------------------------------------------

    def _embed(self, text: str, timeout: Optional[float] = None) -> list[float]:
        """
        Embed query text, bounded by a timeout.

        Raises:
            EmbeddingFailure: On provider error or timeout. Never retried.
            ConfigurationError: If the model's dimension differs from the index
        """
        timeout = timeout if timeout is not None else self._config.embed_timeout
        if timeout is None:
            try:
                vector = self._embedder.embed(text)
            except Exception as e:
                raise EmbeddingFailure(f"Embedding failed: {e}") from e
            return self._check_dimension(vector)

        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="rackindex-embed"
            )
        future = self._executor.submit(self._embedder.embed, text)
        try:
            vector = future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise EmbeddingFailure(f"Embedding timed out after {timeout}s") from e
        except Exception as e:
            raise EmbeddingFailure(f"Embedding failed: {e}") from e
        return self._check_dimension(vector)

    def _check_dimension(self, vector: list[float]) -> list[float]:
        if len(vector) != self._lifecycle.dimension:
            raise ConfigurationError(
                f"Embedding model returned {len(vector)} dimensions, "
                f"index expects {self._lifecycle.dimension}"
            )
        return vector

    # -------------------------------------------------------------------------
    # Vector search
    # -------------------------------------------------------------------------

    def search(self, query_vector: list[float], options: Optional[SearchOptions] = None) -> list[ScopedResult]:
        """
        Ranked, scope-filtered neighbours of query_vector.

        When the project inherits repository context, project-specific
        results rank strictly before repo-level ones; within a tier results
        sort by similarity, ties keeping first-seen order.
        """
        options = options or SearchOptions(top_k=self._config.default_top_k)
        top_k = options.top_k
        if top_k <= 0:
            return []
        min_similarity = max(0.0, options.min_similarity)

        repo_id = options.repo_id
        project_id = options.project_id
        inheriting = False
        if project_id is not None and self._projects is not None:
            project = self._projects.get_project(project_id)
            if project is not None and project.inherits_from_repo:
                inheriting = True
                repo_id = project.repo_id

        factor = self._config.inherit_overfetch if inheriting else self._config.overfetch
        try:
            hits = self._lifecycle.query(query_vector, top_k * factor)
        except IndexCorrupt as e:
            log_exception(e, "vector search", self._error_log_dir)
            raise
        if not hits:
            return []

        mapping = self._lifecycle.resolve(rowid for rowid, _ in hits)
        records = self._records.get_many(mapping.values())
        entity_types = set(options.entity_types) if options.entity_types else None

        candidates: list[ScopedResult] = []
        stale = 0
        for rowid, distance in hits:
            embedding_id = mapping.get(rowid)
            record = records.get(embedding_id) if embedding_id is not None else None
            if record is None:
                stale += 1
                continue
            if not _in_scope(record, repo_id, project_id, inheriting):
                continue
            if entity_types is not None and record.entity_type not in entity_types:
                continue
            similarity = similarity_from_distance(distance)
            if similarity < min_similarity:
                continue
            tier = (
                Tier.PROJECT_SPECIFIC
                if project_id is not None and record.project_id == project_id
                else Tier.REPO_LEVEL
            )
            candidates.append(ScopedResult(
                embedding_id=record.id,
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                distance=distance,
                similarity=similarity,
                repo_id=record.repo_id,
                project_id=record.project_id,
                category=record.category,
                priority=record.priority,
                chunk_index=record.chunk_index,
                total_chunks=record.total_chunks,
                chunk_start_offset=record.chunk_start_offset,
                chunk_end_offset=record.chunk_end_offset,
                tier=tier,
            ))

        if stale:
            logger.debug("Dropped %d stale index entries", stale)

        # Tiers only differ when inheriting; otherwise every candidate shares one
        ranked = sorted(
            enumerate(candidates),
            key=lambda seen: (seen[1].tier, -seen[1].similarity, seen[0]),
        )
        results = [result for _, result in ranked[:top_k]]

        logger.debug(
            "Vector search: %d hits, %d in scope, %d returned (repo=%s project=%s inherited=%s)",
            len(hits), len(candidates), len(results), repo_id, project_id, inheriting,
        )
        return results

    # -------------------------------------------------------------------------
    # Text queries
    # -------------------------------------------------------------------------

    def search_by_text(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        timeout: Optional[float] = None,
    ) -> list[EntityWithData]:
        """Embed query, search, and join each result with its entity data."""
        vector = self._embed(query, timeout)
        return self.fetch_entity_data(self.search(vector, options))

    def get_related_context(
        self,
        repo_id: str,
        query: str,
        options: Optional[SearchOptions] = None,
        timeout: Optional[float] = None,
    ) -> list[EntityWithData]:
        """search_by_text restricted to one repository."""
        options = options or SearchOptions(top_k=self._config.default_top_k)
        return self.search_by_text(query, replace(options, repo_id=repo_id), timeout)

    def get_entity_embedding(self, entity_type: str, entity_id: str) -> Optional[list[float]]:
        """Vector of an entity's first chunk, or None if it was never embedded."""
        record = self._records.get_by_key(entity_type, entity_id, 0)
        return record.vector if record is not None else None

    def find_similar(
        self,
        entity_id: str,
        entity_type: str,
        options: Optional[SearchOptions] = None,
    ) -> list[EntityWithData]:
        """
        Entities similar to an already-indexed one, excluding itself.

        Raises:
            NotFound: If the entity has no embedding
        """
        vector = self.get_entity_embedding(entity_type, entity_id)
        if vector is None:
            raise NotFound(f"Embedding not found for {entity_type}:{entity_id}")
        options = options or SearchOptions(top_k=self._config.default_top_k)
        top_k = options.top_k
        if top_k <= 0:
            return []
        results = self.search(vector, replace(options, top_k=top_k + 1))
        filtered = [r for r in results if r.entity_id != entity_id][:top_k]
        return self.fetch_entity_data(filtered)

    def fetch_entity_data(self, results: list[ScopedResult]) -> list[EntityWithData]:
        """
        Join results with their entity records.

        Results whose entity is gone or whose fetch fails are dropped.
        """
        if self._fetcher is None:
            logger.warning("No entity fetcher configured; dropping %d results", len(results))
            return []
        joined = []
        for result in results:
            try:
                data = self._fetcher.fetch(result.entity_type, result.entity_id)
            except Exception as e:
                failure = EntityFetchFailure(result.entity_type, result.entity_id, str(e))
                logger.warning("Dropping result: %s", failure)
                continue
            if data is None:
                logger.debug("Entity %s:%s not found, dropping result", result.entity_type, result.entity_id)
                continue
            joined.append(EntityWithData(result=result, data=dict(data)))
        return joined

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
