"""
rackindex - local semantic retrieval over business context.

Chunks entity text, embeds it locally, keeps a persistent FAISS index keyed
by small integer rowids alongside durable SQLite records, and answers
scope-aware queries with project-before-repo ranking.

Quick start:
    from rackindex import ContextIndex

    with ContextIndex() as index:
        index.register_project("p1", "repo1", inherits_from_repo=True)
        index.index_entity("business_rule", "r1", {"name": "...", "description": "..."}, "repo1")
        results = index.search_by_text("refund policy", project_id="p1")
"""

from .logging_config import configure_from_env

configure_from_env()

from .api import ContextIndex  # noqa: E402
from .chunking import ChunkingConfig, chunk_text, reconstruct_from_chunks  # noqa: E402
from .errors import (  # noqa: E402
    ConfigurationError,
    EmbeddingFailure,
    EntityFetchFailure,
    IndexCorrupt,
    IndexUnavailable,
    NotFound,
    RackIndexError,
)
from .fetchers import EntityFetcherRegistry  # noqa: E402
from .types import (  # noqa: E402
    EmbeddingRecord,
    EntityWithData,
    IndexHealth,
    IndexResult,
    IndexState,
    ProjectScope,
    ScopedResult,
    SearchOptions,
    TextChunk,
    Tier,
)

__version__ = "0.1.0"

__all__ = [
    "ContextIndex",
    "ChunkingConfig",
    "chunk_text",
    "reconstruct_from_chunks",
    "EntityFetcherRegistry",
    "RackIndexError",
    "ConfigurationError",
    "IndexUnavailable",
    "IndexCorrupt",
    "EmbeddingFailure",
    "EntityFetchFailure",
    "NotFound",
    "EmbeddingRecord",
    "EntityWithData",
    "IndexHealth",
    "IndexResult",
    "IndexState",
    "ProjectScope",
    "ScopedResult",
    "SearchOptions",
    "TextChunk",
    "Tier",
]
