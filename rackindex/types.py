"""
Data types for the context index.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional


# Entity types produced by the surrounding application
ENTITY_TYPES = frozenset({
    "business_rule",
    "glossary_entry",
    "pattern",
    "convention",
    "document",
    "project_context",
    "task",
})


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.ffffff.

    Microseconds are kept so that creation order is stable for records
    written within the same second (rebuilds replay in this order).
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


def content_hash(text: str) -> str:
    """SHA-256 hex digest of text, used to skip re-embedding unchanged content."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def similarity_from_distance(distance: float) -> float:
    """Convert cosine distance in [0, 2] to similarity in [0, 1]."""
    return 1.0 - distance / 2.0


class Tier(IntEnum):
    """Ranking tier; lower sorts first."""
    PROJECT_SPECIFIC = 0
    REPO_LEVEL = 1


class IndexState(Enum):
    """
    Lifecycle state of the vector index.

    The only automatic transition is READY/UNAVAILABLE -> REBUILDING on a
    read failure, followed by REBUILDING -> READY on success or
    REBUILDING -> UNAVAILABLE when the rebuild itself fails.
    """
    READY = "ready"
    REBUILDING = "rebuilding"
    UNAVAILABLE = "unavailable"


@dataclass
class TextChunk:
    """
    A bounded slice of a source document.

    Offsets are best-effort positions in the original text; once overlap
    text is re-prefixed they are approximate.
    """
    text: str
    index: int
    total_chunks: int
    start_offset: int
    end_offset: int


@dataclass
class EmbeddingRecord:
    """
    A durable embedding of one chunk of one entity.

    Unique on (entity_type, entity_id, chunk_index). Records are never
    partially updated: re-embedding deletes and recreates them.
    """
    id: str
    entity_type: str
    entity_id: str
    repo_id: str
    vector: list[float]
    project_id: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    chunk_index: int = 0
    total_chunks: int = 1
    chunk_start_offset: int = 0
    chunk_end_offset: int = 0
    embedding_model: str = ""
    dimension: int = 0
    content_hash: str = ""
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class IndexEntry:
    """One rowid map entry: dense index key <-> embedding identifier."""
    rowid: int
    embedding_id: str


@dataclass(frozen=True)
class ProjectScope:
    """How a project relates to its repository for retrieval scoping."""
    project_id: str
    repo_id: str
    inherits_from_repo: bool = False


@dataclass
class SearchOptions:
    """Filters and limits for a vector search."""
    repo_id: Optional[str] = None
    project_id: Optional[str] = None
    entity_types: Optional[list[str]] = None
    top_k: int = 10
    min_similarity: float = 0.0


@dataclass
class ScopedResult:
    """A candidate that survived scope filtering, with its similarity."""
    embedding_id: str
    entity_type: str
    entity_id: str
    distance: float
    similarity: float
    repo_id: str
    project_id: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    chunk_index: int = 0
    total_chunks: int = 1
    chunk_start_offset: int = 0
    chunk_end_offset: int = 0
    tier: Tier = Tier.REPO_LEVEL


@dataclass
class EntityWithData:
    """A search result joined with the entity's canonical record."""
    result: ScopedResult
    data: dict[str, Any]

    @property
    def entity_type(self) -> str:
        return self.result.entity_type

    @property
    def entity_id(self) -> str:
        return self.result.entity_id

    @property
    def similarity(self) -> float:
        return self.result.similarity


@dataclass
class IndexHealth:
    """Outcome of a bijection check between index, rowid map and records."""
    index_rowids: int = 0
    map_entries: int = 0
    records: int = 0
    orphaned_rowids: list[int] = field(default_factory=list)
    missing_vector_rowids: list[int] = field(default_factory=list)
    stale_map_ids: list[str] = field(default_factory=list)
    unindexed_record_ids: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not (
            self.orphaned_rowids
            or self.missing_vector_rowids
            or self.stale_map_ids
            or self.unindexed_record_ids
        )


@dataclass
class IndexResult:
    """Outcome of indexing one entity."""
    entity_type: str
    entity_id: str
    updated: bool
    chunks: int = 0
    removed: int = 0
    embedding_ids: list[str] = field(default_factory=list)
