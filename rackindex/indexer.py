"""
Entity indexing: text -> chunks -> embeddings -> records -> index.

Re-indexing an entity is delete-then-reinsert; records are never partially
updated. Unchanged content (same SHA-256 of the full text, same scope) is
skipped without touching the embedding model.
"""

import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any, Optional, Union

from .chunking import DEFAULT_CHUNKING_CONFIG, ChunkingConfig, chunk_text
from .errors import ConfigurationError, EmbeddingFailure
from .lifecycle import IndexLifecycleManager
from .protocol import EmbeddingRecordStoreProtocol
from .providers.base import EmbeddingProvider
from .types import EmbeddingRecord, IndexResult, TextChunk, content_hash

logger = logging.getLogger(__name__)

# Long-form types are split into chunks; the rest embed as a single unit
CHUNKED_TYPES = frozenset({"document", "project_context"})


def _as_list(value: Any) -> list[str]:
    """List fields may arrive as lists or as JSON-encoded strings."""
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        if not isinstance(value, list):
            return [str(value)]
    return [str(v) for v in value]


def _required(data: Mapping[str, Any], entity_type: str, *keys: str) -> list[Any]:
    missing = [k for k in keys if data.get(k) is None]
    if missing:
        raise ValueError(f"{entity_type} is missing required field(s): {', '.join(missing)}")
    return [data[k] for k in keys]


def text_for_entity(entity_type: str, data: Mapping[str, Any]) -> str:
    """
    Build the text that represents an entity in the index.

    Raises:
        ValueError: For unknown entity types or missing required fields
    """
    if entity_type == "business_rule":
        name, description = _required(data, entity_type, "name", "description")
        text = f"{name}: {description}"
        if data.get("validation_logic"):
            text += f". Validation: {data['validation_logic']}"
        if examples := _as_list(data.get("examples")):
            text += f". Examples: {', '.join(examples)}"
        if domains := _as_list(data.get("related_domains")):
            text += f". Related domains: {', '.join(domains)}"
        return text

    if entity_type in ("glossary_entry", "glossary"):
        term, definition = _required(data, entity_type, "term", "definition")
        text = f"{term}: {definition}"
        if synonyms := _as_list(data.get("synonyms")):
            text += f". Synonyms: {', '.join(synonyms)}"
        if related := _as_list(data.get("related_terms")):
            text += f". Related: {', '.join(related)}"
        if examples := _as_list(data.get("examples")):
            text += f". Examples: {', '.join(examples)}"
        return text

    if entity_type == "pattern":
        name, description = _required(data, entity_type, "name", "description")
        text = f"{name}: {description}"
        if data.get("when_to_use"):
            text += f". When to use: {data['when_to_use']}"
        if benefits := _as_list(data.get("benefits")):
            text += f". Benefits: {', '.join(benefits)}"
        if data.get("example"):
            text += f". Example: {data['example']}"
        return text

    if entity_type == "convention":
        category, rule = _required(data, entity_type, "category", "rule")
        return f"{category}: {rule}"

    if entity_type in ("document", "project_context"):
        (content,) = _required(data, entity_type, "content")
        title = data.get("title")
        return f"{title}\n\n{content}" if title else str(content)

    if entity_type == "task":
        (title,) = _required(data, entity_type, "title")
        parts = [f"Task: {title}"]
        if data.get("description"):
            parts.append(f"Description: {data['description']}")
        if data.get("type"):
            parts.append(f"Type: {data['type']}")
        if data.get("priority"):
            parts.append(f"Priority: {data['priority']}")
        if objectives := _as_list(data.get("objectives")):
            parts.append(f"Objectives: {'; '.join(objectives)}")
        if criteria := _as_list(data.get("validation_criteria")):
            parts.append(f"Validation: {'; '.join(criteria)}")
        if tags := _as_list(data.get("tags")):
            parts.append(f"Tags: {', '.join(tags)}")
        return ". ".join(parts)

    raise ValueError(f"Unknown entity type: {entity_type}")


class EntityIndexer:
    """Writes entities into the record store and the vector index."""

    def __init__(
        self,
        records: EmbeddingRecordStoreProtocol,
        lifecycle: IndexLifecycleManager,
        embedder: EmbeddingProvider,
        chunking: ChunkingConfig = DEFAULT_CHUNKING_CONFIG,
    ):
        self._records = records
        self._lifecycle = lifecycle
        self._embedder = embedder
        self._chunking = chunking.validate()

    def _chunks_for(self, entity_type: str, text: str) -> list[TextChunk]:
        if entity_type in CHUNKED_TYPES:
            return chunk_text(text, self._chunking)
        return [TextChunk(text=text, index=0, total_chunks=1, start_offset=0, end_offset=len(text))]

    def _embed(self, chunks: list[TextChunk]) -> list[list[float]]:
        try:
            vectors = self._embedder.embed_batch([c.text for c in chunks])
        except Exception as e:
            raise EmbeddingFailure(f"Embedding failed: {e}") from e
        if len(vectors) != len(chunks):
            raise EmbeddingFailure(
                f"Embedding provider returned {len(vectors)} vectors for {len(chunks)} chunks"
            )
        for vector in vectors:
            if len(vector) != self._lifecycle.dimension:
                raise ConfigurationError(
                    f"Embedding model returned {len(vector)} dimensions, "
                    f"index expects {self._lifecycle.dimension}"
                )
        return vectors

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
        Index an entity from raw text or from its structured record.

        Nothing is deleted until every chunk has been embedded, so an
        EmbeddingFailure leaves the previous records and index intact.
        """
        if isinstance(content, str):
            text = content
        else:
            text = text_for_entity(entity_type, content)
            category = category if category is not None else content.get("category")
            priority = priority if priority is not None else content.get("priority")

        digest = content_hash(text)
        existing = self._records.find_by_entity(entity_type, entity_id)
        if existing:
            first = existing[0]
            if (
                first.content_hash == digest
                and first.repo_id == repo_id
                and first.project_id == project_id
                and first.category == category
                and first.priority == priority
            ):
                logger.debug("Content unchanged for %s:%s, skipping", entity_type, entity_id)
                return IndexResult(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    updated=False,
                    chunks=len(existing),
                    embedding_ids=[r.id for r in existing],
                )

        chunks = self._chunks_for(entity_type, text)
        vectors = self._embed(chunks) if chunks else []

        removed_ids = self._records.delete_by_entity(entity_type, entity_id)
        if removed_ids:
            self._lifecycle.remove_many(removed_ids)

        records = [
            EmbeddingRecord(
                id=str(uuid.uuid4()),
                entity_type=entity_type,
                entity_id=entity_id,
                repo_id=repo_id,
                project_id=project_id,
                vector=list(vector),
                category=category,
                priority=priority,
                chunk_index=chunk.index,
                total_chunks=chunk.total_chunks,
                chunk_start_offset=chunk.start_offset,
                chunk_end_offset=chunk.end_offset,
                embedding_model=self._embedder.model_name,
                dimension=len(vector),
                content_hash=digest,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        if records:
            self._records.create_batch(records)
            self._lifecycle.insert_many((r.id, r.vector) for r in records)

        logger.info(
            "Indexed %s:%s (%d chunks, replaced %d)",
            entity_type, entity_id, len(records), len(removed_ids),
        )
        return IndexResult(
            entity_type=entity_type,
            entity_id=entity_id,
            updated=True,
            chunks=len(records),
            removed=len(removed_ids),
            embedding_ids=[r.id for r in records],
        )

    def remove_entity(self, entity_type: str, entity_id: str) -> int:
        """Delete an entity's records and index entries; returns how many records."""
        removed_ids = self._records.delete_by_entity(entity_type, entity_id)
        if removed_ids:
            self._lifecycle.remove_many(removed_ids)
            logger.info("Removed %s:%s (%d chunks)", entity_type, entity_id, len(removed_ids))
        return len(removed_ids)

    def remove_scope(self, repo_id: Optional[str] = None, project_id: Optional[str] = None) -> int:
        """Delete every record of a repository and/or project."""
        removed_ids = self._records.delete_by_scope(repo_id=repo_id, project_id=project_id)
        if removed_ids:
            self._lifecycle.remove_many(removed_ids)
        logger.info(
            "Removed %d records for repo=%s project=%s", len(removed_ids), repo_id, project_id,
        )
        return len(removed_ids)
