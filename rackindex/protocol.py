"""
Protocol definitions for the context index storage backends.

Defines interface contracts for:
- EmbeddingRecordStoreProtocol: durable embedding records (source of truth)
- RecordSource: the narrow read view the lifecycle manager rebuilds from
- ProjectLookup: project -> repository relationship for inheritance
"""

from collections.abc import Iterable, Iterator
from typing import Optional, Protocol, runtime_checkable

from .types import EmbeddingRecord, ProjectScope


@runtime_checkable
class RecordSource(Protocol):
    """
    Everything the index can be rebuilt from.

    Implemented by:
    - EmbeddingStore (local SQLite)
    """

    def iter_vectors(self) -> Iterator[tuple[str, list[float]]]: ...

    def list_ids(self) -> list[str]: ...

    def count(self) -> int: ...


@runtime_checkable
class EmbeddingRecordStoreProtocol(RecordSource, Protocol):
    """
    Abstract embedding record backend.

    Implemented by:
    - EmbeddingStore (local SQLite)
    """

    # -- Write --

    def create(self, record: EmbeddingRecord) -> EmbeddingRecord: ...

    def create_batch(self, records: list[EmbeddingRecord]) -> list[EmbeddingRecord]: ...

    def delete(self, id: str) -> bool: ...

    def delete_by_entity(self, entity_type: str, entity_id: str) -> list[str]: ...

    def delete_by_scope(
        self,
        repo_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> list[str]: ...

    # -- Read --

    def get(self, id: str) -> Optional[EmbeddingRecord]: ...

    def get_by_key(
        self, entity_type: str, entity_id: str, chunk_index: int = 0
    ) -> Optional[EmbeddingRecord]: ...

    def get_many(self, ids: Iterable[str]) -> dict[str, EmbeddingRecord]: ...

    def find_by_entity(self, entity_type: str, entity_id: str) -> list[EmbeddingRecord]: ...

    def find_all(self) -> list[EmbeddingRecord]: ...

    def close(self) -> None: ...


@runtime_checkable
class ProjectLookup(Protocol):
    """
    Resolves a project's repository and inheritance policy.

    Implemented by:
    - EmbeddingStore (local `projects` table)
    - Any adapter over the surrounding application's project records
    """

    def get_project(self, project_id: str) -> Optional[ProjectScope]: ...
