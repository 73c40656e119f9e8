"""
Entity data fetching for search results.

The index only knows entity types and ids; the canonical records live in
the surrounding application. Loaders are registered per entity type.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional

from .types import ENTITY_TYPES

logger = logging.getLogger(__name__)

Loader = Callable[[str], Optional[Mapping[str, Any]]]


class EntityFetcherRegistry:
    """
    Entity fetcher that dispatches on entity type.

    Example:
        fetcher = EntityFetcherRegistry()
        fetcher.register("business_rule", lambda id: db.business_rules.get(id))
    """

    def __init__(self, loaders: Optional[Mapping[str, Loader]] = None):
        self._loaders: dict[str, Loader] = {}
        for entity_type, loader in (loaders or {}).items():
            self.register(entity_type, loader)

    def register(self, entity_type: str, loader: Loader) -> None:
        """Register the loader for one entity type, replacing any previous one."""
        if entity_type not in ENTITY_TYPES:
            logger.debug("Registering loader for non-standard entity type %r", entity_type)
        self._loaders[entity_type] = loader

    def unregister(self, entity_type: str) -> None:
        self._loaders.pop(entity_type, None)

    @property
    def entity_types(self) -> list[str]:
        return sorted(self._loaders)

    def fetch(self, entity_type: str, entity_id: str) -> Optional[Mapping[str, Any]]:
        """Load an entity; None when it is gone or its type has no loader."""
        loader = self._loaders.get(entity_type)
        if loader is None:
            logger.warning("No loader registered for entity type %r", entity_type)
            return None
        if not entity_id:
            logger.warning("Missing entity id for %s", entity_type)
            return None
        return loader(entity_id)
