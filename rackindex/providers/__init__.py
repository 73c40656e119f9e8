"""Provider interfaces and local implementations."""

from .base import EmbeddingProvider, EntityFetcher, ProviderRegistry, get_registry

__all__ = ["EmbeddingProvider", "EntityFetcher", "ProviderRegistry", "get_registry"]
