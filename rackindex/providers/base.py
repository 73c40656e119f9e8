"""
Base provider protocols.

These define the interfaces of the external collaborators: the embedding
model and the entity data fetcher. Using Protocol for structural subtyping -
no explicit inheritance required.
"""

from collections.abc import Mapping
from typing import Any, Optional, Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider instance must be used for both indexing and querying
    to ensure consistent vectors. Output must be deterministic for identical
    input and L2-normalized, so that cosine distance stays within [0, 2].

    Example implementation:
        class SentenceTransformerEmbedding:
            def __init__(self, model: str = "all-MiniLM-L6-v2"):
                from sentence_transformers import SentenceTransformer
                self._model = SentenceTransformer(model)

            @property
            def dimension(self) -> int:
                return self._model.get_sentence_embedding_dimension()

            def embed(self, text: str) -> list[float]:
                return self._model.encode(text, normalize_embeddings=True).tolist()
    """

    @property
    def dimension(self) -> int:
        """
        The dimensionality of the embedding vectors.

        Fixed for the lifetime of one index; the index is created with it.
        """
        ...

    @property
    def model_name(self) -> str:
        """Identifier recorded on every embedding record."""
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Args:
            text: The text to embed

        Returns:
            An L2-normalized list of floats
        """
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per input text
        """
        ...


# -----------------------------------------------------------------------------
# Entity Data
# -----------------------------------------------------------------------------

@runtime_checkable
class EntityFetcher(Protocol):
    """
    Loads the canonical record of a domain entity for presentation.

    Returns None when the entity no longer exists or its type is not
    recognized. May raise; the retrieval engine drops failing results.
    """

    def fetch(self, entity_type: str, entity_id: str) -> Optional[Mapping[str, Any]]:
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating embedding providers.

    Providers are registered by name and instantiated from configuration,
    so the store's TOML file can name the provider rather than code.

    Example:
        registry = ProviderRegistry()
        registry.register_embedding("sentence-transformers", SentenceTransformerEmbedding)

        # Later, from config:
        provider = registry.create_embedding("sentence-transformers", {"model": "all-MiniLM-L6-v2"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load provider modules so they can register themselves."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        # Registration only; heavy model imports happen on instantiation
        from . import embeddings  # noqa: F401

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def create_embedding(self, name: str, params: Optional[dict] = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        self._ensure_providers_loaded()
        if name not in self._embedding_providers:
            available = ", ".join(self._embedding_providers.keys()) or "none"
            raise ValueError(
                f"Unknown embedding provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return self._embedding_providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create embedding provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e

    def list_embedding_providers(self) -> list[str]:
        """List registered embedding provider names."""
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
