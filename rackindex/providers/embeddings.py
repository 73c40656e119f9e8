"""
Local embedding providers.

Embeddings stay on the machine: the model is downloaded once into the
HuggingFace cache and run in-process.
"""

import logging
import threading
from typing import Optional

from .base import get_registry

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """
    Embedding provider backed by sentence-transformers.

    The model is loaded lazily on first use; loading is guarded so that
    concurrent first calls load it only once.
    """

    def __init__(
        self,
        model: str = "all-MiniLM-L6-v2",
        cache_dir: Optional[str] = None,
        device: Optional[str] = None,
        batch_size: int = 32,
    ):
        self._model_name = model
        self._cache_dir = cache_dir
        self._device = device
        self._batch_size = batch_size
        self._model = None
        self._load_lock = threading.Lock()

    def _get_model(self):
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer
                    logger.debug("Loading embedding model: %s", self._model_name)
                    self._model = SentenceTransformer(
                        self._model_name,
                        cache_folder=self._cache_dir,
                        device=self._device,
                    )
                    logger.debug(
                        "Embedding model loaded (%d dimensions)",
                        self._model.get_sentence_embedding_dimension(),
                    )
        return self._model

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._get_model().get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        vector = self._get_model().encode(
            text,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return vector.tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = self._get_model().encode(
            texts,
            batch_size=self._batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return vectors.tolist()


get_registry().register_embedding("sentence-transformers", SentenceTransformerEmbedding)
