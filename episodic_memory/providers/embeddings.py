"""
Local embedding providers.
"""

import logging
import threading

from .base import get_registry

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """
    Embeddings from a local sentence-transformers model.

    The model is loaded on first use so read-only operations that never
    embed (text search, formatting) don't pay the load cost.
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", normalize: bool = True):
        self.model_name = model
        self._normalize = normalize
        self._model = None
        self._load_lock = threading.Lock()

    def _get_model(self):
        # Concept searches embed from worker threads
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer
                logger.debug("Loading embedding model %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        return self._get_model().get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        vector = self._get_model().encode(text, normalize_embeddings=self._normalize)
        return vector.tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = self._get_model().encode(texts, normalize_embeddings=self._normalize)
        return vectors.tolist()


get_registry().register_embedding("sentence-transformers", SentenceTransformerEmbedding)
