"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from typing import Any, Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider (and model version) must be used for indexing and
    querying; stored exchange vectors are compared directly against the
    query vector.

    Example implementation:
        class SentenceTransformerEmbedding:
            def __init__(self, model: str = "all-MiniLM-L6-v2"):
                from sentence_transformers import SentenceTransformer
                self._model = SentenceTransformer(model)

            @property
            def dimension(self) -> int:
                return self._model.get_sentence_embedding_dimension()

            def embed(self, text: str) -> list[float]:
                return self._model.encode(text).tolist()

            def embed_batch(self, texts: list[str]) -> list[list[float]]:
                return self._model.encode(texts).tolist()
    """

    @property
    def dimension(self) -> int:
        """
        The dimensionality of the embedding vectors.

        Must match the ``vec_exchanges`` index (384).
        """
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
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


def exchange_embedding_text(user_message: str, assistant_message: str) -> str:
    """Text embedded for an exchange at index time."""
    return f"User: {user_message}\n\nAssistant: {assistant_message}"


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and instantiated from configuration,
    so the TOML config can select a provider without code changes.

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
        """Import provider modules so they register themselves."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        from . import embeddings  # noqa: F401

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def create_embedding(self, name: str, params: dict[str, Any] | None = None) -> EmbeddingProvider:
        """
        Instantiate an embedding provider by name.

        Raises:
            ValueError: If no provider is registered under ``name``
        """
        self._ensure_providers_loaded()
        if name not in self._embedding_providers:
            available = ", ".join(sorted(self._embedding_providers)) or "none"
            raise ValueError(f"Unknown embedding provider: {name!r} (available: {available})")
        return self._embedding_providers[name](**(params or {}))

    def list_embedding_providers(self) -> list[str]:
        """Names of registered embedding providers."""
        self._ensure_providers_loaded()
        return sorted(self._embedding_providers)


_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
