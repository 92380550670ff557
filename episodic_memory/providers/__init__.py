"""Provider interfaces and implementations."""

from .base import EmbeddingProvider, ProviderRegistry, exchange_embedding_text, get_registry

__all__ = [
    "EmbeddingProvider",
    "ProviderRegistry",
    "exchange_embedding_text",
    "get_registry",
]
