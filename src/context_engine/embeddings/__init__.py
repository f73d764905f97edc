"""Embedding providers for the semantic memory tier."""

from context_engine.embeddings.base import EmbeddingProvider
from context_engine.embeddings.local import LocalEmbeddingProvider

__all__ = ["EmbeddingProvider", "LocalEmbeddingProvider"]
