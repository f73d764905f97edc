"""Abstract base class for embedding providers."""

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Turns text into dense vectors for the semantic memory tier."""

    @abstractmethod
    async def embed(self, text: str, *, is_query: bool = False) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Input text
            is_query: True for search queries, False for stored passages

        Returns:
            Embedding vector
        """

    @abstractmethod
    async def embed_batch(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts.

        Args:
            texts: List of input texts
            is_query: True for search queries, False for stored passages

        Returns:
            List of embedding vectors, in input order
        """

    @abstractmethod
    def dimensions(self) -> int:
        """Number of dimensions of produced vectors."""
