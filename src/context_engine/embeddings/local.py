"""Local embedding provider using sentence-transformers."""

import asyncio
import logging
from typing import Any

from context_engine.embeddings.base import EmbeddingProvider

logger = logging.getLogger(__name__)

# Models trained with "query: " / "passage: " prefixes
PREFIXED_MODEL_PATTERNS = ("e5-small", "e5-base", "e5-large", "e5-mistral")


class LocalEmbeddingProvider(EmbeddingProvider):
    """Embeds text in-process with a sentence-transformers model.

    The model is loaded on first use; encoding runs in a worker thread so
    the event loop stays free while other sources are queried.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", normalize: bool = True) -> None:
        self.model_name = model_name
        self.normalize = normalize
        self._model: Any | None = None
        self._dimensions: int | None = None
        lowered = model_name.lower()
        self._uses_prefixes = any(pattern in lowered for pattern in PREFIXED_MODEL_PATTERNS)

    def _prepare(self, text: str, is_query: bool) -> str:
        if not self._uses_prefixes:
            return text
        return ("query: " if is_query else "passage: ") + text

    def _load_model(self) -> Any:
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ImportError(
                    "sentence-transformers is not installed. "
                    'Install with: pip install "context-assembly-engine[local]"'
                ) from e

            logger.info(f"Loading embedding model {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
            self._dimensions = self._model.get_sentence_embedding_dimension()
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        vectors = model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=self.normalize,
            show_progress_bar=False,
        )
        return [vector.tolist() for vector in vectors]

    async def embed(self, text: str, *, is_query: bool = False) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")
        vectors = await asyncio.to_thread(self._encode, [self._prepare(text, is_query)])
        return vectors[0]

    async def embed_batch(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        if not texts:
            return []
        prepared = [self._prepare(t, is_query) for t in texts]
        return await asyncio.to_thread(self._encode, prepared)

    def dimensions(self) -> int:
        """Get embedding vector dimensions.

        Raises:
            RuntimeError: If the model does not report its dimensions
        """
        if self._dimensions is None:
            self._load_model()
        if self._dimensions is None:
            raise RuntimeError(
                f"Failed to determine embedding dimensions for model: {self.model_name}"
            )
        return self._dimensions
