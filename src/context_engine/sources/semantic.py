"""Semantic memory source over an in-process vector index."""

import asyncio
import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np

from context_engine.embeddings.base import EmbeddingProvider
from context_engine.models.candidate import ContextSource
from context_engine.models.request import RawRecord
from context_engine.sources.base import SourceAdapter
from context_engine.utils.similarity import cosine_similarity

logger = logging.getLogger(__name__)


@dataclass
class SemanticEntry:
    """One fact stored in the semantic index."""

    id: str
    content: str
    importance: float = 0.5
    agent_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


class SemanticMemorySource(SourceAdapter):
    """Top-k cosine retrieval over embedded facts.

    Vectors are held in a row-normalized float32 matrix; entries scoped to
    an agent are only returned for that agent, unscoped entries for all.
    """

    source = ContextSource.SEMANTIC

    def __init__(
        self,
        provider: EmbeddingProvider,
        min_similarity: float = 0.3,
        name: str | None = None,
    ) -> None:
        super().__init__(name)
        if not 0.0 <= min_similarity <= 1.0:
            raise ValueError("min_similarity must be between 0.0 and 1.0")
        self.provider = provider
        self.min_similarity = min_similarity
        self._entries: list[SemanticEntry] = []
        self._matrix: np.ndarray | None = None
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def add(
        self,
        contents: Sequence[str],
        *,
        agent_id: str | None = None,
        importance: float = 0.5,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> list[str]:
        """Embed and index facts.

        Args:
            contents: Fact texts
            agent_id: Restrict the facts to one agent (None = shared)
            importance: Importance in [0, 1] for every fact
            metadata: Metadata copied onto every fact
            created_at: Fact time (defaults to now, UTC)

        Returns:
            Ids of the indexed facts

        Raises:
            ValueError: If the provider returns the wrong number of vectors
        """
        if not contents:
            return []
        vectors = await self.provider.embed_batch(list(contents))
        if len(vectors) != len(contents):
            raise ValueError(
                f"Embedding provider returned {len(vectors)} vectors for {len(contents)} texts"
            )

        created_at = created_at or datetime.now(timezone.utc)
        entries = [
            SemanticEntry(
                id=str(uuid.uuid4()),
                content=content,
                importance=importance,
                agent_id=agent_id,
                created_at=created_at,
                metadata=dict(metadata or {}),
            )
            for content in contents
        ]
        block = np.asarray(vectors, dtype=np.float32)

        async with self._lock:
            if self._matrix is None:
                self._matrix = block
            else:
                self._matrix = np.vstack([self._matrix, block])
            self._entries.extend(entries)
        return [entry.id for entry in entries]

    async def query(
        self, text: str, filters: Mapping[str, Any], limit: int
    ) -> list[RawRecord]:
        if self._matrix is None or not text.strip():
            return []

        query_vector = np.asarray(await self.provider.embed(text, is_query=True), dtype=np.float32)
        entries = self._entries
        similarities = cosine_similarity(query_vector, self._matrix[: len(entries)])

        agent_id = filters.get("agent_id")
        ranked = sorted(range(len(entries)), key=lambda i: (-float(similarities[i]), i))

        records: list[RawRecord] = []
        for index in ranked:
            similarity = float(similarities[index])
            if similarity < self.min_similarity:
                break
            entry = entries[index]
            if entry.agent_id is not None and entry.agent_id != agent_id:
                continue
            records.append(
                RawRecord(
                    id=f"semantic:{entry.id}",
                    content=entry.content,
                    timestamp=entry.created_at,
                    importance=entry.importance,
                    similarity=min(similarity, 1.0),
                    metadata=dict(entry.metadata),
                )
            )
            if len(records) >= limit:
                break
        return records
