"""Pytest configuration and fixtures for context engine tests."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from context_engine.config.settings import Settings
from context_engine.db.episode_store import EpisodeStore
from context_engine.embeddings.base import EmbeddingProvider
from context_engine.models.candidate import (
    ContextCandidate,
    ContextPriority,
    ContextSource,
    RelevanceScore,
)
from context_engine.models.request import (
    ConversationContext,
    ConversationMessage,
    RawRecord,
)
from context_engine.sources.base import SourceAdapter
from context_engine.utils.token_counter import TokenCounter

EMBEDDING_DIMENSIONS = 32


def words_text(tokens: int, seed: int = 0, separator: str = " ") -> str:
    """Text of exactly ``tokens`` estimated tokens (with a single-space separator).

    Words are three letters long and vary with ``seed``; the text ends
    with a period so it is one sentence.
    """
    words = [
        chr(97 + (i * 7 + seed) % 26) + chr(97 + (i * 3 + seed * 5) % 26) + chr(97 + seed % 26)
        for i in range(tokens)
    ]
    return separator.join(words) + "."


def keyword_vector(text: str) -> list[float]:
    """Deterministic bag-of-words embedding for tests."""
    vector = [0.0] * EMBEDDING_DIMENSIONS
    for word in text.lower().split():
        word = word.strip(".,!?;:")
        if word:
            vector[sum(ord(c) for c in word) % EMBEDDING_DIMENSIONS] += 1.0
    return vector


@pytest.fixture
def test_settings() -> Settings:
    """Test configuration settings."""
    return Settings(
        _env_file=None,
        token_counter="estimate",
        telemetry_enabled=False,
        source_timeout_seconds=1.0,
        cache_max_entries=64,
        cache_shards=4,
        log_level="DEBUG",
    )


@pytest.fixture
def token_counter() -> TokenCounter:
    """Estimator-backed token counter (no tokenizer download)."""
    return TokenCounter(backend="estimate")


@pytest.fixture
def make_text() -> Callable[..., str]:
    """Factory for text of a known estimated token count."""
    return words_text


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def conversation() -> ConversationContext:
    """Conversation with five recent turns."""
    base = datetime.now(timezone.utc) - timedelta(minutes=10)
    messages = [
        ConversationMessage(
            role="user" if i % 2 == 0 else "assistant",
            content=f"turn {i} about deployment pipelines",
            timestamp=base + timedelta(minutes=i),
        )
        for i in range(1, 6)
    ]
    return ConversationContext(
        conversation_id="conv-1",
        agent_id="agent-1",
        recent_messages=messages,
    )


@pytest.fixture
def make_candidate(now: datetime) -> Callable[..., ContextCandidate]:
    """Factory for candidates with explicit scores."""

    def _make(
        candidate_id: str,
        tokens: int,
        priority: ContextPriority = ContextPriority.MEDIUM,
        source: ContextSource = ContextSource.EPISODIC,
        composite: float = 0.5,
        temporal: float = 0.5,
        content: str | None = None,
        seed: int = 0,
        **metadata: Any,
    ) -> ContextCandidate:
        return ContextCandidate(
            id=candidate_id,
            source=source,
            content=content if content is not None else words_text(tokens, seed),
            token_estimate=tokens,
            priority=priority,
            relevance=RelevanceScore(
                semantic_similarity=composite,
                temporal_relevance=temporal,
                frequency_importance=composite,
                contextual_fit=composite,
                user_preference=composite,
                composite=composite,
            ),
            created_at=now,
            metadata=metadata,
        )

    return _make


@pytest.fixture
def make_record(now: datetime) -> Callable[..., RawRecord]:
    """Factory for raw records."""

    def _make(content: Any, **kwargs: Any) -> RawRecord:
        kwargs.setdefault("timestamp", now)
        return RawRecord(content=content, **kwargs)

    return _make


@pytest.fixture
def make_adapter() -> Callable[..., SourceAdapter]:
    """Factory for adapter doubles built on AsyncMock.

    Args accepted by the factory:
        source: Source the adapter serves
        records: Records returned by every query
        name: Adapter name (defaults to the source value)
        delay: Seconds to sleep before answering
        error: Exception raised instead of answering
        cancelled: List that receives True if the query is cancelled
    """

    def _make(
        source: ContextSource,
        records: list[RawRecord] | None = None,
        *,
        name: str | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
        cancelled: list[bool] | None = None,
    ) -> SourceAdapter:
        adapter = AsyncMock(spec=SourceAdapter)
        adapter.source = source
        adapter.name = name or source.value

        async def query_side_effect(text: str, filters: Any, limit: int) -> list[RawRecord]:
            try:
                if delay:
                    await asyncio.sleep(delay)
            except asyncio.CancelledError:
                if cancelled is not None:
                    cancelled.append(True)
                raise
            if error is not None:
                raise error
            return list(records or [])[:limit]

        adapter.query.side_effect = query_side_effect
        return adapter

    return _make


@pytest.fixture
def mock_embedding_provider() -> EmbeddingProvider:
    """Mock embedding provider for fast tests."""
    mock = AsyncMock(spec=EmbeddingProvider)

    async def embed_side_effect(text: str, *, is_query: bool = False) -> list[float]:
        return keyword_vector(text)

    async def embed_batch_side_effect(
        texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        return [keyword_vector(t) for t in texts]

    mock.embed.side_effect = embed_side_effect
    mock.embed_batch.side_effect = embed_batch_side_effect
    mock.dimensions.return_value = EMBEDDING_DIMENSIONS
    return mock


@pytest_asyncio.fixture
async def episode_store() -> AsyncIterator[EpisodeStore]:
    """In-memory episode store."""
    store = EpisodeStore(database_path=":memory:")
    await store.connect()
    await store.migrate()

    yield store

    await store.close()
