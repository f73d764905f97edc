"""Episodic memory source backed by the SQLite episode store."""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from context_engine.db.episode_store import EpisodeStore
from context_engine.models.candidate import ContextSource
from context_engine.models.request import RawRecord
from context_engine.sources.base import SourceAdapter
from context_engine.utils.similarity import content_words

logger = logging.getLogger(__name__)


class EpisodicMemorySource(SourceAdapter):
    """Time-windowed retrieval over an agent's episodes.

    Only episodes created within ``window_hours`` are considered; when
    ``keyword_prefilter`` is set, episodes must also share a keyword with
    the query. Every returned episode has its access recorded.
    """

    source = ContextSource.EPISODIC

    def __init__(
        self,
        store: EpisodeStore,
        window_hours: float = 168.0,
        keyword_prefilter: bool = True,
        max_keywords: int = 8,
        name: str | None = None,
    ) -> None:
        super().__init__(name)
        if window_hours <= 0:
            raise ValueError("window_hours must be positive")
        self.store = store
        self.window_hours = window_hours
        self.keyword_prefilter = keyword_prefilter
        self.max_keywords = max_keywords

    def _keywords(self, text: str) -> list[str]:
        keywords: list[str] = []
        for word in content_words(text):
            if word not in keywords:
                keywords.append(word)
            if len(keywords) >= self.max_keywords:
                break
        return keywords

    async def query(
        self, text: str, filters: Mapping[str, Any], limit: int
    ) -> list[RawRecord]:
        agent_id = filters.get("agent_id")
        if not agent_id:
            return []

        since = datetime.now(timezone.utc) - timedelta(hours=self.window_hours)
        keywords = self._keywords(text) if self.keyword_prefilter else []
        rows = await self.store.search(agent_id, since=since, keywords=keywords, limit=limit)
        if not rows:
            return []

        await self.store.touch([row["id"] for row in rows])
        logger.debug(f"Episodic source returned {len(rows)} episodes for agent {agent_id}")

        return [
            RawRecord(
                id=f"episodic:{row['id']}",
                content=row["content"],
                timestamp=row["created_at"],
                importance=row["importance"],
                access_count=row["access_count"],
                last_accessed_at=row["last_accessed_at"],
                metadata={
                    **row["metadata"],
                    "tags": row["tags"],
                    "conversation_id": row["conversation_id"],
                },
            )
            for row in rows
        ]
