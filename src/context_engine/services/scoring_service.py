"""Multi-factor relevance scoring and record normalization."""

import hashlib
import math
from datetime import datetime, timezone

from context_engine.config.settings import Settings
from context_engine.models.candidate import (
    ContextCandidate,
    ContextSource,
    RelevanceScore,
    render_content,
)
from context_engine.models.request import ConversationContext, RawRecord
from context_engine.utils.similarity import content_words, coverage, lexical_overlap
from context_engine.utils.token_counter import TokenCounter


class RelevanceScorer:
    """Scores raw records and turns them into immutable candidates.

    Components, each in [0, 1]:
        semantic_similarity: adapter similarity, else lexical query overlap
        temporal_relevance: exp(-age / half_life) with a per-source half-life
        frequency_importance: mean of importance and saturated access count
        contextual_fit: share of the record's words found in recent turns
        user_preference: record, tag or source preference of the conversation
    """

    def __init__(self, settings: Settings, token_counter: TokenCounter) -> None:
        self.settings = settings
        self.token_counter = token_counter

    def semantic_similarity(self, query: str, record: RawRecord, text: str) -> float:
        if record.similarity is not None:
            return record.similarity
        return lexical_overlap(query, text)

    def temporal_relevance(
        self, timestamp: datetime, source: ContextSource, now: datetime
    ) -> float:
        """Exponential decay of the record's age.

        Args:
            timestamp: Record time (UTC)
            source: Source the record came from
            now: Reference time for the whole request

        Returns:
            Relevance in (0, 1]; records from the future count as fresh
        """
        age_hours = (now - timestamp).total_seconds() / 3600.0
        if age_hours <= 0:
            return 1.0
        half_life = self.settings.half_life_for(source.value)
        return math.exp(-age_hours / half_life)

    def frequency_importance(self, record: RawRecord) -> float:
        access = min(record.access_count / self.settings.max_access_count, 1.0)
        return (record.importance + access) / 2.0

    def contextual_fit(self, text: str, recent_words: set[str]) -> float:
        return coverage(set(content_words(text)), recent_words)

    def user_preference(
        self, record: RawRecord, source: ContextSource, context: ConversationContext
    ) -> float:
        explicit = record.metadata.get("user_preference")
        if isinstance(explicit, (int, float)) and 0.0 <= explicit <= 1.0:
            return float(explicit)

        preferences = context.user_preferences
        matches = [preferences[source.value]] if source.value in preferences else []
        for tag in record.metadata.get("tags") or ():
            if isinstance(tag, str) and tag in preferences:
                matches.append(preferences[tag])
        if matches:
            return max(matches)
        return self.settings.default_user_preference

    def score(
        self,
        record: RawRecord,
        source: ContextSource,
        query: str,
        context: ConversationContext,
        *,
        now: datetime | None = None,
        recent_words: set[str] | None = None,
    ) -> RelevanceScore:
        """Compute the relevance of one record.

        Args:
            record: Raw record from an adapter
            source: Source the record came from
            query: Request query
            context: Conversation the request belongs to
            now: Reference time (defaults to now, UTC)
            recent_words: Precomputed content words of the recent turns

        Returns:
            RelevanceScore with its composite computed once

        Raises:
            ValueError: If the configured weights are invalid
        """
        now = now or datetime.now(timezone.utc)
        if recent_words is None:
            recent_words = self.recent_words(context)
        text = render_content(record.content)

        return RelevanceScore.from_components(
            self.settings.relevance_weights,
            semantic_similarity=self.semantic_similarity(query, record, text),
            temporal_relevance=self.temporal_relevance(record.timestamp, source, now),
            frequency_importance=self.frequency_importance(record),
            contextual_fit=self.contextual_fit(text, recent_words),
            user_preference=self.user_preference(record, source, context),
        )

    def recent_words(self, context: ConversationContext) -> set[str]:
        """Content words of the turns folded into contextual fit."""
        turns = context.last_turns(self.settings.fingerprint_turns)
        return {word for message in turns for word in content_words(message.content)}

    def to_candidate(
        self,
        record: RawRecord,
        source: ContextSource,
        query: str,
        context: ConversationContext,
        *,
        adapter_name: str | None = None,
        now: datetime | None = None,
        recent_words: set[str] | None = None,
    ) -> ContextCandidate:
        """Normalize a raw record into a scored candidate."""
        text = render_content(record.content)
        relevance = self.score(
            record, source, query, context, now=now, recent_words=recent_words
        )
        # Adapter-supplied counts may only raise the estimate.
        token_estimate = self.token_counter.count(text)
        if record.token_count is not None:
            token_estimate = max(record.token_count, token_estimate)
        metadata = dict(record.metadata)
        metadata.setdefault("adapter", adapter_name or source.value)

        return ContextCandidate(
            id=record.id or candidate_id(source, text),
            source=source,
            content=record.content,
            token_estimate=token_estimate,
            priority=record.priority or self.settings.priority_for(source.value),
            relevance=relevance,
            created_at=record.timestamp,
            last_accessed_at=record.last_accessed_at,
            metadata=metadata,
        )


def candidate_id(source: ContextSource, text: str) -> str:
    """Content-derived id for records that carry none."""
    digest = hashlib.sha1(text.encode("utf-8")).hexdigest()[:12]
    return f"{source.value}:{digest}"

