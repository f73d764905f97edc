"""Parallel fan-out retrieval across source adapters."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from context_engine.config.settings import Settings
from context_engine.exceptions import AllSourcesFailedError, SourceUnavailableError
from context_engine.models.candidate import ContextCandidate, ContextPriority, ContextSource
from context_engine.models.request import ConversationContext, RawRecord
from context_engine.services.scoring_service import RelevanceScorer
from context_engine.sources.base import SourceAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievalResult:
    """Unified candidate pool plus the sources that did not answer."""

    candidates: tuple[ContextCandidate, ...]
    succeeded_sources: tuple[str, ...] = ()
    failed_sources: dict[str, str] = field(default_factory=dict)

    @property
    def sources_used(self) -> tuple[ContextSource, ...]:
        seen: list[ContextSource] = []
        for candidate in self.candidates:
            if candidate.source not in seen:
                seen.append(candidate.source)
        return tuple(seen)


class ContextRetriever:
    """Queries every enabled adapter concurrently and scores the results.

    Each adapter runs under its own timeout; a slow or failing adapter is
    recorded in ``failed_sources`` and omitted without affecting the others.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        scorer: RelevanceScorer,
        settings: Settings,
    ) -> None:
        names = [adapter.name for adapter in adapters]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate source adapter names: {duplicates}")
        self.adapters = list(adapters)
        self.scorer = scorer
        self.settings = settings

    def select_adapters(
        self,
        required_sources: Sequence[ContextSource] | None = None,
        excluded_sources: Sequence[ContextSource] | None = None,
    ) -> list[SourceAdapter]:
        """Adapters enabled for one request, in configured order."""
        adapters = self.adapters
        if required_sources:
            required = set(required_sources)
            adapters = [a for a in adapters if a.source in required]
        if excluded_sources:
            excluded = set(excluded_sources)
            adapters = [a for a in adapters if a.source not in excluded]
        return adapters

    async def _query_adapter(
        self,
        adapter: SourceAdapter,
        query: str,
        filters: dict,
        semaphore: asyncio.Semaphore,
    ) -> list[RawRecord]:
        timeout = self.settings.timeout_for(adapter.name)
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    adapter.query(query, filters, self.settings.source_limit), timeout
                )
            except asyncio.TimeoutError as e:
                raise SourceUnavailableError(adapter.name, f"timed out after {timeout}s") from e
            except Exception as e:
                raise SourceUnavailableError(adapter.name, f"{type(e).__name__}: {e}") from e

    async def retrieve(
        self,
        query: str,
        conversation_context: ConversationContext,
        required_sources: Sequence[ContextSource] | None = None,
        excluded_sources: Sequence[ContextSource] | None = None,
    ) -> RetrievalResult:
        """Fan out the query and return a scored candidate pool.

        Args:
            query: Request query
            conversation_context: Conversation identity and recent turns
            required_sources: Restrict retrieval to these sources
            excluded_sources: Never query these sources

        Returns:
            RetrievalResult with candidates in adapter order

        Raises:
            AllSourcesFailedError: If fewer than ``min_successful_sources``
                adapters answered or no candidate was produced
        """
        adapters = self.select_adapters(required_sources, excluded_sources)
        failures: dict[str, str] = {}

        if required_sources:
            configured = {adapter.source for adapter in adapters}
            for source in required_sources:
                if source not in configured:
                    failures[source.value] = "no adapter configured"
                    logger.warning(f"Required source '{source.value}' has no adapter")

        if not adapters:
            raise AllSourcesFailedError(failures, "No sources enabled for this request")

        filters = {
            "conversation_id": conversation_context.conversation_id,
            "agent_id": conversation_context.agent_id,
            "recent_messages": list(conversation_context.recent_messages),
        }
        semaphore = asyncio.Semaphore(len(adapters))
        outcomes = await asyncio.gather(
            *(self._query_adapter(a, query, filters, semaphore) for a in adapters),
            return_exceptions=True,
        )

        now = datetime.now(timezone.utc)
        recent_words = self.scorer.recent_words(conversation_context)
        succeeded: list[str] = []
        candidates: list[ContextCandidate] = []
        owners: dict[str, ContextCandidate] = {}

        for adapter, outcome in zip(adapters, outcomes):
            if isinstance(outcome, SourceUnavailableError):
                failures[adapter.name] = outcome.reason
                logger.warning(
                    "Source '%s' unavailable: %s", outcome.source, outcome.reason
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            succeeded.append(adapter.name)
            for record in outcome:
                candidate = self.scorer.to_candidate(
                    record,
                    adapter.source,
                    query,
                    conversation_context,
                    adapter_name=adapter.name,
                    now=now,
                    recent_words=recent_words,
                )
                previous = owners.get(candidate.id)
                if previous is not None:
                    if (
                        previous.text == candidate.text
                        and previous.priority.rank <= candidate.priority.rank
                    ):
                        continue
                    # Ids are opaque per store; keep colliding records apart.
                    candidate = replace(candidate, id=f"{adapter.name}:{candidate.id}")
                    if candidate.id in owners:
                        continue
                owners[candidate.id] = candidate
                candidates.append(candidate)

        if len(succeeded) < self.settings.min_successful_sources:
            raise AllSourcesFailedError(
                failures,
                f"{len(succeeded)} of {len(adapters)} sources answered "
                f"(minimum {self.settings.min_successful_sources})",
            )

        candidates = self._filter(candidates)
        if not candidates:
            raise AllSourcesFailedError(failures, "Sources returned no usable candidates")

        logger.debug(
            f"Retrieved {len(candidates)} candidates from {len(succeeded)} sources"
        )
        return RetrievalResult(
            candidates=tuple(candidates),
            succeeded_sources=tuple(succeeded),
            failed_sources=failures,
        )

    def _filter(self, candidates: list[ContextCandidate]) -> list[ContextCandidate]:
        """Apply the relevance threshold and the pool cap.

        Critical candidates bypass both. The cap keeps the highest composite
        scores but preserves the original order of the survivors.
        """
        threshold = self.settings.relevance_threshold
        kept = [
            (index, c)
            for index, c in enumerate(candidates)
            if c.priority == ContextPriority.CRITICAL or c.relevance.composite >= threshold
        ]

        limit = self.settings.max_candidates
        if len(kept) <= limit:
            return [c for _, c in kept]

        ranked = sorted(
            kept,
            key=lambda item: (
                item[1].priority != ContextPriority.CRITICAL,
                -item[1].relevance.composite,
                item[0],
            ),
        )
        critical_count = sum(1 for _, c in kept if c.priority == ContextPriority.CRITICAL)
        survivors = ranked[: max(limit, critical_count)]
        return [c for _, c in sorted(survivors, key=lambda item: item[0])]
