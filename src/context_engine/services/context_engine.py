"""Context engine: the single entry point that assembles context per turn."""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import ValidationError

from context_engine.config.settings import Settings
from context_engine.exceptions import AllSourcesFailedError, InvalidRequestError
from context_engine.models.candidate import ContextPriority
from context_engine.models.context import (
    BuildMetadata,
    CompressedSegment,
    CompressionMethod,
    ContextResult,
    ContextWindow,
    OutputFormat,
    StructureLayout,
)
from context_engine.models.request import ContextRequest, ConversationMessage
from context_engine.services.compression_service import ContextCompressor, compression_ratio
from context_engine.services.context_cache import ContextCache, make_cache_key
from context_engine.services.optimization_service import ContextOptimizer
from context_engine.services.retrieval_service import ContextRetriever, RetrievalResult
from context_engine.services.scoring_service import RelevanceScorer
from context_engine.services.structuring_service import ContextStructurer
from context_engine.services.telemetry import BuildTelemetry, LoggingTelemetrySink, TelemetrySink
from context_engine.sources.base import SourceAdapter
from context_engine.utils.token_counter import TokenCounter

logger = logging.getLogger(__name__)


@dataclass
class _Assembly:
    window: ContextWindow
    retrieval: RetrievalResult
    segments: list[CompressedSegment]
    selection_diversity: float
    stage_latency_ms: dict[str, float] = field(default_factory=dict)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class ContextEngine:
    """Retrieves, selects, compresses and renders context under a token budget.

    ``build`` never raises for pipeline failures: when retrieval yields
    nothing, a stage errors, the request is malformed or the deadline
    passes, the caller receives a minimal context made of the most recent
    conversation turns with a fixed low quality score.

    Each engine owns its cache; separate engines never share state.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        settings: Settings | None = None,
        *,
        token_counter: TokenCounter | None = None,
        cache: ContextCache | None = None,
        telemetry_sink: TelemetrySink | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            adapters: Source adapters queried for every request
            settings: Engine configuration (defaults to Settings())
            token_counter: Shared token counter (defaults to the configured backend)
            cache: Result cache (defaults to a new cache when caching is enabled)
            telemetry_sink: Build record sink (defaults to logging when enabled)
        """
        self.settings = settings or Settings()
        self.token_counter = token_counter or TokenCounter.from_settings(self.settings)
        self.scorer = RelevanceScorer(self.settings, self.token_counter)
        self.retriever = ContextRetriever(adapters, self.scorer, self.settings)
        self.optimizer = ContextOptimizer(self.settings)
        self.compressor = ContextCompressor(self.settings, self.token_counter)
        self.structurer = ContextStructurer(self.settings, self.token_counter)

        if cache is not None:
            self.cache: ContextCache | None = cache
        elif self.settings.cache_enabled:
            self.cache = ContextCache.from_settings(self.settings)
        else:
            self.cache = None

        if telemetry_sink is not None:
            self.telemetry_sink: TelemetrySink | None = telemetry_sink
        elif self.settings.telemetry_enabled:
            self.telemetry_sink = LoggingTelemetrySink()
        else:
            self.telemetry_sink = None

    @staticmethod
    def validate_request(request: ContextRequest | Mapping[str, Any]) -> ContextRequest:
        """Coerce and check a request.

        Args:
            request: ContextRequest or its mapping form

        Returns:
            Validated ContextRequest

        Raises:
            InvalidRequestError: If the request is malformed or empty
        """
        if not isinstance(request, ContextRequest):
            try:
                request = ContextRequest.model_validate(request)
            except ValidationError as e:
                raise InvalidRequestError(f"Invalid context request: {e}") from e
        if not request.query.strip() and not request.conversation_context.recent_messages:
            raise InvalidRequestError("Request has neither a query nor conversation history")
        return request

    async def build(self, request: ContextRequest | Mapping[str, Any]) -> ContextResult:
        """Assemble the context window for one conversational turn.

        Sequence: cache lookup, then on a miss retrieve, optimize,
        compress when over budget, structure, and store in the cache.

        Args:
            request: ContextRequest or its mapping form

        Returns:
            ContextResult with the window and build metadata
        """
        start = time.perf_counter()
        try:
            request = self.validate_request(request)
        except InvalidRequestError as e:
            logger.warning(f"Falling back after invalid request: {e}")
            messages = _salvage_messages(request)
            return self._fallback(
                messages, self.settings.default_token_budget, None, start,
                conversation_id="", agent_id="", failures={"request": str(e)},
            )

        context = request.conversation_context
        budget = request.token_budget or self.settings.default_token_budget
        layout = request.structure_layout or self.settings.structure_layout
        output_format = request.output_format or self.settings.output_format

        cache_key = None
        if self.cache is not None:
            cache_key = make_cache_key(
                request.query,
                context.conversation_id,
                context.agent_id,
                context.recent_messages,
                budget,
                request.optimization_goal.value,
                layout.value,
                output_format.value,
                self.settings.fingerprint_turns,
                extras=_request_variant(request),
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                return self._cached_result(cached, request, start)

        timeout = request.timeout_seconds or self.settings.build_timeout_seconds
        try:
            pipeline = self._assemble(request, budget, layout, output_format)
            if timeout is not None:
                assembly = await asyncio.wait_for(pipeline, timeout)
            else:
                assembly = await pipeline
        except asyncio.TimeoutError:
            logger.warning(f"Context build exceeded its {timeout}s deadline; using fallback")
            return self._fallback(
                context.recent_messages, budget, output_format, start,
                conversation_id=context.conversation_id, agent_id=context.agent_id,
                failures={"build": f"deadline of {timeout}s exceeded"},
            )
        except AllSourcesFailedError as e:
            logger.warning(f"All sources failed ({e}); using fallback")
            return self._fallback(
                context.recent_messages, budget, output_format, start,
                conversation_id=context.conversation_id, agent_id=context.agent_id,
                failures=dict(e.failures),
            )
        except Exception as e:
            logger.error(f"Context build failed: {e}; using fallback", exc_info=True)
            return self._fallback(
                context.recent_messages, budget, output_format, start,
                conversation_id=context.conversation_id, agent_id=context.agent_id,
                failures={"build": f"{type(e).__name__}: {e}"},
            )

        total_ms = _elapsed_ms(start)
        window = replace(assembly.window, build_time_ms=total_ms)
        assembly.stage_latency_ms["total"] = total_ms

        budget_infeasible = window.total_tokens > budget
        if budget_infeasible:
            logger.warning(
                "Critical context needs %d tokens, over the %d token budget",
                window.total_tokens,
                budget,
            )

        if self.cache is not None and cache_key is not None:
            if assembly.retrieval.failed_sources:
                logger.debug(
                    "Not caching window built without sources: %s",
                    sorted(assembly.retrieval.failed_sources),
                )
            else:
                self.cache.put(cache_key, window, context.conversation_id)

        metadata = BuildMetadata(
            sources_used=window.sources_used,
            compression_applied=any(
                s.method != CompressionMethod.NONE for s in assembly.segments
            ),
            build_time_ms=total_ms,
            cache_hit=False,
            budget_infeasible=budget_infeasible,
            compression_ratio=compression_ratio(assembly.segments),
            selection_diversity=assembly.selection_diversity,
            failed_sources=dict(assembly.retrieval.failed_sources),
            stage_latency_ms=dict(assembly.stage_latency_ms),
        )
        self._emit(window, metadata, context.conversation_id, context.agent_id)
        return ContextResult(window=window, metadata=metadata)

    async def _assemble(
        self,
        request: ContextRequest,
        budget: int,
        layout: StructureLayout,
        output_format: OutputFormat,
    ) -> _Assembly:
        stage_latency: dict[str, float] = {}

        started = time.perf_counter()
        retrieval = await self.retriever.retrieve(
            request.query,
            request.conversation_context,
            request.required_sources,
            request.excluded_sources,
        )
        stage_latency["retrieve"] = _elapsed_ms(started)

        # Leave room for section headers and markup
        content_budget = max(1, int(budget * self.settings.effective_budget_ratio))

        started = time.perf_counter()
        selection = self.optimizer.optimize(
            retrieval.candidates,
            content_budget,
            request.optimization_goal,
            request.priority_overrides,
        )
        stage_latency["optimize"] = _elapsed_ms(started)

        started = time.perf_counter()
        if self.settings.compression_enabled and selection.total_tokens > content_budget:
            segments = self.compressor.compress(selection, content_budget)
        else:
            segments = [CompressedSegment.uncompressed(c) for c in selection.candidates]
        stage_latency["compress"] = _elapsed_ms(started)

        started = time.perf_counter()
        window, segments = self._fit_window(
            segments, budget, layout, output_format, retrieval
        )
        stage_latency["structure"] = _elapsed_ms(started)

        return _Assembly(
            window=window,
            retrieval=retrieval,
            segments=segments,
            selection_diversity=selection.diversity_score,
            stage_latency_ms=stage_latency,
        )

    def _fit_window(
        self,
        segments: list[CompressedSegment],
        budget: int,
        layout: StructureLayout,
        output_format: OutputFormat,
        retrieval: RetrievalResult,
    ) -> tuple[ContextWindow, list[CompressedSegment]]:
        """Render, then tighten until the rendered window fits the budget.

        Markup overhead is resolved by compressing further and, as a last
        resort, by dropping the trailing non-critical segment. Critical
        segments are never dropped.
        """

        def render(current: list[CompressedSegment]) -> ContextWindow:
            return self.structurer.structure(
                current,
                output_format,
                layout=layout,
                token_budget=budget,
                pool=retrieval.candidates,
            )

        window = render(segments)
        while window.total_tokens > budget:
            content_tokens = sum(s.compressed_tokens for s in segments)
            target = content_tokens - (window.total_tokens - budget)
            if self.settings.compression_enabled:
                tighter = self.compressor.compress_segments(segments, max(target, 0))
                if sum(s.compressed_tokens for s in tighter) < content_tokens:
                    segments = tighter
                    window = render(segments)
                    continue

            droppable = [
                i for i, s in enumerate(segments) if s.priority != ContextPriority.CRITICAL
            ]
            if not droppable:
                break
            del segments[droppable[-1]]
            window = render(segments)
        return window, segments

    def _cached_result(
        self, window: ContextWindow, request: ContextRequest, start: float
    ) -> ContextResult:
        context = request.conversation_context
        total_ms = _elapsed_ms(start)
        metadata = BuildMetadata(
            sources_used=window.sources_used,
            compression_applied=any(
                s.method != CompressionMethod.NONE for s in window.segments
            ),
            build_time_ms=total_ms,
            cache_hit=True,
            fallback=window.fallback,
            budget_infeasible=window.total_tokens > window.token_budget,
            compression_ratio=compression_ratio(window.segments),
            stage_latency_ms={"total": total_ms},
        )
        self._emit(window, metadata, context.conversation_id, context.agent_id)
        return ContextResult(window=window, metadata=metadata)

    def _fallback(
        self,
        messages: Sequence[ConversationMessage],
        budget: int,
        output_format: OutputFormat | None,
        start: float,
        *,
        conversation_id: str,
        agent_id: str,
        failures: dict[str, str],
    ) -> ContextResult:
        total_ms = _elapsed_ms(start)
        window = self.structurer.fallback_window(messages, budget, output_format, total_ms)
        metadata = BuildMetadata(
            sources_used=window.sources_used,
            compression_applied=False,
            build_time_ms=total_ms,
            cache_hit=False,
            fallback=True,
            failed_sources=failures,
            stage_latency_ms={"total": total_ms},
        )
        self._emit(window, metadata, conversation_id, agent_id)
        return ContextResult(window=window, metadata=metadata)

    def _emit(
        self,
        window: ContextWindow,
        metadata: BuildMetadata,
        conversation_id: str,
        agent_id: str,
    ) -> None:
        if self.telemetry_sink is None:
            return
        record = BuildTelemetry(
            conversation_id=conversation_id,
            agent_id=agent_id,
            token_budget=window.token_budget,
            total_tokens=window.total_tokens,
            budget_utilization=window.budget_utilization,
            quality_score=window.quality_score,
            quality={
                "relevance": window.quality.relevance,
                "coherence": window.quality.coherence,
                "completeness": window.quality.completeness,
                "diversity": window.quality.diversity,
                "freshness": window.quality.freshness,
                "token_efficiency": window.quality.token_efficiency,
            },
            cache_hit=metadata.cache_hit,
            fallback=metadata.fallback,
            compression_applied=metadata.compression_applied,
            sources_used=tuple(source.value for source in metadata.sources_used),
            failed_sources=dict(metadata.failed_sources),
            stage_latency_ms=dict(metadata.stage_latency_ms),
        )
        try:
            self.telemetry_sink.emit(record)
        except Exception as e:
            logger.warning(f"Telemetry sink failed: {e}")

    def invalidate(self, conversation_id: str | None = None) -> int:
        """Drop cached windows of a conversation (or all when None)."""
        if self.cache is None:
            return 0
        return self.cache.invalidate(conversation_id)


def _request_variant(request: ContextRequest) -> list[str]:
    """Source selection and priority overrides, in canonical form."""
    required = sorted(s.value for s in request.required_sources or ())
    excluded = sorted(s.value for s in request.excluded_sources or ())
    overrides = sorted(f"{key}={value.value}" for key, value in request.priority_overrides.items())
    return [",".join(required), ",".join(excluded), ",".join(overrides)]


def _salvage_messages(raw: Any) -> list[ConversationMessage]:
    """Best-effort recovery of recent turns from a malformed request."""
    if isinstance(raw, ContextRequest):
        return list(raw.conversation_context.recent_messages)
    if not isinstance(raw, Mapping):
        return []
    context = raw.get("conversation_context")
    if not isinstance(context, Mapping):
        return []
    messages = []
    for item in context.get("recent_messages") or ():
        try:
            messages.append(ConversationMessage.model_validate(item))
        except ValidationError:
            continue
    return messages
