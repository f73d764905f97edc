"""Hierarchical, priority-aware compression of selected candidates."""

import logging
from collections.abc import Callable, Sequence

from context_engine.config.settings import Settings
from context_engine.exceptions import CompressionFailureError
from context_engine.models.candidate import ContextPriority
from context_engine.models.context import CompressedSegment, CompressionMethod, OptimizedSelection
from context_engine.utils.summarization import (
    extractive_summary,
    semantic_summary,
    smart_truncate,
    template_compress,
)
from context_engine.utils.token_counter import TokenCounter

logger = logging.getLogger(__name__)

ALL_TIERS = frozenset(ContextPriority)

# Stages in order of increasing aggressiveness, with the tiers each may touch
COMPRESSION_STAGES: tuple[tuple[CompressionMethod, frozenset[ContextPriority]], ...] = (
    (CompressionMethod.TEMPLATE, ALL_TIERS),
    (CompressionMethod.EXTRACTIVE, frozenset({ContextPriority.MEDIUM, ContextPriority.LOW})),
    (CompressionMethod.SEMANTIC, frozenset({ContextPriority.OPTIONAL})),
    (CompressionMethod.TRUNCATION, frozenset({ContextPriority.OPTIONAL})),
)

# Methods tried when one fails, least aggressive first
FALLBACK_METHODS: dict[CompressionMethod, tuple[CompressionMethod, ...]] = {
    CompressionMethod.TEMPLATE: (CompressionMethod.TRUNCATION,),
    CompressionMethod.EXTRACTIVE: (CompressionMethod.TEMPLATE, CompressionMethod.TRUNCATION),
    CompressionMethod.SEMANTIC: (
        CompressionMethod.EXTRACTIVE,
        CompressionMethod.TEMPLATE,
        CompressionMethod.TRUNCATION,
    ),
    CompressionMethod.TRUNCATION: (),
}

# Tiers that only ever receive template compression
PROTECTED_TIERS = frozenset({ContextPriority.CRITICAL, ContextPriority.HIGH})


class ContextCompressor:
    """Reduces a selection's token footprint only as far as the budget needs.

    Stages run from least to most aggressive. Inside a stage, candidates are
    visited from the lowest priority tier upward (and, within a tier, from
    the tail of the selection), and the running total is re-checked after
    every candidate so compression stops as soon as the budget is met.
    Segment order always matches the optimizer's order.
    """

    def __init__(self, settings: Settings, token_counter: TokenCounter) -> None:
        self.settings = settings
        self.token_counter = token_counter
        self._methods: dict[CompressionMethod, Callable[[str, int], str]] = {
            CompressionMethod.TEMPLATE: lambda text, target: template_compress(text),
            CompressionMethod.EXTRACTIVE: lambda text, target: extractive_summary(
                text, self.settings.extractive_keep_ratio
            ),
            CompressionMethod.SEMANTIC: lambda text, target: semantic_summary(
                text, self.settings.semantic_max_concepts
            ),
            CompressionMethod.TRUNCATION: lambda text, target: smart_truncate(
                text, target, self.token_counter
            ),
        }

    def compress(self, selection: OptimizedSelection, token_budget: int) -> list[CompressedSegment]:
        """Compress a selection toward a budget.

        Args:
            selection: Optimizer output
            token_budget: Token budget for the segment texts

        Returns:
            One segment per selected candidate, in selection order
        """
        segments = [CompressedSegment.uncompressed(c) for c in selection.candidates]
        return self.compress_segments(segments, token_budget)

    def compress_segments(
        self, segments: Sequence[CompressedSegment], token_budget: int
    ) -> list[CompressedSegment]:
        """Continue compressing existing segments toward a budget.

        Segments that already fit the budget are returned unchanged, and a
        method is only applied when it strictly shrinks a segment.

        Args:
            segments: Segments in selection order
            token_budget: Token budget for the segment texts

        Returns:
            New list of segments, in the same order
        """
        result = list(segments)
        total = sum(s.compressed_tokens for s in result)
        if total <= token_budget:
            return result

        for method, tiers in COMPRESSION_STAGES:
            for index in self._visit_order(result, tiers):
                if total <= token_budget:
                    return result
                segment = result[index]
                excess = total - token_budget
                compressed = self._compress_segment(segment, method, excess)
                if compressed is not segment:
                    total -= segment.compressed_tokens - compressed.compressed_tokens
                    result[index] = compressed

        if total > token_budget:
            logger.debug(f"Compression left {total} tokens over a {token_budget} token budget")
        return result

    def _visit_order(
        self, segments: Sequence[CompressedSegment], tiers: frozenset[ContextPriority]
    ) -> list[int]:
        eligible = [i for i, s in enumerate(segments) if s.priority in tiers]
        return sorted(eligible, key=lambda i: (-segments[i].priority.rank, -i))

    def _compress_segment(
        self, segment: CompressedSegment, method: CompressionMethod, excess: int
    ) -> CompressedSegment:
        """Apply one method, falling back on failure; keep only strict improvements."""
        methods = (method, *FALLBACK_METHODS[method])
        if segment.priority in PROTECTED_TIERS:
            methods = tuple(m for m in methods if m == CompressionMethod.TEMPLATE)

        for candidate_method in methods:
            target = max(
                segment.compressed_tokens - excess, self.settings.truncation_min_tokens
            )
            try:
                text = self._run(candidate_method, segment, target)
            except CompressionFailureError as e:
                logger.warning(f"{e}; trying next method")
                continue

            tokens = self.token_counter.count(text)
            if tokens < segment.compressed_tokens:
                return CompressedSegment(
                    source_candidate_id=segment.source_candidate_id,
                    original_tokens=segment.original_tokens,
                    compressed_tokens=tokens,
                    method=self._stronger(segment.method, candidate_method),
                    text=text,
                    candidate=segment.candidate,
                )
            return segment
        return segment

    def _run(self, method: CompressionMethod, segment: CompressedSegment, target: int) -> str:
        try:
            return self._methods[method](segment.text, target)
        except Exception as e:
            if method == CompressionMethod.TRUNCATION:
                # Truncation must always produce something that fits
                return self.token_counter.truncate(segment.text, target)
            raise CompressionFailureError(method.value, segment.source_candidate_id, e) from e

    @staticmethod
    def _stronger(previous: CompressionMethod, applied: CompressionMethod) -> CompressionMethod:
        order = list(CompressionMethod)
        return max(previous, applied, key=order.index)


def compression_ratio(segments: Sequence[CompressedSegment]) -> float | None:
    """Compressed over original tokens, or None when nothing was compressed."""
    original = sum(s.original_tokens for s in segments)
    compressed = sum(s.compressed_tokens for s in segments)
    if original == 0 or compressed == original:
        return None
    return compressed / original
