"""Tests for priority-aware compression."""

import logging

import pytest

from context_engine.models.candidate import ContextPriority
from context_engine.models.context import (
    CompressedSegment,
    CompressionMethod,
    OptimizationGoal,
    OptimizedSelection,
)
from context_engine.services.compression_service import ContextCompressor, compression_ratio


@pytest.fixture
def multi_sentence(make_text):
    """Factory for single-spaced text of ``count`` distinct sentences."""

    def _make(count: int, words: int = 10) -> str:
        return " ".join(make_text(words, seed=i) for i in range(count))

    return _make


@pytest.fixture
def compressor(test_settings, token_counter) -> ContextCompressor:
    """Compressor with test settings."""
    return ContextCompressor(test_settings, token_counter)


@pytest.fixture
def make_selection(make_candidate, token_counter):
    """Factory for selections of (id, priority, text) triples."""

    def _make(items, budget):
        candidates = tuple(
            make_candidate(cid, token_counter.count(text), priority, content=text)
            for cid, priority, text in items
        )
        return OptimizedSelection(
            candidates=candidates,
            total_tokens=sum(c.token_estimate for c in candidates),
            token_budget=budget,
            goal=OptimizationGoal.BALANCED,
        )

    return _make


def total(segments) -> int:
    return sum(s.compressed_tokens for s in segments)


class TestCompress:
    """Test hierarchical compression."""

    def test_within_budget_untouched(self, compressor, make_selection, make_text, multi_sentence):
        """Test nothing is compressed when the selection already fits."""
        selection = make_selection([("a", ContextPriority.LOW, multi_sentence(4))], 500)

        segments = compressor.compress(selection, 500)

        assert [s.method for s in segments] == [CompressionMethod.NONE]
        assert compression_ratio(segments) is None

    def test_lowest_tier_compressed_first(self, compressor, make_selection, make_text, multi_sentence):
        """Test low priority content absorbs the excess before high priority."""
        selection = make_selection(
            [
                ("high", ContextPriority.HIGH, make_text(20, separator="   ")),
                ("low", ContextPriority.LOW, make_text(40, seed=1, separator="   ")),
            ],
            80,
        )

        segments = compressor.compress(selection, 80)

        assert [s.source_candidate_id for s in segments] == ["high", "low"]
        assert segments[0].method == CompressionMethod.NONE
        assert segments[1].method == CompressionMethod.TEMPLATE
        assert total(segments) <= 80

    def test_stops_once_budget_met(self, compressor, make_selection, make_text, multi_sentence):
        """Test compression ends as soon as the total fits."""
        selection = make_selection(
            [
                ("first", ContextPriority.MEDIUM, multi_sentence(6)),
                ("second", ContextPriority.MEDIUM, multi_sentence(6)),
            ],
            100,
        )

        segments = compressor.compress(selection, 100)

        assert segments[0].method == CompressionMethod.NONE
        assert segments[1].method == CompressionMethod.EXTRACTIVE
        assert total(segments) <= 100

    def test_protected_tiers_only_template(self, compressor, make_selection, make_text, multi_sentence):
        """Test critical and high content is never summarized or truncated."""
        selection = make_selection(
            [
                ("crit", ContextPriority.CRITICAL, multi_sentence(6)),
                ("high", ContextPriority.HIGH, multi_sentence(6)),
            ],
            30,
        )

        segments = compressor.compress(selection, 30)

        assert [s.method for s in segments] == [CompressionMethod.NONE, CompressionMethod.NONE]
        assert [s.text for s in segments] == [c.text for c in selection.candidates]

    def test_critical_template_compression(self, compressor, make_selection, make_text, multi_sentence):
        """Test critical content may still lose redundant whitespace."""
        text = make_text(334, separator="   ")
        selection = make_selection([("crit", ContextPriority.CRITICAL, text)], 360)

        segments = compressor.compress(selection, 360)

        assert segments[0].method == CompressionMethod.TEMPLATE
        assert segments[0].text == make_text(334)
        assert segments[0].compressed_tokens <= 360

    def test_optional_compressed_aggressively(self, compressor, make_selection, make_text, multi_sentence):
        """Test optional content reaches the budget with strong methods."""
        selection = make_selection([("opt", ContextPriority.OPTIONAL, make_text(100))], 40)

        segments = compressor.compress(selection, 40)

        assert segments[0].method in (CompressionMethod.SEMANTIC, CompressionMethod.TRUNCATION)
        assert total(segments) <= 40
        assert compression_ratio(segments) < 1.0

    def test_compression_is_idempotent(self, compressor, make_selection, make_text, multi_sentence):
        """Test compressing an already compressed result changes nothing."""
        selection = make_selection(
            [
                ("crit", ContextPriority.CRITICAL, multi_sentence(6)),
                ("low", ContextPriority.LOW, multi_sentence(6)),
                ("opt", ContextPriority.OPTIONAL, multi_sentence(6)),
            ],
            100,
        )

        once = compressor.compress(selection, 100)
        twice = compressor.compress_segments(once, 100)

        assert twice == once

    def test_segments_never_grow(self, compressor, make_selection, make_text, multi_sentence):
        """Test no segment ends larger than its original."""
        selection = make_selection(
            [
                ("a", ContextPriority.MEDIUM, multi_sentence(3)),
                ("b", ContextPriority.OPTIONAL, make_text(60, seed=2)),
            ],
            10,
        )

        for segment in compressor.compress(selection, 10):
            assert segment.compressed_tokens <= segment.original_tokens


class TestFailureFallback:
    """Test recovery from failing compression methods."""

    def test_failed_method_falls_back(self, compressor, make_selection, make_text, caplog):
        """Test a failing method is logged and a later method is used."""

        def broken(text, target):
            raise RuntimeError("model unavailable")

        compressor._methods[CompressionMethod.SEMANTIC] = broken
        selection = make_selection([("opt", ContextPriority.OPTIONAL, make_text(100))], 40)

        with caplog.at_level(logging.WARNING, logger="context_engine.services.compression_service"):
            segments = compressor.compress(selection, 40)

        assert segments[0].method == CompressionMethod.TRUNCATION
        assert total(segments) <= 40
        assert "semantic compression failed" in caplog.text

    def test_truncation_failure_uses_hard_cut(self, compressor, make_selection, make_text, multi_sentence):
        """Test truncation always produces a fitting result."""

        def broken(text, target):
            raise RuntimeError("boom")

        compressor._methods[CompressionMethod.SEMANTIC] = broken
        compressor._methods[CompressionMethod.TRUNCATION] = broken
        selection = make_selection([("opt", ContextPriority.OPTIONAL, make_text(100))], 40)

        segments = compressor.compress(selection, 40)

        assert total(segments) <= 40
        assert make_text(100).startswith(segments[0].text)


class TestCompressionRatio:
    """Test the aggregate ratio."""

    def test_ratio(self, make_candidate):
        """Test compressed over original tokens."""
        candidate = make_candidate("a", 100)
        segment = CompressedSegment("a", 100, 25, CompressionMethod.EXTRACTIVE, "x", candidate)

        assert compression_ratio([segment]) == pytest.approx(0.25)
        assert compression_ratio([]) is None
