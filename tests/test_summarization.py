"""Tests for text reduction and similarity utilities."""

import numpy as np
import pytest

from context_engine.utils.similarity import (
    content_words,
    cosine_similarity,
    jaccard_similarity,
    lexical_overlap,
    normalize_text,
)
from context_engine.utils.summarization import (
    extract_concepts,
    extractive_summary,
    semantic_summary,
    smart_truncate,
    split_sentences,
    template_compress,
    top_keywords,
)

LONG_DOCUMENT = (
    "The deployment pipeline builds every service from the main branch. "
    "Weather was pleasant during the afternoon. "
    "An important rule is that the deployment pipeline must run database migrations first. "
    "Lunch was served at noon. "
    "The pipeline reports failures to the release channel."
)


class TestSimilarity:
    """Test lexical and vector similarity helpers."""

    def test_content_words_drop_stop_words(self):
        """Test stop words and single characters are removed."""
        assert content_words("The cat is on a mat") == ["cat", "mat"]

    def test_normalize_text(self):
        """Test lower-casing and whitespace collapsing."""
        assert normalize_text("  Hello\n  World ") == "hello world"

    def test_jaccard(self):
        """Test Jaccard index of word sets."""
        assert jaccard_similarity({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard_similarity(set(), set()) == 0.0

    def test_lexical_overlap_verbatim_bonus(self):
        """Test verbatim query matches score above partial matches."""
        partial = lexical_overlap("deploy service", "we deploy things")
        verbatim = lexical_overlap("deploy service", "please deploy service now")

        assert partial == pytest.approx(0.5)
        assert verbatim == 1.0

    def test_lexical_overlap_empty_query(self):
        """Test a query without content words scores zero."""
        assert lexical_overlap("the and of", "anything") == 0.0

    def test_cosine_similarity(self):
        """Test cosine similarity against matrix rows."""
        matrix = np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]])

        result = cosine_similarity(np.array([1.0, 0.0]), matrix)

        assert result[0] == pytest.approx(1.0)
        assert result[1] == pytest.approx(0.0)
        assert result[2] == pytest.approx(np.sqrt(0.5))

    def test_cosine_similarity_zero_query(self):
        """Test a zero query vector yields zero similarities."""
        result = cosine_similarity(np.zeros(2), np.ones((3, 2)))

        assert list(result) == [0.0, 0.0, 0.0]


class TestTemplateCompress:
    """Test lossless-style cleanup."""

    def test_collapses_whitespace(self):
        """Test runs of spaces collapse to one."""
        assert template_compress("alpha    beta\t\tgamma") == "alpha beta gamma"

    def test_removes_boilerplate(self):
        """Test filler phrases are removed."""
        result = template_compress("Hello, please note that the build is green.")

        assert result == "the build is green."

    def test_drops_duplicate_lines(self):
        """Test consecutive duplicate lines are dropped."""
        assert template_compress("same\nsame\nother") == "same\nother"

    def test_compacts_json_spacing(self):
        """Test JSON separators lose their padding."""
        assert template_compress('{"a": 1, "b": 2}') == '{"a":1,"b":2}'

    def test_idempotent(self):
        """Test a second pass changes nothing."""
        once = template_compress("Hi there!  As mentioned before,   the   job\n\nfailed.")

        assert template_compress(once) == once


class TestExtractiveSummary:
    """Test sentence extraction."""

    def test_split_sentences(self):
        """Test splitting on sentence ends and newlines."""
        assert split_sentences("One. Two!\nThree?") == ["One.", "Two!", "Three?"]

    def test_keeps_ratio_in_original_order(self):
        """Test the kept sentences follow document order."""
        summary = extractive_summary(LONG_DOCUMENT, keep_ratio=0.6)
        kept = split_sentences(summary)
        original = split_sentences(LONG_DOCUMENT)

        assert len(kept) == 3
        assert [original.index(s) for s in kept] == sorted(original.index(s) for s in kept)

    def test_prefers_keyword_sentences(self):
        """Test on-topic sentences beat unrelated ones."""
        summary = extractive_summary(LONG_DOCUMENT, keep_ratio=0.6)

        assert "database migrations" in summary
        assert "Lunch was served" not in summary

    def test_single_sentence_unchanged(self):
        """Test a single sentence is returned as is."""
        assert extractive_summary("Only one sentence here.") == "Only one sentence here."

    def test_top_keywords(self):
        """Test keywords are ranked by frequency."""
        assert top_keywords(LONG_DOCUMENT, limit=2) == ["pipeline", "deployment"]


class TestSemanticSummary:
    """Test concept extraction."""

    def test_entities_come_first(self):
        """Test capitalized phrases rank ahead of keywords."""
        concepts = extract_concepts(
            "Project Atlas uses Postgres. Project Atlas stores orders in Postgres.",
            max_concepts=4,
        )

        assert concepts[0] == "Project Atlas"
        assert "Postgres" in concepts
        assert len(concepts) <= 4

    def test_semantic_summary_joins_concepts(self):
        """Test the summary is a semicolon-joined concept list."""
        summary = semantic_summary("Kafka streams events. Kafka retains events.", max_concepts=2)

        assert summary == "Kafka; events"


class TestSmartTruncate:
    """Test boundary-aware truncation."""

    def test_within_limit_unchanged(self, token_counter):
        """Test short text is returned unchanged."""
        assert smart_truncate("short", 10, token_counter) == "short"

    def test_result_fits(self, token_counter, make_text):
        """Test the result never exceeds the limit."""
        text = make_text(100)

        result = smart_truncate(text, 20, token_counter)

        assert token_counter.count(result) <= 20
        assert result.endswith(" ...")

    def test_cuts_at_sentence_end(self, token_counter):
        """Test a late sentence boundary is preferred."""
        text = "First sentence has several words in it. Second sentence keeps going on and on."

        result = smart_truncate(text, 12, token_counter)

        assert result.startswith("First sentence has several words in it.")
        assert "Second" not in result

    def test_zero_limit(self, token_counter):
        """Test a zero limit yields an empty string."""
        assert smart_truncate("anything", 0, token_counter) == ""
