"""Tests for build telemetry sinks."""

import logging

from context_engine.services.telemetry import (
    BuildTelemetry,
    InMemoryTelemetrySink,
    LoggingTelemetrySink,
)


def make_record(**overrides) -> BuildTelemetry:
    values = {
        "conversation_id": "conv-1",
        "agent_id": "agent-1",
        "token_budget": 1000,
        "total_tokens": 400,
        "budget_utilization": 0.4,
        "quality_score": 0.8,
        "quality": {"relevance": 0.9},
        "cache_hit": False,
        "fallback": False,
        "compression_applied": True,
        "sources_used": ("episodic",),
    }
    values.update(overrides)
    return BuildTelemetry(**values)


class TestSinks:
    """Test the bundled sinks."""

    def test_logging_sink(self, caplog):
        """Test records are logged with structured extras."""
        sink = LoggingTelemetrySink()

        with caplog.at_level(logging.INFO, logger="context_engine.telemetry"):
            sink.emit(make_record())

        assert "400/1000 tokens" in caplog.text
        assert caplog.records[-1].telemetry["conversation_id"] == "conv-1"

    def test_in_memory_sink_is_bounded(self):
        """Test the in-memory sink keeps only the newest records."""
        sink = InMemoryTelemetrySink(max_records=2)

        for budget in (1, 2, 3):
            sink.emit(make_record(token_budget=budget))

        assert [r.token_budget for r in sink.records] == [2, 3]
        sink.clear()
        assert len(sink.records) == 0

    def test_to_dict(self):
        """Test records convert to plain dictionaries."""
        data = make_record().to_dict()

        assert data["sources_used"] == ("episodic",)
        assert data["failed_sources"] == {}
