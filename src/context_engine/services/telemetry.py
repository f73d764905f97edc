"""Per-build telemetry records and sinks."""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field

telemetry_logger = logging.getLogger("context_engine.telemetry")


@dataclass(frozen=True)
class BuildTelemetry:
    """One structured record per build call."""

    conversation_id: str
    agent_id: str
    token_budget: int
    total_tokens: int
    budget_utilization: float
    quality_score: float
    quality: dict[str, float]
    cache_hit: bool
    fallback: bool
    compression_applied: bool
    sources_used: tuple[str, ...] = ()
    failed_sources: dict[str, str] = field(default_factory=dict)
    stage_latency_ms: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class TelemetrySink(ABC):
    """Receives one record per build; must not block for long."""

    @abstractmethod
    def emit(self, record: BuildTelemetry) -> None:
        """Handle one build record."""


class LoggingTelemetrySink(TelemetrySink):
    """Writes records to the ``context_engine.telemetry`` logger at INFO."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or telemetry_logger

    def emit(self, record: BuildTelemetry) -> None:
        self.logger.info(
            "context build: %d/%d tokens, quality %.3f, cache_hit=%s, fallback=%s",
            record.total_tokens,
            record.token_budget,
            record.quality_score,
            record.cache_hit,
            record.fallback,
            extra={"telemetry": record.to_dict()},
        )


class InMemoryTelemetrySink(TelemetrySink):
    """Keeps the most recent records for inspection."""

    def __init__(self, max_records: int = 1000) -> None:
        self.records: deque[BuildTelemetry] = deque(maxlen=max_records)

    def emit(self, record: BuildTelemetry) -> None:
        self.records.append(record)

    def clear(self) -> None:
        self.records.clear()
