"""Pipeline services of the context engine."""

from context_engine.services.compression_service import ContextCompressor
from context_engine.services.context_cache import CacheStats, ContextCache, make_cache_key
from context_engine.services.context_engine import ContextEngine
from context_engine.services.optimization_service import ContextOptimizer
from context_engine.services.retrieval_service import ContextRetriever, RetrievalResult
from context_engine.services.scoring_service import RelevanceScorer
from context_engine.services.structuring_service import ContextStructurer, format_for_model
from context_engine.services.telemetry import (
    BuildTelemetry,
    InMemoryTelemetrySink,
    LoggingTelemetrySink,
    TelemetrySink,
)

__all__ = [
    "BuildTelemetry",
    "CacheStats",
    "ContextCache",
    "ContextCompressor",
    "ContextEngine",
    "ContextOptimizer",
    "ContextRetriever",
    "ContextStructurer",
    "InMemoryTelemetrySink",
    "LoggingTelemetrySink",
    "RelevanceScorer",
    "RetrievalResult",
    "TelemetrySink",
    "format_for_model",
    "make_cache_key",
]
