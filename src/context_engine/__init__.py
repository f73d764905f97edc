"""Budgeted multi-source context assembly for conversational agents."""

from context_engine.config import Settings, get_settings, reset_settings, set_settings
from context_engine.exceptions import (
    AllSourcesFailedError,
    CompressionFailureError,
    ContextEngineError,
    InvalidRequestError,
    SourceUnavailableError,
)
from context_engine.models import (
    BuildMetadata,
    CompressedSegment,
    CompressionMethod,
    ContextCandidate,
    ContextPriority,
    ContextRequest,
    ContextResult,
    ContextSource,
    ContextWindow,
    ConversationContext,
    ConversationMessage,
    OptimizationGoal,
    OptimizedSelection,
    OutputFormat,
    QualityMetrics,
    RawRecord,
    RelevanceScore,
    StructureLayout,
)
from context_engine.services import (
    ContextCache,
    ContextEngine,
    InMemoryTelemetrySink,
    LoggingTelemetrySink,
    TelemetrySink,
    format_for_model,
)
from context_engine.sources import SourceAdapter

__version__ = "1.0.0"

__all__ = [
    "AllSourcesFailedError",
    "BuildMetadata",
    "CompressedSegment",
    "CompressionFailureError",
    "CompressionMethod",
    "ContextCache",
    "ContextCandidate",
    "ContextEngine",
    "ContextEngineError",
    "ContextPriority",
    "ContextRequest",
    "ContextResult",
    "ContextSource",
    "ContextWindow",
    "ConversationContext",
    "ConversationMessage",
    "InMemoryTelemetrySink",
    "InvalidRequestError",
    "LoggingTelemetrySink",
    "OptimizationGoal",
    "OptimizedSelection",
    "OutputFormat",
    "QualityMetrics",
    "RawRecord",
    "RelevanceScore",
    "Settings",
    "SourceAdapter",
    "SourceUnavailableError",
    "StructureLayout",
    "TelemetrySink",
    "format_for_model",
    "get_settings",
    "reset_settings",
    "set_settings",
]
