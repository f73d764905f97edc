"""Data models for the context assembly engine."""

from context_engine.models.candidate import (
    COMPONENT_WEIGHT_KEYS,
    ContextCandidate,
    ContextPriority,
    ContextSource,
    RelevanceScore,
)
from context_engine.models.context import (
    BuildMetadata,
    CompressedSegment,
    CompressionMethod,
    ContextResult,
    ContextSection,
    ContextWindow,
    OptimizationGoal,
    OptimizedSelection,
    OutputFormat,
    QualityMetrics,
    StructureLayout,
)
from context_engine.models.request import (
    ContextRequest,
    ConversationContext,
    ConversationMessage,
    RawRecord,
)

__all__ = [
    # Candidate models
    "COMPONENT_WEIGHT_KEYS",
    "ContextCandidate",
    "ContextPriority",
    "ContextSource",
    "RelevanceScore",
    # Pipeline models
    "BuildMetadata",
    "CompressedSegment",
    "CompressionMethod",
    "ContextResult",
    "ContextSection",
    "ContextWindow",
    "OptimizationGoal",
    "OptimizedSelection",
    "OutputFormat",
    "QualityMetrics",
    "StructureLayout",
    # Request models
    "ContextRequest",
    "ConversationContext",
    "ConversationMessage",
    "RawRecord",
]
