"""Context assembly models: selections, segments and the final window."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from context_engine.models.candidate import ContextCandidate, ContextPriority, ContextSource


class OptimizationGoal(str, Enum):
    """Objective used by the optimizer to order candidates within a tier."""

    BALANCED = "balanced"
    RELEVANCE = "relevance"
    DIVERSITY = "diversity"
    FRESHNESS = "freshness"


class StructureLayout(str, Enum):
    """How segments are grouped into sections."""

    BY_SOURCE = "by_source"
    BY_PRIORITY = "by_priority"
    FLAT = "flat"


class OutputFormat(str, Enum):
    """Rendering template for the context block."""

    MARKDOWN = "markdown"
    XML = "xml"
    MINIMAL = "minimal"


class CompressionMethod(str, Enum):
    """Compression applied to a segment, least to most aggressive."""

    NONE = "none"
    TEMPLATE = "template"
    EXTRACTIVE = "extractive"
    SEMANTIC = "semantic"
    TRUNCATION = "truncation"


@dataclass(frozen=True)
class OptimizedSelection:
    """Ordered, budgeted subset of the candidate pool."""

    candidates: tuple[ContextCandidate, ...]
    total_tokens: int
    token_budget: int
    goal: OptimizationGoal
    diversity_score: float = 0.0
    budget_infeasible: bool = False
    tier_counts: dict[str, int] = field(default_factory=dict, compare=False)
    source_distribution: dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def budget_utilization(self) -> float:
        """Used tokens over budget; above 1.0 only when critical content overflows."""
        return self.total_tokens / self.token_budget if self.token_budget > 0 else 0.0

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(candidate.id for candidate in self.candidates)


@dataclass(frozen=True)
class CompressedSegment:
    """One candidate's text after (possible) compression."""

    source_candidate_id: str
    original_tokens: int
    compressed_tokens: int
    method: CompressionMethod
    text: str
    candidate: ContextCandidate = field(compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.compressed_tokens > self.original_tokens:
            raise ValueError(
                f"compressed_tokens ({self.compressed_tokens}) exceeds "
                f"original_tokens ({self.original_tokens})"
            )
        if self.method == CompressionMethod.NONE and self.compressed_tokens != self.original_tokens:
            raise ValueError("uncompressed segment must keep its original token count")

    @classmethod
    def uncompressed(cls, candidate: ContextCandidate) -> "CompressedSegment":
        """Wrap a candidate without altering its text."""
        return cls(
            source_candidate_id=candidate.id,
            original_tokens=candidate.token_estimate,
            compressed_tokens=candidate.token_estimate,
            method=CompressionMethod.NONE,
            text=candidate.text,
            candidate=candidate,
        )

    @property
    def priority(self) -> ContextPriority:
        return self.candidate.priority

    @property
    def source(self) -> ContextSource:
        return self.candidate.source

    @property
    def tokens_saved(self) -> int:
        return self.original_tokens - self.compressed_tokens


@dataclass(frozen=True)
class QualityMetrics:
    """Quality sub-scores of an assembled window, each in [0, 1]."""

    relevance: float = 0.0
    coherence: float = 0.0
    completeness: float = 0.0
    diversity: float = 0.0
    freshness: float = 0.0
    token_efficiency: float = 0.0

    @property
    def overall(self) -> float:
        score = (
            self.relevance * 0.3
            + self.coherence * 0.2
            + self.completeness * 0.2
            + self.diversity * 0.1
            + self.freshness * 0.1
            + self.token_efficiency * 0.1
        )
        return round(min(max(score, 0.0), 1.0), 6)


@dataclass(frozen=True)
class ContextSection:
    """A labeled group of segments in the rendered window."""

    key: str
    title: str
    segments: tuple[CompressedSegment, ...]
    text: str
    tokens: int


@dataclass(frozen=True)
class ContextWindow:
    """Final, budget-fitted context block for a model call."""

    sections: tuple[ContextSection, ...]
    text: str
    total_tokens: int
    token_budget: int
    quality: QualityMetrics
    quality_score: float
    sources_used: tuple[ContextSource, ...]
    build_time_ms: float
    layout: StructureLayout
    output_format: OutputFormat
    fallback: bool = False
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    @property
    def budget_utilization(self) -> float:
        return self.total_tokens / self.token_budget if self.token_budget > 0 else 0.0

    @property
    def segments(self) -> tuple[CompressedSegment, ...]:
        return tuple(segment for section in self.sections for segment in section.segments)

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return tuple(segment.source_candidate_id for segment in self.segments)


@dataclass(frozen=True)
class BuildMetadata:
    """Per-call facts about how a window was produced."""

    sources_used: tuple[ContextSource, ...]
    compression_applied: bool
    build_time_ms: float
    cache_hit: bool
    fallback: bool = False
    budget_infeasible: bool = False
    compression_ratio: float | None = None
    selection_diversity: float | None = None
    failed_sources: dict[str, str] = field(default_factory=dict)
    stage_latency_ms: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ContextResult:
    """Outbound result: the window plus build metadata."""

    window: ContextWindow
    metadata: BuildMetadata

    @property
    def text(self) -> str:
        return self.window.text

    @property
    def total_tokens(self) -> int:
        return self.window.total_tokens

    @property
    def quality_score(self) -> float:
        return self.window.quality_score
