"""Engine settings management using Pydantic Settings."""

from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from context_engine.models.candidate import COMPONENT_WEIGHT_KEYS, ContextPriority
from context_engine.models.context import OutputFormat, StructureLayout


def _default_relevance_weights() -> dict[str, float]:
    return {
        "semantic": 0.35,
        "temporal": 0.2,
        "frequency": 0.15,
        "contextual": 0.2,
        "preference": 0.1,
    }


def _default_balanced_weights() -> dict[str, float]:
    return {
        "semantic": 0.25,
        "temporal": 0.15,
        "frequency": 0.05,
        "contextual": 0.15,
        "preference": 0.15,
        "priority": 0.25,
    }


def _default_source_priorities() -> dict[str, ContextPriority]:
    return {
        "state": ContextPriority.HIGH,
        "conversation": ContextPriority.HIGH,
        "episodic": ContextPriority.MEDIUM,
        "semantic": ContextPriority.MEDIUM,
        "knowledge": ContextPriority.LOW,
        "tool": ContextPriority.LOW,
    }


def _default_half_lives() -> dict[str, float]:
    return {
        "conversation": 1.0,
        "episodic": 72.0,
        "semantic": 720.0,
        "state": 24.0,
    }


def _check_weights(name: str, weights: dict[str, float], allowed: set[str]) -> None:
    unknown = set(weights) - allowed
    if unknown:
        raise ValueError(f"{name} has unknown keys: {sorted(unknown)}")
    negative = [key for key, value in weights.items() if value < 0]
    if negative:
        raise ValueError(f"{name} must be non-negative (got negative {sorted(negative)})")
    if sum(weights.values()) <= 0:
        raise ValueError(f"{name} must have a positive sum")


class Settings(BaseSettings):
    """Context engine configuration settings.

    All settings can be configured via environment variables with the
    prefix `CONTEXT_ENGINE_`. For example, `CONTEXT_ENGINE_DEFAULT_TOKEN_BUDGET`.
    Mapping fields accept JSON.
    """

    # Budget
    default_token_budget: int = Field(
        default=32000,
        ge=1,
        description="Token budget used when a request does not set one",
    )
    token_buffer_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=0.5,
        description="Share of the budget held back for section headers (0.1 = 10%)",
    )
    max_candidates: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum candidates kept in the retrieved pool",
    )
    relevance_threshold: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Minimum composite relevance for non-critical candidates",
    )

    # Retrieval
    source_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Per-source query timeout in seconds",
    )
    source_timeouts: dict[str, float] = Field(
        default_factory=dict,
        description="Per-source timeout overrides keyed by source name",
    )
    source_half_life_hours: dict[str, float] = Field(
        default_factory=_default_half_lives,
        description="Temporal decay half-life per source name, in hours",
    )
    default_half_life_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Half-life for sources without an override",
    )
    source_limit: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Records requested from each source",
    )
    min_successful_sources: int = Field(
        default=1,
        ge=1,
        description="Sources that must answer for retrieval to succeed",
    )
    source_default_priorities: dict[str, ContextPriority] = Field(
        default_factory=_default_source_priorities,
        description="Priority tier assigned to records that carry none",
    )

    # Scoring
    relevance_weights: dict[str, float] = Field(
        default_factory=_default_relevance_weights,
        description="Composite relevance weights",
    )
    balanced_weights: dict[str, float] = Field(
        default_factory=_default_balanced_weights,
        description="Balanced strategy weights (relevance components plus priority)",
    )
    max_access_count: int = Field(
        default=100,
        ge=1,
        description="Access count at which frequency importance saturates",
    )
    default_user_preference: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Preference used when neither record nor conversation sets one",
    )

    # Compression
    compression_enabled: bool = Field(
        default=True,
        description="Compress selections that exceed the budget",
    )
    extractive_keep_ratio: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Share of sentences kept by extractive compression",
    )
    semantic_max_concepts: int = Field(
        default=12,
        ge=1,
        le=100,
        description="Maximum concepts kept by semantic compression",
    )
    truncation_min_tokens: int = Field(
        default=8,
        ge=0,
        description="Smallest size truncation reduces a segment to",
    )

    # Structuring
    structure_layout: StructureLayout = Field(
        default=StructureLayout.BY_SOURCE,
        description="Default section grouping",
    )
    output_format: OutputFormat = Field(
        default=OutputFormat.MARKDOWN,
        description="Default rendering template",
    )

    # Cache
    cache_enabled: bool = Field(
        default=True,
        description="Enable the context window cache",
    )
    cache_max_entries: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Maximum number of cached windows",
    )
    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Cache entry time-to-live in seconds",
    )
    cache_shards: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Number of independently locked cache shards",
    )
    fingerprint_turns: int = Field(
        default=5,
        ge=0,
        description="Recent turns folded into the cache key",
    )

    # Fallback and deadline
    fallback_turns: int = Field(
        default=3,
        ge=0,
        description="Recent turns rendered by the fallback context",
    )
    fallback_quality_score: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Fixed quality score reported for fallback contexts",
    )
    build_timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Overall build deadline (None = no engine-imposed deadline)",
    )

    # Token Counter
    token_counter: Literal["tiktoken", "estimate"] = Field(
        default="tiktoken",
        description="Token counting backend",
    )
    token_counter_model: str = Field(
        default="gpt-4",
        description="Model name for tiktoken token counting",
    )

    # Logging and telemetry
    log_level: str = Field(default="INFO", description="Logging level")
    telemetry_enabled: bool = Field(
        default=True,
        description="Emit one telemetry record per build",
    )

    model_config = SettingsConfigDict(
        env_prefix="CONTEXT_ENGINE_", env_file=".env", env_file_encoding="utf-8"
    )

    @model_validator(mode="after")
    def validate_engine_config(self) -> Self:
        """Validate cross-field configuration."""
        _check_weights("relevance_weights", self.relevance_weights, set(COMPONENT_WEIGHT_KEYS))
        _check_weights(
            "balanced_weights", self.balanced_weights, {*COMPONENT_WEIGHT_KEYS, "priority"}
        )
        if self.cache_max_entries < self.cache_shards:
            raise ValueError(
                f"cache_max_entries ({self.cache_max_entries}) "
                f"must be >= cache_shards ({self.cache_shards})"
            )
        for name, timeout in self.source_timeouts.items():
            if timeout <= 0:
                raise ValueError(f"source_timeouts['{name}'] must be positive")
        for name, hours in self.source_half_life_hours.items():
            if hours <= 0:
                raise ValueError(f"source_half_life_hours['{name}'] must be positive")
        return self

    def timeout_for(self, source: str) -> float:
        """Return the query timeout for a source name."""
        return self.source_timeouts.get(source, self.source_timeout_seconds)

    def half_life_for(self, source: str) -> float:
        """Return the temporal decay half-life (hours) for a source name."""
        return self.source_half_life_hours.get(source, self.default_half_life_hours)

    def priority_for(self, source: str) -> ContextPriority:
        """Return the default priority tier for a source name."""
        return self.source_default_priorities.get(source, ContextPriority.MEDIUM)

    @property
    def effective_budget_ratio(self) -> float:
        return 1.0 - self.token_buffer_ratio
