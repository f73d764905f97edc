"""Inbound request and source record models."""

from datetime import datetime, timezone
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from context_engine.models.candidate import ContextPriority, ContextSource
from context_engine.models.context import OptimizationGoal, OutputFormat, StructureLayout


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConversationMessage(BaseModel):
    """One turn of the ongoing conversation."""

    role: str = Field(min_length=1)
    content: str
    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)


class ConversationContext(BaseModel):
    """Identity and recent history of the conversation being served."""

    conversation_id: str = Field(min_length=1)
    agent_id: str = Field(min_length=1)
    recent_messages: list[ConversationMessage] = Field(default_factory=list)
    user_preferences: dict[str, float] = Field(
        default_factory=dict,
        description="Preference in [0, 1] keyed by source name or record tag",
    )

    @field_validator("user_preferences")
    @classmethod
    def _preferences_in_range(cls, value: dict[str, float]) -> dict[str, float]:
        for key, weight in value.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"user preference '{key}' must be between 0.0 and 1.0")
        return value

    def last_turns(self, count: int) -> list[ConversationMessage]:
        """Return the most recent ``count`` messages in chronological order."""
        if count <= 0:
            return []
        return self.recent_messages[-count:]


class ContextRequest(BaseModel):
    """Request to assemble context for one conversational turn."""

    query: str
    conversation_context: ConversationContext
    token_budget: int | None = Field(
        default=None, ge=1, description="Token budget (None = configured default)"
    )
    optimization_goal: OptimizationGoal = OptimizationGoal.BALANCED
    required_sources: list[ContextSource] | None = None
    excluded_sources: list[ContextSource] | None = None
    priority_overrides: dict[str, ContextPriority] = Field(
        default_factory=dict,
        description="Priority keyed by candidate id or source name",
    )
    structure_layout: StructureLayout | None = None
    output_format: OutputFormat | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_sources(self) -> Self:
        """Reject requests that both require and exclude a source."""
        if self.required_sources and self.excluded_sources:
            overlap = set(self.required_sources) & set(self.excluded_sources)
            if overlap:
                names = sorted(source.value for source in overlap)
                raise ValueError(f"sources both required and excluded: {names}")
        return self


class RawRecord(BaseModel):
    """Record returned by a source adapter before normalization."""

    content: str | dict[str, Any] | list[Any]
    timestamp: datetime
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    id: str | None = None
    similarity: float | None = Field(default=None, ge=0.0, le=1.0)
    access_count: int = Field(default=0, ge=0)
    last_accessed_at: datetime | None = None
    priority: ContextPriority | None = None
    token_count: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp", "last_accessed_at")
    @classmethod
    def _utc_datetimes(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)
