"""Candidate models produced by the retrieval pipeline."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class ContextSource(str, Enum):
    """Memory tier a candidate was retrieved from."""

    CONVERSATION = "conversation"
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    STATE = "state"
    TOOL = "tool"
    KNOWLEDGE = "knowledge"


class ContextPriority(str, Enum):
    """Coarse inclusion tier, ordered from most to least important."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    OPTIONAL = "optional"

    @property
    def rank(self) -> int:
        """Position in tier order (critical=0 ... optional=4)."""
        return _PRIORITY_ORDER.index(self)

    @property
    def weight(self) -> float:
        """Priority bonus used by the balanced selection strategy."""
        return _PRIORITY_WEIGHTS[self]

    @classmethod
    def ordered(cls) -> tuple["ContextPriority", ...]:
        return _PRIORITY_ORDER


_PRIORITY_ORDER = (
    ContextPriority.CRITICAL,
    ContextPriority.HIGH,
    ContextPriority.MEDIUM,
    ContextPriority.LOW,
    ContextPriority.OPTIONAL,
)

_PRIORITY_WEIGHTS = {
    ContextPriority.CRITICAL: 1.0,
    ContextPriority.HIGH: 0.8,
    ContextPriority.MEDIUM: 0.6,
    ContextPriority.LOW: 0.4,
    ContextPriority.OPTIONAL: 0.2,
}

# Config weight key -> RelevanceScore component
COMPONENT_WEIGHT_KEYS: dict[str, str] = {
    "semantic": "semantic_similarity",
    "temporal": "temporal_relevance",
    "frequency": "frequency_importance",
    "contextual": "contextual_fit",
    "preference": "user_preference",
}


def render_content(content: str | dict[str, Any] | list[Any]) -> str:
    """Render content as text; structured payloads become canonical JSON."""
    if isinstance(content, str):
        return content
    return json.dumps(content, sort_keys=True, ensure_ascii=False, default=str)


def _clamp(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


@dataclass(frozen=True)
class RelevanceScore:
    """Multi-factor relevance of one candidate, every field in [0, 1]."""

    semantic_similarity: float = 0.0
    temporal_relevance: float = 0.0
    frequency_importance: float = 0.0
    contextual_fit: float = 0.0
    user_preference: float = 0.0
    composite: float = 0.0

    def __post_init__(self) -> None:
        for name in (*COMPONENT_WEIGHT_KEYS.values(), "composite"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")

    @classmethod
    def from_components(
        cls,
        weights: Mapping[str, float],
        *,
        semantic_similarity: float = 0.0,
        temporal_relevance: float = 0.0,
        frequency_importance: float = 0.0,
        contextual_fit: float = 0.0,
        user_preference: float = 0.0,
    ) -> "RelevanceScore":
        """Build a score whose composite is the normalized weighted sum.

        Args:
            weights: Non-negative weights keyed by ``COMPONENT_WEIGHT_KEYS``
            semantic_similarity: Query/content similarity
            temporal_relevance: Exponential time decay
            frequency_importance: Importance and access frequency
            contextual_fit: Overlap with the recent conversation
            user_preference: Preference for the source or tags

        Returns:
            RelevanceScore with composite computed once

        Raises:
            ValueError: If a weight is negative or all weights are zero
        """
        components = {
            "semantic_similarity": _clamp(semantic_similarity),
            "temporal_relevance": _clamp(temporal_relevance),
            "frequency_importance": _clamp(frequency_importance),
            "contextual_fit": _clamp(contextual_fit),
            "user_preference": _clamp(user_preference),
        }

        total_weight = 0.0
        weighted = 0.0
        for key, component in COMPONENT_WEIGHT_KEYS.items():
            weight = float(weights.get(key, 0.0))
            if weight < 0.0:
                raise ValueError(f"weight '{key}' must be non-negative, got {weight}")
            total_weight += weight
            weighted += weight * components[component]

        if total_weight <= 0.0:
            raise ValueError("relevance weights must have a positive sum")

        return cls(**components, composite=_clamp(weighted / total_weight))


@dataclass(frozen=True)
class ContextCandidate:
    """A unit of retrievable context before selection.

    Candidates are immutable; stages that change priority or content
    derive new values instead of editing in place.
    """

    id: str
    source: ContextSource
    content: str | dict[str, Any] | list[Any]
    token_estimate: int
    priority: ContextPriority
    relevance: RelevanceScore
    created_at: datetime
    last_accessed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if self.token_estimate < 0:
            raise ValueError(f"token_estimate must be >= 0, got {self.token_estimate}")

    @property
    def text(self) -> str:
        """Content rendered as text; structured payloads become canonical JSON."""
        return render_content(self.content)

    def with_priority(self, priority: ContextPriority) -> "ContextCandidate":
        """Return a copy carrying a different priority tier."""
        if priority == self.priority:
            return self
        return replace(self, priority=priority)
