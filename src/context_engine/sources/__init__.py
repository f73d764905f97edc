"""Source adapters for the memory tiers."""

from context_engine.sources.base import SourceAdapter
from context_engine.sources.conversation import ConversationLog, ConversationSource
from context_engine.sources.episodic import EpisodicMemorySource
from context_engine.sources.semantic import SemanticEntry, SemanticMemorySource
from context_engine.sources.state import AgentStateSource, AgentStateStore
from context_engine.sources.static import StaticRecordSource

__all__ = [
    "AgentStateSource",
    "AgentStateStore",
    "ConversationLog",
    "ConversationSource",
    "EpisodicMemorySource",
    "SemanticEntry",
    "SemanticMemorySource",
    "SourceAdapter",
    "StaticRecordSource",
]
