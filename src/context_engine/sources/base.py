"""Source adapter interface shared by every memory tier."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from context_engine.models.candidate import ContextSource
from context_engine.models.request import ConversationMessage, RawRecord


class SourceAdapter(ABC):
    """Uniform query interface over one store.

    Adapters hold no per-request state, so one instance may serve many
    concurrent builds. The ``filters`` mapping passed to ``query`` carries
    ``conversation_id``, ``agent_id`` and ``recent_messages``.
    """

    source: ContextSource

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.source.value

    @abstractmethod
    async def query(
        self, text: str, filters: Mapping[str, Any], limit: int
    ) -> list[RawRecord]:
        """Return up to ``limit`` records relevant to ``text``.

        Args:
            text: Query text
            filters: Conversation identity and recent messages
            limit: Maximum records returned

        Returns:
            Raw records, most relevant or most recent first
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def recent_messages(filters: Mapping[str, Any]) -> list[ConversationMessage]:
    """Recent messages from a filters mapping, oldest first."""
    return list(filters.get("recent_messages") or [])
