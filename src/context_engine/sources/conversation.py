"""Conversation log source."""

from collections import deque
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from context_engine.models.candidate import ContextSource
from context_engine.models.request import ConversationMessage, RawRecord
from context_engine.sources.base import SourceAdapter, recent_messages


class ConversationLog:
    """Bounded in-memory history per conversation."""

    def __init__(self, max_turns: int = 200) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        self.max_turns = max_turns
        self._turns: dict[str, deque[ConversationMessage]] = {}

    def append(self, conversation_id: str, message: ConversationMessage) -> None:
        if message.timestamp is None:
            message = message.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        self._turns.setdefault(conversation_id, deque(maxlen=self.max_turns)).append(message)

    def history(self, conversation_id: str) -> list[ConversationMessage]:
        """Messages of a conversation, oldest first."""
        return list(self._turns.get(conversation_id, ()))

    def clear(self, conversation_id: str) -> None:
        self._turns.pop(conversation_id, None)


class ConversationSource(SourceAdapter):
    """Serves recent turns of the current conversation, newest first.

    With a ``ConversationLog`` the log is authoritative; otherwise the
    request's own recent messages are used.
    """

    source = ContextSource.CONVERSATION

    def __init__(self, log: ConversationLog | None = None, name: str | None = None) -> None:
        super().__init__(name)
        self.log = log

    async def query(
        self, text: str, filters: Mapping[str, Any], limit: int
    ) -> list[RawRecord]:
        conversation_id = filters.get("conversation_id", "")
        if self.log is not None:
            messages = self.log.history(conversation_id)
        else:
            messages = recent_messages(filters)

        now = datetime.now(timezone.utc)
        total = len(messages)
        records = []
        for index in range(total - 1, max(total - limit, 0) - 1, -1):
            message = messages[index]
            age = total - 1 - index
            # Untimestamped turns are spaced one second apart, newest at now
            timestamp = message.timestamp or now - timedelta(seconds=age)
            records.append(
                RawRecord(
                    id=f"conversation:{conversation_id}:{index}",
                    content=f"{message.role}: {message.content}",
                    timestamp=timestamp,
                    importance=0.5 + 0.5 / (age + 1),
                    metadata={"role": message.role, "turn": index},
                )
            )
        return records
