"""Agent configuration/state source."""

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from context_engine.models.candidate import ContextPriority, ContextSource
from context_engine.models.request import RawRecord
from context_engine.sources.base import SourceAdapter


class AgentStateStore:
    """Per-agent key/value state with update times."""

    def __init__(self) -> None:
        self._state: dict[str, dict[str, tuple[Any, datetime]]] = {}

    def set(self, agent_id: str, key: str, value: Any, updated_at: datetime | None = None) -> None:
        updated_at = updated_at or datetime.now(timezone.utc)
        self._state.setdefault(agent_id, {})[key] = (value, updated_at)

    def update(self, agent_id: str, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self.set(agent_id, key, value)

    def remove(self, agent_id: str, key: str) -> None:
        self._state.get(agent_id, {}).pop(key, None)

    def fields(self, agent_id: str) -> dict[str, tuple[Any, datetime]]:
        """Snapshot of an agent's fields."""
        return dict(self._state.get(agent_id, {}))


class AgentStateSource(SourceAdapter):
    """Direct field lookup: one record per state field.

    Pinned keys are always emitted first and marked critical so the
    optimizer can never drop them.
    """

    source = ContextSource.STATE

    def __init__(
        self,
        store: AgentStateStore,
        pinned_keys: Iterable[str] = (),
        name: str | None = None,
    ) -> None:
        super().__init__(name)
        self.store = store
        self.pinned_keys = tuple(pinned_keys)

    async def query(
        self, text: str, filters: Mapping[str, Any], limit: int
    ) -> list[RawRecord]:
        agent_id = filters.get("agent_id")
        if not agent_id:
            return []

        fields = self.store.fields(agent_id)
        pinned = [key for key in self.pinned_keys if key in fields]
        others = sorted(key for key in fields if key not in self.pinned_keys)

        records = []
        # Pinned fields ignore the limit
        for key in pinned + others[: max(limit - len(pinned), 0)]:
            value, updated_at = fields[key]
            content = value if isinstance(value, (dict, list)) else f"{key}: {value}"
            records.append(
                RawRecord(
                    id=f"state:{agent_id}:{key}",
                    content=content,
                    timestamp=updated_at,
                    importance=1.0 if key in self.pinned_keys else 0.7,
                    priority=ContextPriority.CRITICAL if key in self.pinned_keys else None,
                    metadata={"title": key, "state_key": key},
                )
            )
        return records
