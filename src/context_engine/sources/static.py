"""Fixed record lists such as tool definitions or knowledge base entries."""

from collections.abc import Iterable, Mapping
from typing import Any

from context_engine.models.candidate import ContextSource
from context_engine.models.request import RawRecord
from context_engine.sources.base import SourceAdapter
from context_engine.utils.similarity import lexical_overlap


class StaticRecordSource(SourceAdapter):
    """Ranks a fixed record list by keyword overlap with the query."""

    def __init__(
        self,
        source: ContextSource,
        records: Iterable[RawRecord],
        name: str | None = None,
    ) -> None:
        self.source = source
        super().__init__(name)
        self.records = list(records)

    async def query(
        self, text: str, filters: Mapping[str, Any], limit: int
    ) -> list[RawRecord]:
        scored = []
        for index, record in enumerate(self.records):
            body = record.content if isinstance(record.content, str) else str(record.content)
            scored.append((lexical_overlap(text, body), index, record))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [record for _, _, record in scored[:limit]]
