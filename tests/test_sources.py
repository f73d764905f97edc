"""Tests for source adapters and the episode store."""

from datetime import datetime, timedelta, timezone

import pytest

from context_engine.models.candidate import ContextPriority, ContextSource
from context_engine.models.request import ConversationMessage, RawRecord
from context_engine.sources.conversation import ConversationLog, ConversationSource
from context_engine.sources.episodic import EpisodicMemorySource
from context_engine.sources.semantic import SemanticMemorySource
from context_engine.sources.state import AgentStateSource, AgentStateStore
from context_engine.sources.static import StaticRecordSource


def filters(conversation_id: str = "conv-1", agent_id: str = "agent-1", messages=None) -> dict:
    return {
        "conversation_id": conversation_id,
        "agent_id": agent_id,
        "recent_messages": messages or [],
    }


@pytest.mark.asyncio
class TestEpisodeStore:
    """Test the SQLite episode store."""

    async def test_record_and_search(self, episode_store):
        """Test stored episodes come back newest first."""
        now = datetime.now(timezone.utc)
        await episode_store.record("a", "older deploy", created_at=now - timedelta(hours=2))
        await episode_store.record("a", "newer deploy", created_at=now - timedelta(hours=1))
        await episode_store.record("b", "other agent deploy")

        rows = await episode_store.search("a")

        assert [row["content"] for row in rows] == ["newer deploy", "older deploy"]

    async def test_search_filters(self, episode_store):
        """Test time window and keyword filters."""
        now = datetime.now(timezone.utc)
        await episode_store.record("a", "Rolled back the BILLING deploy", tags=["ops"])
        await episode_store.record("a", "billing from last month", created_at=now - timedelta(days=40))
        await episode_store.record("a", "unrelated chatter")

        rows = await episode_store.search(
            "a", since=now - timedelta(days=7), keywords=["billing"]
        )

        assert len(rows) == 1
        assert rows[0]["content"] == "Rolled back the BILLING deploy"
        assert rows[0]["tags"] == ["ops"]

    async def test_touch_increments_access(self, episode_store):
        """Test touching records an access."""
        episode_id = await episode_store.record("a", "something happened")

        await episode_store.touch([episode_id])
        rows = await episode_store.search("a")

        assert rows[0]["access_count"] == 1
        assert rows[0]["last_accessed_at"] is not None

    async def test_empty_content_rejected(self, episode_store):
        """Test empty episodes are rejected."""
        with pytest.raises(ValueError, match="cannot be empty"):
            await episode_store.record("a", "   ")

    async def test_migrate_is_idempotent(self, episode_store):
        """Test running migrations twice is safe."""
        await episode_store.migrate()

        cursor = await episode_store.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        assert row[0] == 1


@pytest.mark.asyncio
class TestConversationSource:
    """Test the conversation adapter."""

    async def test_newest_first_from_request(self):
        """Test request turns are returned newest first."""
        messages = [
            ConversationMessage(role="user", content="first"),
            ConversationMessage(role="assistant", content="second"),
            ConversationMessage(role="user", content="third"),
        ]
        source = ConversationSource()

        records = await source.query("q", filters(messages=messages), limit=2)

        assert [r.content for r in records] == ["user: third", "assistant: second"]
        assert records[0].id == "conversation:conv-1:2"
        assert records[0].importance > records[1].importance
        assert records[0].timestamp > records[1].timestamp

    async def test_log_is_authoritative(self):
        """Test a conversation log replaces the request turns."""
        log = ConversationLog(max_turns=2)
        for text in ("a", "b", "c"):
            log.append("conv-1", ConversationMessage(role="user", content=text))
        source = ConversationSource(log=log)

        records = await source.query("q", filters(), limit=10)

        assert [r.content for r in records] == ["user: c", "user: b"]


@pytest.mark.asyncio
class TestEpisodicMemorySource:
    """Test the episodic adapter."""

    async def test_keyword_prefilter(self, episode_store):
        """Test only episodes sharing a query keyword are returned."""
        await episode_store.record("agent-1", "Deployed the billing service", conversation_id="c0")
        await episode_store.record("agent-1", "Discussed lunch options")
        source = EpisodicMemorySource(episode_store)

        records = await source.query("billing deployment status", filters(), limit=5)

        assert len(records) == 1
        assert records[0].id.startswith("episodic:")
        assert records[0].metadata["conversation_id"] == "c0"

    async def test_records_access(self, episode_store):
        """Test returned episodes are touched."""
        await episode_store.record("agent-1", "Deployed the billing service")
        source = EpisodicMemorySource(episode_store, keyword_prefilter=False)

        await source.query("anything", filters(), limit=5)
        records = await source.query("anything", filters(), limit=5)

        assert records[0].access_count == 1

    async def test_window_excludes_old_episodes(self, episode_store):
        """Test episodes outside the time window are ignored."""
        old = datetime.now(timezone.utc) - timedelta(hours=10)
        await episode_store.record("agent-1", "billing outage", created_at=old)
        source = EpisodicMemorySource(episode_store, window_hours=1)

        assert await source.query("billing", filters(), limit=5) == []

    async def test_missing_agent(self, episode_store):
        """Test queries without an agent return nothing."""
        source = EpisodicMemorySource(episode_store)

        assert await source.query("billing", filters(agent_id=""), limit=5) == []


@pytest.mark.asyncio
class TestSemanticMemorySource:
    """Test the semantic adapter."""

    async def test_top_k_by_similarity(self, mock_embedding_provider):
        """Test the closest facts are returned first with their similarity."""
        source = SemanticMemorySource(mock_embedding_provider, min_similarity=0.1)
        await source.add(["billing service runs on postgres", "the cafeteria serves soup"])

        records = await source.query("billing postgres", filters(), limit=5)

        assert records[0].content == "billing service runs on postgres"
        assert records[0].similarity is not None
        assert all(r.similarity >= 0.1 for r in records)
        assert len(source) == 2

    async def test_agent_scoping(self, mock_embedding_provider):
        """Test facts scoped to another agent are hidden."""
        source = SemanticMemorySource(mock_embedding_provider, min_similarity=0.1)
        await source.add(["billing secret fact"], agent_id="agent-2")
        await source.add(["billing shared fact"])

        records = await source.query("billing fact", filters(), limit=5)

        assert [r.content for r in records] == ["billing shared fact"]

    async def test_empty_index(self, mock_embedding_provider):
        """Test an empty index returns nothing without embedding."""
        source = SemanticMemorySource(mock_embedding_provider)

        assert await source.query("billing", filters(), limit=5) == []
        mock_embedding_provider.embed.assert_not_called()


@pytest.mark.asyncio
class TestAgentStateSource:
    """Test the agent state adapter."""

    async def test_pinned_keys_are_critical(self):
        """Test pinned fields come first, critical, beyond the limit."""
        store = AgentStateStore()
        store.update("agent-1", {"plan": "pro", "locale": "en", "goal": "ship v2"})
        source = AgentStateSource(store, pinned_keys=["goal"])

        records = await source.query("q", filters(), limit=1)

        assert [r.metadata["state_key"] for r in records] == ["goal"]
        assert records[0].priority == ContextPriority.CRITICAL
        assert records[0].content == "goal: ship v2"

    async def test_structured_values_kept(self):
        """Test dict values are passed through as structured content."""
        store = AgentStateStore()
        store.set("agent-1", "profile", {"tier": "gold"})
        source = AgentStateSource(store)

        records = await source.query("q", filters(), limit=5)

        assert records[0].content == {"tier": "gold"}
        assert records[0].priority is None
        assert records[0].id == "state:agent-1:profile"


@pytest.mark.asyncio
class TestStaticRecordSource:
    """Test fixed record lists."""

    async def test_ranks_by_overlap(self):
        """Test records matching the query come first."""
        now = datetime.now(timezone.utc)
        records = [
            RawRecord(content="search_web: look things up online", timestamp=now),
            RawRecord(content="send_invoice: bill a customer", timestamp=now),
        ]
        source = StaticRecordSource(ContextSource.TOOL, records, name="tools")

        result = await source.query("invoice customer", filters(), limit=1)

        assert result[0].content.startswith("send_invoice")
        assert source.name == "tools"
        assert source.source == ContextSource.TOOL
