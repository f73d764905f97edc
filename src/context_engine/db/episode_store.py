"""SQLite-backed episodic memory store."""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

SCHEMA_VERSION = 1


class EpisodeStore:
    """Connection and operations manager for the episodes database."""

    def __init__(self, database_path: str = ":memory:") -> None:
        """Initialize the store.

        Args:
            database_path: Path to SQLite database file (":memory:" for tests)
        """
        self.database_path = database_path
        self.conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._in_transaction = False

    async def connect(self) -> None:
        """Open the connection, creating the data directory if needed."""
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = await aiosqlite.connect(self.database_path)
        self.conn.row_factory = aiosqlite.Row

    async def close(self) -> None:
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def execute(
        self, sql: str, parameters: tuple[Any, ...] | dict[str, Any] = ()
    ) -> aiosqlite.Cursor:
        """Execute a SQL statement.

        Args:
            sql: SQL statement
            parameters: Query parameters

        Returns:
            Database cursor
        """
        if not self.conn:
            raise RuntimeError("Database not connected")
        return await self.conn.execute(sql, parameters)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Context manager for write transactions.

        Nested use joins the outer transaction.

        Yields:
            None
        """
        if not self.conn:
            raise RuntimeError("Database not connected")

        if self._in_transaction:
            yield
            return

        async with self._write_lock:
            self._in_transaction = True
            await self.conn.execute("BEGIN")
            try:
                yield
                await self.conn.commit()
            except Exception:
                await self.conn.rollback()
                raise
            finally:
                self._in_transaction = False

    async def migrate(self) -> None:
        """Create or upgrade the schema."""
        try:
            cursor = await self.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            current_version = row[0] if row else 0
        except aiosqlite.OperationalError:
            current_version = 0

        if current_version < 1:
            await self._migrate_v1()

    async def _migrate_v1(self) -> None:
        """Initial schema."""
        async with self.transaction():
            await self.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at DATETIME NOT NULL
                )
            """)

            await self.execute("""
                CREATE TABLE IF NOT EXISTS episodes (
                    id TEXT PRIMARY KEY,
                    agent_id TEXT NOT NULL,
                    conversation_id TEXT,
                    content TEXT NOT NULL,
                    importance FLOAT NOT NULL DEFAULT 0.5,
                    tags TEXT DEFAULT '[]',
                    metadata TEXT DEFAULT '{}',
                    access_count INTEGER NOT NULL DEFAULT 0,
                    last_accessed_at DATETIME,
                    created_at DATETIME NOT NULL
                )
            """)

            await self.execute(
                "CREATE INDEX IF NOT EXISTS idx_episodes_agent_created "
                "ON episodes(agent_id, created_at DESC)"
            )

            await self.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, datetime.now(timezone.utc).isoformat()),
            )

    async def record(
        self,
        agent_id: str,
        content: str,
        *,
        conversation_id: str | None = None,
        importance: float = 0.5,
        tags: Sequence[str] = (),
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
        episode_id: str | None = None,
    ) -> str:
        """Store one episode.

        Args:
            agent_id: Owning agent
            content: Episode text
            conversation_id: Conversation the episode came from
            importance: Importance in [0, 1]
            tags: Free-form tags
            metadata: Additional metadata
            created_at: Episode time (defaults to now, UTC)
            episode_id: Explicit id (defaults to a new UUID)

        Returns:
            The episode id

        Raises:
            ValueError: If content is empty or importance is out of range
        """
        if not content.strip():
            raise ValueError("Episode content cannot be empty")
        if not 0.0 <= importance <= 1.0:
            raise ValueError("importance must be between 0.0 and 1.0")

        episode_id = episode_id or str(uuid.uuid4())
        created_at = created_at or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        async with self.transaction():
            await self.execute(
                """
                INSERT INTO episodes (
                    id, agent_id, conversation_id, content, importance,
                    tags, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    episode_id,
                    agent_id,
                    conversation_id,
                    content,
                    importance,
                    json.dumps(list(tags)),
                    json.dumps(metadata or {}),
                    created_at.isoformat(),
                ),
            )
        return episode_id

    async def search(
        self,
        agent_id: str,
        *,
        since: datetime | None = None,
        keywords: Sequence[str] = (),
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Find an agent's episodes, newest first.

        Args:
            agent_id: Owning agent
            since: Only episodes created at or after this time
            keywords: Episodes must contain at least one keyword (case-insensitive)
            limit: Maximum rows returned

        Returns:
            Episode rows as dictionaries with decoded tags and metadata
        """
        clauses = ["agent_id = ?"]
        params: list[Any] = [agent_id]
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since.astimezone(timezone.utc).isoformat())
        if keywords:
            clauses.append(
                "(" + " OR ".join("LOWER(content) LIKE ?" for _ in keywords) + ")"
            )
            params.extend(f"%{keyword.lower()}%" for keyword in keywords)
        params.append(limit)

        cursor = await self.execute(
            f"""
            SELECT * FROM episodes
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, id
            LIMIT ?
            """,
            tuple(params),
        )
        rows = await cursor.fetchall()
        return [self._row_to_dict(row) for row in rows]

    async def touch(self, episode_ids: Sequence[str]) -> None:
        """Record an access for each episode id."""
        if not episode_ids:
            return
        now = datetime.now(timezone.utc).isoformat()
        async with self.transaction():
            for episode_id in episode_ids:
                await self.execute(
                    "UPDATE episodes SET access_count = access_count + 1, "
                    "last_accessed_at = ? WHERE id = ?",
                    (now, episode_id),
                )

    def _row_to_dict(self, row: aiosqlite.Row) -> dict[str, Any]:
        last_accessed = row["last_accessed_at"]
        return {
            "id": row["id"],
            "agent_id": row["agent_id"],
            "conversation_id": row["conversation_id"],
            "content": row["content"],
            "importance": row["importance"],
            "tags": json.loads(row["tags"] or "[]"),
            "metadata": json.loads(row["metadata"] or "{}"),
            "access_count": row["access_count"],
            "last_accessed_at": datetime.fromisoformat(last_accessed) if last_accessed else None,
            "created_at": datetime.fromisoformat(row["created_at"]),
        }
