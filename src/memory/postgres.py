"""PostgreSQL session store backed by an asyncpg pool."""

import logging
from datetime import timedelta
from typing import Any

import asyncpg

from ..core.config import Settings, settings as default_settings
from ..core.domain.chat import Message, MessageRole, Session, new_session_id
from ..core.exceptions import PersistenceError
from .base import SessionStore

logger = logging.getLogger(__name__)

CREATE_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    session_id VARCHAR(200) PRIMARY KEY,
    project_id INTEGER NOT NULL,
    topic_id VARCHAR(100) NOT NULL,
    selected_model VARCHAR(200),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, topic_id)
);
"""

CREATE_MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS chat_messages (
    message_id VARCHAR(100) PRIMARY KEY,
    session_id VARCHAR(200) NOT NULL REFERENCES chat_sessions(session_id) ON DELETE CASCADE,
    role VARCHAR(20) NOT NULL,
    content TEXT NOT NULL,
    hidden_context TEXT,
    model VARCHAR(200),
    timestamp TIMESTAMPTZ NOT NULL
);
"""

CREATE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_chat_messages_session_timestamp
ON chat_messages(session_id, timestamp);
"""

SESSION_COLUMNS = "session_id, project_id, topic_id, selected_model, created_at, updated_at"
MESSAGE_COLUMNS = "message_id, session_id, role, content, hidden_context, model, timestamp"


class PostgresSessionStore(SessionStore):
    """Session store persisting to the ``chat_sessions``/``chat_messages`` tables."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings
        self.pool: asyncpg.Pool | None = None

    async def __aenter__(self) -> "PostgresSessionStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()

    async def connect(self) -> None:
        """Establish connection pool to PostgreSQL."""
        try:
            self.pool = await asyncpg.create_pool(
                self.settings.postgres_url,
                min_size=self.settings.postgres_min_pool_size,
                max_size=self.settings.postgres_max_pool_size,
                command_timeout=30,
                server_settings={"jit": "off"},
            )
            async with self.pool.acquire() as conn:
                await conn.execute("SELECT 1")
            logger.info("Connected to PostgreSQL session store")
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to connect to PostgreSQL: {str(e)}")
            raise PersistenceError(f"Failed to connect to PostgreSQL: {e}") from e

    async def initialize_schema(self) -> None:
        """Create the session tables if they do not exist."""
        async with self._acquire() as conn:
            await conn.execute(CREATE_SESSIONS_TABLE)
            await conn.execute(CREATE_MESSAGES_TABLE)
            await conn.execute(CREATE_INDEXES)
        logger.info("Chat session schema initialized")

    async def initialize(self) -> None:
        await self.connect()
        await self.initialize_schema()

    async def cleanup(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Disconnected from PostgreSQL")

    async def health_check(self) -> bool:
        if not self.pool:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("SELECT 1")
            return True
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False

    def _acquire(self):
        if not self.pool:
            raise PersistenceError("Connection pool not initialized")
        return self.pool.acquire()

    async def find_or_create_session(
        self,
        project_id: int,
        topic_id: str,
        session_id: str | None = None,
    ) -> Session:
        query = f"""
        INSERT INTO chat_sessions (session_id, project_id, topic_id)
        VALUES ($1, $2, $3)
        ON CONFLICT (project_id, topic_id)
        DO UPDATE SET updated_at = chat_sessions.updated_at
        RETURNING {SESSION_COLUMNS}
        """
        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    query, session_id or new_session_id(project_id, topic_id), project_id, topic_id
                )
            return _row_to_session(row)
        except asyncpg.UniqueViolationError:
            # Requested session id already belongs to another pair
            logger.warning(f"Session id {session_id} is taken, creating a new one for {project_id}/{topic_id}")
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to resolve session: {e}") from e

        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    query, new_session_id(project_id, topic_id), project_id, topic_id
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to resolve session: {e}") from e
        return _row_to_session(row)

    async def get_session(self, project_id: int, topic_id: str) -> Session | None:
        try:
            async with self._acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {SESSION_COLUMNS} FROM chat_sessions WHERE project_id = $1 AND topic_id = $2",
                    project_id,
                    topic_id,
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to load session: {e}") from e
        return _row_to_session(row) if row else None

    async def append_message(self, session_id: str, message: Message) -> Message:
        try:
            async with self._acquire() as conn:
                async with conn.transaction():
                    # Row lock serializes appends to one session
                    locked = await conn.fetchval(
                        "SELECT session_id FROM chat_sessions WHERE session_id = $1 FOR UPDATE",
                        session_id,
                    )
                    if locked is None:
                        raise PersistenceError(f"Session {session_id} not found")

                    last = await conn.fetchval(
                        "SELECT MAX(timestamp) FROM chat_messages WHERE session_id = $1",
                        session_id,
                    )
                    timestamp = message.timestamp
                    if last is not None and timestamp <= last:
                        timestamp = last + timedelta(microseconds=1)

                    await conn.execute(
                        f"INSERT INTO chat_messages ({MESSAGE_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7)",
                        message.message_id,
                        session_id,
                        message.role.value,
                        message.content,
                        message.hidden_context,
                        message.model,
                        timestamp,
                    )
                    await conn.execute(
                        "UPDATE chat_sessions SET updated_at = NOW() WHERE session_id = $1",
                        session_id,
                    )
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to append message: {e}") from e

        return message.model_copy(update={"session_id": session_id, "timestamp": timestamp})

    async def list_messages(
        self,
        session_id: str,
        include_hidden: bool = False,
        limit: int | None = None,
    ) -> list[Message]:
        if limit is not None and limit <= 0:
            return []
        try:
            async with self._acquire() as conn:
                if limit is None:
                    rows = await conn.fetch(
                        f"SELECT {MESSAGE_COLUMNS} FROM chat_messages "
                        "WHERE session_id = $1 ORDER BY timestamp ASC",
                        session_id,
                    )
                else:
                    rows = await conn.fetch(
                        f"SELECT * FROM (SELECT {MESSAGE_COLUMNS} FROM chat_messages "
                        "WHERE session_id = $1 ORDER BY timestamp DESC LIMIT $2) recent "
                        "ORDER BY timestamp ASC",
                        session_id,
                        limit,
                    )
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to list messages: {e}") from e

        messages = [_row_to_message(row) for row in rows]
        if include_hidden:
            return messages
        return [message.public_copy() for message in messages]

    async def clear_messages(self, project_id: int, topic_id: str) -> int:
        try:
            async with self._acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM chat_messages WHERE session_id IN "
                    "(SELECT session_id FROM chat_sessions WHERE project_id = $1 AND topic_id = $2)",
                    project_id,
                    topic_id,
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to clear messages: {e}") from e

        # asyncpg returns the command tag, e.g. "DELETE 4"
        deleted = int(result.split()[-1]) if result else 0
        logger.info(f"Cleared {deleted} messages for project {project_id}, topic {topic_id}")
        return deleted

    async def update_selected_model(self, session_id: str, model: str) -> None:
        try:
            async with self._acquire() as conn:
                await conn.execute(
                    "UPDATE chat_sessions SET selected_model = $2, updated_at = NOW() WHERE session_id = $1",
                    session_id,
                    model,
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Failed to update selected model: {e}") from e


def _row_to_session(row: asyncpg.Record) -> Session:
    return Session(
        session_id=row["session_id"],
        project_id=row["project_id"],
        topic_id=row["topic_id"],
        selected_model=row["selected_model"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: asyncpg.Record) -> Message:
    return Message(
        message_id=row["message_id"],
        session_id=row["session_id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        hidden_context=row["hidden_context"],
        model=row["model"],
        timestamp=row["timestamp"],
    )
