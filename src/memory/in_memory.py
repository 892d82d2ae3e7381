"""Process-local session store."""

import asyncio
import logging
from datetime import timedelta

from ..core.domain.chat import Message, Session, new_session_id, utc_now
from ..core.exceptions import PersistenceError
from .base import SessionStore

logger = logging.getLogger(__name__)


class InMemorySessionStore(SessionStore):
    """Session store keeping everything in dictionaries.

    Suitable for development and tests; data is lost on restart.
    """

    def __init__(self) -> None:
        self._sessions: dict[tuple[int, str], Session] = {}
        self._sessions_by_id: dict[str, Session] = {}
        self._messages: dict[str, list[Message]] = {}
        self._lock = asyncio.Lock()

    async def find_or_create_session(
        self,
        project_id: int,
        topic_id: str,
        session_id: str | None = None,
    ) -> Session:
        async with self._lock:
            key = (project_id, topic_id)
            session = self._sessions.get(key)
            if session is not None:
                return session

            new_id = session_id or new_session_id(project_id, topic_id)
            if new_id in self._sessions_by_id:
                new_id = new_session_id(project_id, topic_id)
            session = Session(session_id=new_id, project_id=project_id, topic_id=topic_id)
            self._sessions[key] = session
            self._sessions_by_id[new_id] = session
            self._messages[new_id] = []
            logger.info(f"🆕 Created session {new_id} for project {project_id}, topic {topic_id}")
            return session

    async def get_session(self, project_id: int, topic_id: str) -> Session | None:
        return self._sessions.get((project_id, topic_id))

    async def append_message(self, session_id: str, message: Message) -> Message:
        async with self._lock:
            session = self._sessions_by_id.get(session_id)
            if session is None:
                raise PersistenceError(f"Session {session_id} not found")

            history = self._messages[session_id]
            timestamp = message.timestamp
            if history and timestamp <= history[-1].timestamp:
                timestamp = history[-1].timestamp + timedelta(microseconds=1)

            stored = message.model_copy(update={"session_id": session_id, "timestamp": timestamp})
            history.append(stored)
            self._touch(session)
            return stored

    async def list_messages(
        self,
        session_id: str,
        include_hidden: bool = False,
        limit: int | None = None,
    ) -> list[Message]:
        messages = list(self._messages.get(session_id, []))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        if include_hidden:
            return messages
        return [message.public_copy() for message in messages]

    async def clear_messages(self, project_id: int, topic_id: str) -> int:
        async with self._lock:
            session = self._sessions.get((project_id, topic_id))
            if session is None:
                return 0
            deleted = len(self._messages[session.session_id])
            self._messages[session.session_id] = []
            self._touch(session)
            logger.info(f"Cleared {deleted} messages from session {session.session_id}")
            return deleted

    async def update_selected_model(self, session_id: str, model: str) -> None:
        async with self._lock:
            session = self._sessions_by_id.get(session_id)
            if session is None:
                raise PersistenceError(f"Session {session_id} not found")
            session.selected_model = model
            self._touch(session)

    @staticmethod
    def _touch(session: Session) -> None:
        session.updated_at = utc_now()
