"""Session store abstraction for chat conversations."""

from abc import ABC, abstractmethod

from ..core.domain.chat import Message, Session


class SessionStore(ABC):
    """Persists sessions and their ordered message history.

    Implementations raise :class:`~src.core.exceptions.PersistenceError` on
    storage failures.
    """

    @abstractmethod
    async def find_or_create_session(
        self,
        project_id: int,
        topic_id: str,
        session_id: str | None = None,
    ) -> Session:
        """Return the session of a (project, topic) pair, creating it lazily.

        Args:
            project_id: Project identifier
            topic_id: Topic (endpoint) identifier
            session_id: Id to use if the session has to be created

        Returns:
            The one session of the pair; repeated calls return the same id
        """
        pass

    @abstractmethod
    async def get_session(self, project_id: int, topic_id: str) -> Session | None:
        """Return the session of a (project, topic) pair without creating it."""
        pass

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> Message:
        """Append a message to a session.

        The stored timestamp is strictly greater than the previous message's.

        Returns:
            The message as stored
        """
        pass

    @abstractmethod
    async def list_messages(
        self,
        session_id: str,
        include_hidden: bool = False,
        limit: int | None = None,
    ) -> list[Message]:
        """Return a session's messages oldest first.

        Args:
            session_id: Session identifier
            include_hidden: Keep hidden context (internal callers only)
            limit: Return only the most recent ``limit`` messages
        """
        pass

    @abstractmethod
    async def clear_messages(self, project_id: int, topic_id: str) -> int:
        """Delete the message history of a (project, topic) pair.

        Clearing a pair without a session is not an error.

        Returns:
            Number of deleted messages
        """
        pass

    @abstractmethod
    async def update_selected_model(self, session_id: str, model: str) -> None:
        """Remember the model preference of a session."""
        pass

    async def initialize(self) -> None:
        """Prepare connections and schema."""

    async def cleanup(self) -> None:
        """Release connections."""

    async def health_check(self) -> bool:
        return True
