"""Context node implementation.

Loads the session history and builds the bounded context window the
conversation stage sends to the model.
"""

import logging
from typing import Any

from ....memory.base import SessionStore
from ....memory.context.window_builder import ContextWindowBuilder
from ...domain.chat import Message
from ...domain.state import TurnStage, TurnState
from ...exceptions import PersistenceError
from ...topics import TopicCatalog
from ..base import NodeFunction
from .conversation import ConversationPromptBuilder, last_conversation_phase

logger = logging.getLogger(__name__)


class BuildContextNode(NodeFunction):
    """Node that assembles the context window for the turn."""

    def __init__(
        self,
        store: SessionStore,
        builder: ContextWindowBuilder,
        topics: TopicCatalog,
        prompts: ConversationPromptBuilder,
    ) -> None:
        self.store = store
        self.builder = builder
        self.topics = topics
        self.prompts = prompts

    @property
    def name(self) -> str:
        """Get the node name."""
        return TurnStage.BUILD_CONTEXT.value

    async def __call__(self, state: TurnState) -> dict[str, Any]:
        history = await self._load_history(state)
        phase = last_conversation_phase(history)

        topic = self.topics.get(state.topic_id)
        system_prompt = self.prompts.build(
            topic,
            phase,
            actions_enabled=state.actions_enabled,
            context_data=state.context_data,
        )

        window = self.builder.build(history, state.user_message, state.model, system_prompt)
        self.builder.log_usage(window)
        return {"context_window": window, "phase": phase}

    async def _load_history(self, state: TurnState) -> list[Message]:
        try:
            history = await self.store.list_messages(state.session_id, include_hidden=True)
        except PersistenceError as e:
            # Answer without history rather than failing the turn
            logger.warning(f"Could not load history for session {state.session_id}: {e}")
            return []
        return [message for message in history if message.message_id != state.user_message_id]
