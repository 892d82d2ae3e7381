"""State models for a chat turn.

These models carry the values a single turn accumulates as it moves
through the LangGraph state machine.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .chat import FunctionExecutionResult
from .context import ContextWindow
from .intents import (
    ConversationPhase,
    IntentSummary,
    StructuredExecutionInput,
    StructuredExecutionOutput,
)


class TurnStage(str, Enum):
    """Nodes of the turn state machine.

    Every confirmed request walks all of them in order; conversational
    replies stop after ``CONVERSE`` and analysis intents skip ``APPLY``.
    """

    BUILD_CONTEXT = "build_context"
    CONVERSE = "converse"
    PREPARE = "prepare"
    EXECUTE = "execute"
    VALIDATE = "validate"
    APPLY = "apply"


class TurnState(BaseModel):
    """Everything one chat turn knows while it runs through the graph."""

    # Core identifiers
    project_id: int = Field(..., description="Project the turn belongs to")
    topic_id: str = Field(..., description="Topic (endpoint) of the conversation")
    session_id: str = Field(..., description="Session the turn is recorded in")
    model: str = Field(..., description="Model selected for the conversation")

    # Input
    user_message: str = Field(..., description="What the user just said")
    user_message_id: str | None = Field(
        None, description="Id of the persisted user message, excluded from history"
    )
    actions_enabled: bool = Field(
        default=True, description="Whether a confirmed intent may be executed"
    )
    context_data: dict[str, Any] | None = None

    # Conversation stage
    context_window: ContextWindow | None = None
    phase: ConversationPhase = ConversationPhase.LISTENING
    reply: str | None = None
    intent_summary: IntentSummary | None = None

    # Preparation stage
    execution_input: StructuredExecutionInput | None = None
    execution_prompt: str | None = None
    function_results: list[FunctionExecutionResult] = Field(default_factory=list)

    # Execution stage
    execution_output: StructuredExecutionOutput | None = None
    execution_attempts: int = 0

    # Validation / apply
    validated: bool = False
    applied: bool = False

    @property
    def confirmed(self) -> bool:
        return self.intent_summary is not None and self.intent_summary.confirmed
