"""Domain models for the chat orchestration core.

This module contains the data structures shared by the stages, the
session store and the HTTP surface.
"""

# Chat models - Sessions, messages and caller-facing shapes
from .chat import (
    ChatHistory,
    ChatRequest,
    ChatResponse,
    FunctionExecutionResult,
    HistoryMessage,
    Message,
    MessageRole,
    ModelSelection,
    Session,
)

# Context models - Bounded model input
from .context import ContextMessage, ContextWindow

# Function models - Registry metadata and typed results
from .functions import (
    CurrentOrderResult,
    FunctionDefinition,
    FunctionResult,
    Highlight,
    HighlightMapResult,
    HighlightStatsResult,
    ProjectDataSource,
    ProjectScope,
    snapshot_from_context,
)

# Intent models - Conversation summary and structured execution
from .intents import (
    ConversationPhase,
    IntentKind,
    IntentName,
    IntentSummary,
    SectionMarker,
    StructuredExecutionInput,
    StructuredExecutionOutput,
)

# State models - Turn state machine
from .state import TurnStage, TurnState

__all__ = [
    # Chat models
    "Session",
    "Message",
    "MessageRole",
    "ChatRequest",
    "ChatResponse",
    "ChatHistory",
    "HistoryMessage",
    "ModelSelection",
    "FunctionExecutionResult",

    # Context models
    "ContextMessage",
    "ContextWindow",

    # Function models
    "Highlight",
    "ProjectDataSource",
    "ProjectScope",
    "FunctionDefinition",
    "HighlightMapResult",
    "CurrentOrderResult",
    "HighlightStatsResult",
    "FunctionResult",
    "snapshot_from_context",

    # Intent models
    "IntentName",
    "IntentKind",
    "ConversationPhase",
    "IntentSummary",
    "SectionMarker",
    "StructuredExecutionInput",
    "StructuredExecutionOutput",

    # State models
    "TurnStage",
    "TurnState",
]
