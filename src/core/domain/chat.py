"""Session, message and caller-facing request/response models."""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .intents import OrderItem


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    """Generate a unique message identifier."""
    return f"msg_{uuid.uuid4().hex}"


def new_session_id(project_id: int, topic_id: str) -> str:
    """Generate a unique session identifier for a (project, topic) pair."""
    return f"session_{project_id}_{topic_id}_{uuid.uuid4().hex[:12]}"


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names for API callers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRole(str, Enum):
    """Author of a message within a session."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


class Session(BaseModel):
    """One ongoing conversation keyed by (project_id, topic_id)."""

    session_id: str = Field(..., description="Opaque unique session identifier")
    project_id: int = Field(..., gt=0)
    topic_id: str = Field(..., min_length=1)
    selected_model: str | None = Field(
        default=None, description="Model preference remembered for this session"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Message(BaseModel):
    """A single message in a session's history."""

    message_id: str = Field(default_factory=new_message_id)
    session_id: str = ""
    role: MessageRole
    content: str
    hidden_context: str | None = Field(
        default=None, description="Model-facing context, never shown to callers"
    )
    model: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)

    def hidden_data(self) -> dict[str, Any]:
        """Decode the hidden context JSON, returning an empty dict if absent or invalid."""
        if not self.hidden_context:
            return {}
        try:
            data = json.loads(self.hidden_context)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def public_copy(self) -> "Message":
        """Return a copy safe to expose to callers (hidden context removed)."""
        return self.model_copy(update={"hidden_context": None})


class ChatRequest(CamelModel):
    """Incoming chat turn from a caller."""

    project_id: int = Field(default=0, description="Project the conversation belongs to")
    topic_id: str = Field(
        default="",
        validation_alias=AliasChoices("topicId", "topic_id", "endpointId", "endpoint_id"),
        description="Topic (endpoint) the conversation is about",
    )
    message: str = ""
    session_id: str | None = None
    context_data: dict[str, Any] | None = None
    model: str | None = None
    enable_function_calls: bool = True
    mode: str | None = None


class FunctionExecutionResult(CamelModel):
    """Outcome of one function registry call made while preparing a turn."""

    function_name: str
    success: bool
    result: Any | None = None
    error: str | None = None
    message: str | None = None


class ChatResponse(CamelModel):
    """Answer returned for a chat turn."""

    session_id: str
    message_id: str
    message: str
    model: str | None = None
    success: bool = True
    error: str | None = None
    function_results: list[FunctionExecutionResult] | None = None
    actions_available: list[str] | None = None
    actions_performed: list[str] | None = None
    action_summary: str | None = None
    has_actions: bool | None = None
    new_order: list[OrderItem] | None = None


class HistoryMessage(CamelModel):
    """Message as exposed to callers; hidden context is not part of the shape."""

    message_id: str
    role: MessageRole
    content: str
    model: str | None = None
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message) -> "HistoryMessage":
        return cls(
            message_id=message.message_id,
            role=message.role,
            content=message.content,
            model=message.model,
            timestamp=message.timestamp,
        )


class ChatHistory(CamelModel):
    """Result of a history query."""

    session_id: str
    messages: list[HistoryMessage] = Field(default_factory=list)
    selected_model: str | None = None


class ModelSelection(CamelModel):
    """Request to remember a model preference for a session."""

    project_id: int = Field(..., gt=0)
    topic_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("topicId", "topic_id", "endpointId", "endpoint_id"),
    )
    model: str = Field(..., min_length=1)

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        """Reject blank model names."""
        if not v.strip():
            raise ValueError("Model name cannot be blank")
        return v.strip()
