"""Bounded prompt context sent to the completion service."""

from typing import Literal

from pydantic import BaseModel, Field


class ContextMessage(BaseModel):
    """A message as it is presented to the model."""

    role: Literal["system", "user", "assistant"]
    content: str
    message_id: str | None = None
    synthetic: bool = Field(
        default=False, description="True for the generated summary of trimmed history"
    )

    def to_api(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ContextWindow(BaseModel):
    """Per-request, non-persisted slice of a conversation.

    ``messages`` holds the optional summary, the included history and, as
    its last entry, the new user message.
    """

    model: str
    system_prompt: str
    messages: list[ContextMessage] = Field(default_factory=list)
    trimmed_count: int = 0
    summary: str | None = None
    total_tokens: int = 0
    token_limit: int = 0
    reserved_tokens: int = 0

    @property
    def history(self) -> list[ContextMessage]:
        """Everything before the new message (summary included)."""
        return self.messages[:-1]

    @property
    def new_message(self) -> ContextMessage:
        return self.messages[-1]

    @property
    def available_tokens(self) -> int:
        return self.token_limit - self.reserved_tokens

    @property
    def usage_percent(self) -> float:
        if self.token_limit <= 0:
            return 0.0
        return self.total_tokens / self.token_limit * 100
