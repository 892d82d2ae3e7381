"""Intent and structured execution models.

The conversation stage produces an :class:`IntentSummary`; the preparation
stage turns it into a :class:`StructuredExecutionInput`; the execution stage
parses the model answer into a :class:`StructuredExecutionOutput`.
"""

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class IntentName(str, Enum):
    """Closed set of intents the execution pipeline understands."""

    REORDER = "reorder"
    IMPROVE_HOOK = "improve_hook"
    IMPROVE_CONCLUSION = "improve_conclusion"
    ANALYZE = "analyze"

    @classmethod
    def values(cls) -> list[str]:
        return [intent.value for intent in cls]


class IntentKind(str, Enum):
    """Whether an intent changes the ordering or only inspects it."""

    ORDERING = "ordering"
    ANALYSIS = "analysis"


class ConversationPhase(str, Enum):
    """Where the conversation stage stands for the current request."""

    LISTENING = "listening"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"


class IntentSummary(BaseModel):
    """Confirmed statement of what the user wants done."""

    model_config = ConfigDict(populate_by_name=True)

    intent: IntentName
    use_current_order: bool = Field(default=False, alias="userWantsCurrentOrder")
    optimization_goals: list[str] = Field(default_factory=list, alias="optimizationGoals")
    specific_requests: list[str] = Field(default_factory=list, alias="specificRequests")
    user_context: str = Field(default="", alias="userContext")
    confirmed: bool = False

    @field_validator("optimization_goals", "specific_requests", mode="before")
    @classmethod
    def coerce_string_list(cls, v):
        """Accept a single string where a list is expected; drop non-string entries."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if isinstance(v, (list, tuple)):
            return [item for item in v if isinstance(item, str)]
        return []

    @field_validator("user_context", mode="before")
    @classmethod
    def coerce_context(cls, v):
        return "" if v is None else v


class SectionMarker(BaseModel):
    """Structural marker inside an ordering, e.g. a titled section break."""

    type: Literal["N"] = "N"
    title: str | None = None

    def render(self) -> str:
        return f"[SECTION] {self.title}" if self.title else "[SECTION]"


OrderItem = Union[str, SectionMarker]


def count_item_references(order: list[OrderItem]) -> int:
    """Count highlight identifiers in an ordering, ignoring section markers."""
    return sum(1 for item in order if isinstance(item, str))


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StructuredExecutionInput(_CamelModel):
    """Self-contained data handed to the execution stage."""

    intent: IntentName
    highlight_map: dict[str, str] = Field(default_factory=dict)
    current_order: list[OrderItem] = Field(default_factory=list)
    use_current_order: bool = False
    goals: list[str] = Field(default_factory=list)
    specific_requests: list[str] = Field(default_factory=list)
    user_context: str = ""
    additional_context: dict | None = None

    @property
    def item_count(self) -> int:
        return len(self.highlight_map)


class StructuredExecutionOutput(_CamelModel):
    """Parsed answer of the execution stage."""

    success: bool
    new_order: list[OrderItem] = Field(default_factory=list)
    reasoning: str = ""
    section_count: int = 0
    changes: list[str] = Field(default_factory=list)
    error: str | None = None

    @field_validator("new_order", "changes", mode="before")
    @classmethod
    def coerce_null_list(cls, v):
        return [] if v is None else v

    @field_validator("reasoning", mode="before")
    @classmethod
    def coerce_null_reasoning(cls, v):
        return "" if v is None else v

    @field_validator("section_count", mode="before")
    @classmethod
    def coerce_null_section_count(cls, v):
        return 0 if v is None else v
