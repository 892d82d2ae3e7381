"""Function registry models and typed function results."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from .intents import OrderItem, SectionMarker

# Names of the standard project functions
GET_HIGHLIGHT_MAP = "get_highlight_map"
GET_CURRENT_ORDER = "get_current_order"
ANALYZE_HIGHLIGHTS = "analyze_highlights"


class Highlight(BaseModel):
    """An addressable piece of project content."""

    id: str = Field(..., min_length=1)
    text: str = ""


class ProjectDataSource(ABC):
    """Read-only access to a project's highlights, supplied by the host application."""

    async def load_snapshot(
        self,
        project_id: int,
        highlights: list[Highlight],
        order: list[OrderItem] | None = None,
    ) -> None:
        """Take project data the caller sent along with a chat request.

        Sources backed by the host's own storage keep this default and
        ignore the snapshot.
        """

    @abstractmethod
    async def get_highlights(self, project_id: int) -> list[Highlight]:
        """Return the project's highlights in their stored order."""

    @abstractmethod
    async def get_order(self, project_id: int) -> list[OrderItem]:
        """Return the project's current ordering, section markers included."""


@dataclass(frozen=True)
class ProjectScope:
    """Project a function call is scoped to."""

    project_id: int
    topic_id: str
    data_source: ProjectDataSource


class FunctionDefinition(BaseModel):
    """Metadata describing a registered function."""

    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    args_schema: dict[str, Any] = Field(default_factory=dict)
    read_only: bool = True


class HighlightMapResult(BaseModel):
    """Highlight identifiers mapped to their text, in project order."""

    kind: Literal["highlight_map"] = "highlight_map"
    highlights: dict[str, str] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.highlights)


class CurrentOrderResult(BaseModel):
    """The project's current ordering."""

    kind: Literal["current_order"] = "current_order"
    order: list[OrderItem] = Field(default_factory=list)


class HighlightStatsResult(BaseModel):
    """Simple statistics over the project's highlights."""

    kind: Literal["highlight_stats"] = "highlight_stats"
    total_highlights: int = 0
    total_characters: int = 0
    average_length: float = 0.0
    shortest_id: str | None = None
    longest_id: str | None = None
    section_count: int = 0


FunctionResult = Annotated[
    Union[HighlightMapResult, CurrentOrderResult, HighlightStatsResult],
    Field(discriminator="kind"),
]


def snapshot_from_context(
    context_data: dict[str, Any] | None,
) -> tuple[list[Highlight], list[OrderItem] | None]:
    """Read caller-supplied highlights and ordering from request context data.

    Two shapes are understood::

        {"highlights": [{"id": "h1", "text": "..."}], "order": ["h1", ...]}
        {"highlights": {"highlightMap": {"h1": "..."}, "currentOrder": ["h1", ...]}}

    Order entries may be highlight ids or section markers given as
    objects (``{"type": "N", "title": "Intro"}``). Malformed entries are
    skipped.

    Returns:
        Tuple of (highlights, order or None when the caller sent none)
    """
    if not context_data:
        return [], None

    raw_highlights = context_data.get("highlights")
    raw_order = context_data.get("order")
    if isinstance(raw_highlights, dict):
        raw_order = raw_highlights.get("currentOrder", raw_order)
        raw_highlights = [
            {"id": highlight_id, "text": text}
            for highlight_id, text in (raw_highlights.get("highlightMap") or {}).items()
        ]

    highlights: list[Highlight] = []
    for entry in raw_highlights if isinstance(raw_highlights, list) else []:
        if not isinstance(entry, dict):
            continue
        highlight_id, text = entry.get("id"), entry.get("text", "")
        if isinstance(highlight_id, str) and highlight_id and isinstance(text, str):
            highlights.append(Highlight(id=highlight_id, text=text))

    if not isinstance(raw_order, list):
        return highlights, None

    order: list[OrderItem] = []
    for item in raw_order:
        if isinstance(item, str) and item:
            order.append(item)
        elif isinstance(item, dict) and (item.get("type") == "N" or "title" in item):
            title = item.get("title")
            order.append(SectionMarker(title=title if isinstance(title, str) else None))
    return highlights, order
