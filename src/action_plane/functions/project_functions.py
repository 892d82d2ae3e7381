"""Read-only project functions available to the preparation stage."""

import logging
import sys
from typing import Any

from ...core.domain.functions import (
    ANALYZE_HIGHLIGHTS,
    GET_CURRENT_ORDER,
    GET_HIGHLIGHT_MAP,
    CurrentOrderResult,
    HighlightMapResult,
    HighlightStatsResult,
    ProjectScope,
)
from ...core.domain.intents import SectionMarker
from ..function_registry import FunctionRegistry, registry_function

logger = logging.getLogger(__name__)


@registry_function(
    name=GET_HIGHLIGHT_MAP,
    description="Get every highlight of the project with its text",
)
async def get_highlight_map(arguments: dict[str, Any], scope: ProjectScope) -> HighlightMapResult:
    highlights = await scope.data_source.get_highlights(scope.project_id)
    highlight_map: dict[str, str] = {}
    for highlight in highlights:
        if highlight.id in highlight_map:
            logger.warning(f"Duplicate highlight id {highlight.id} in project {scope.project_id}")
            continue
        highlight_map[highlight.id] = highlight.text
    return HighlightMapResult(highlights=highlight_map)


@registry_function(
    name=GET_CURRENT_ORDER,
    description="Get the current highlight order for the project, section titles included",
)
async def get_current_order(arguments: dict[str, Any], scope: ProjectScope) -> CurrentOrderResult:
    order = await scope.data_source.get_order(scope.project_id)
    return CurrentOrderResult(order=list(order))


@registry_function(
    name=ANALYZE_HIGHLIGHTS,
    description="Analyze highlights for length and structure statistics",
)
async def analyze_highlights(arguments: dict[str, Any], scope: ProjectScope) -> HighlightStatsResult:
    highlights = await scope.data_source.get_highlights(scope.project_id)
    order = await scope.data_source.get_order(scope.project_id)
    section_count = sum(1 for item in order if isinstance(item, SectionMarker))

    if not highlights:
        return HighlightStatsResult(section_count=section_count)

    lengths = {h.id: len(h.text) for h in highlights}
    total = sum(lengths.values())
    return HighlightStatsResult(
        total_highlights=len(highlights),
        total_characters=total,
        average_length=round(total / len(highlights), 1),
        shortest_id=min(lengths, key=lengths.get),
        longest_id=max(lengths, key=lengths.get),
        section_count=section_count,
    )


def build_default_registry() -> FunctionRegistry:
    """Registry holding the project functions of this module."""
    return FunctionRegistry.from_module(sys.modules[__name__])
