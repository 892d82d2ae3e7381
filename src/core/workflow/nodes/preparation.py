"""Preparation node implementation.

Pure data assembly: gathers the project data a confirmed intent needs
from the function registry and renders the self-contained execution
prompt. No model is called here.
"""

import logging
from typing import Any

from pydantic import BaseModel

from ....action_plane.function_registry import FunctionRegistry
from ...domain.chat import FunctionExecutionResult
from ...domain.functions import (
    ANALYZE_HIGHLIGHTS,
    GET_CURRENT_ORDER,
    GET_HIGHLIGHT_MAP,
    CurrentOrderResult,
    HighlightMapResult,
    HighlightStatsResult,
    ProjectDataSource,
    ProjectScope,
)
from ...domain.intents import IntentKind, StructuredExecutionInput
from ...domain.state import TurnStage, TurnState
from ...exceptions import FunctionCallError
from ..base import NodeFunction
from ..templates import IntentTemplateCatalog

logger = logging.getLogger(__name__)


class PreparationNode(NodeFunction):
    """Node that turns a confirmed intent into an execution prompt."""

    def __init__(
        self,
        catalog: IntentTemplateCatalog,
        registry: FunctionRegistry,
        data_source: ProjectDataSource,
    ) -> None:
        self.catalog = catalog
        self.registry = registry
        self.data_source = data_source

    @property
    def name(self) -> str:
        """Get the node name."""
        return TurnStage.PREPARE.value

    async def __call__(self, state: TurnState) -> dict[str, Any]:
        """Prepare structured execution input.

        Args:
            state: Turn state carrying a confirmed intent summary

        Returns:
            Execution input, rendered prompt and the function call results

        Raises:
            UnknownIntentError: If the catalog has no template for the intent
            FunctionCallError: If a required registry function fails
        """
        summary = state.intent_summary
        if summary is None or not summary.confirmed:
            raise RuntimeError("Preparation requires a confirmed intent summary")

        template = self.catalog.get(summary.intent)
        scope = ProjectScope(
            project_id=state.project_id,
            topic_id=state.topic_id,
            data_source=self.data_source,
        )

        required, optional = template.functions_for(summary.use_current_order)
        results: dict[str, BaseModel] = {}
        function_results: list[FunctionExecutionResult] = []

        for function_name in required + optional:
            execution_result, typed_result = await self.registry.execute(function_name, scope)
            function_results.append(execution_result)
            if typed_result is not None:
                results[function_name] = typed_result
            elif function_name in required:
                raise FunctionCallError(function_name, execution_result.error or "no result")
            else:
                logger.warning(f"Optional function {function_name} failed: {execution_result.error}")

        highlight_result = results.get(GET_HIGHLIGHT_MAP)
        if not isinstance(highlight_result, HighlightMapResult):
            raise FunctionCallError(GET_HIGHLIGHT_MAP, "highlight map unavailable")

        order_result = results.get(GET_CURRENT_ORDER)
        current_order = order_result.order if isinstance(order_result, CurrentOrderResult) else None
        use_current_order = summary.use_current_order and current_order is not None
        if template.kind == IntentKind.ANALYSIS and current_order is None:
            raise FunctionCallError(GET_CURRENT_ORDER, "current order unavailable")

        additional_context = None
        stats_result = results.get(ANALYZE_HIGHLIGHTS)
        if isinstance(stats_result, HighlightStatsResult):
            additional_context = stats_result.model_dump(exclude={"kind"})

        include_order = use_current_order or template.kind == IntentKind.ANALYSIS
        execution_input = StructuredExecutionInput(
            intent=summary.intent,
            highlight_map=highlight_result.highlights,
            current_order=current_order if include_order else [],
            use_current_order=use_current_order,
            goals=summary.optimization_goals,
            specific_requests=summary.specific_requests,
            user_context=summary.user_context,
            additional_context=additional_context,
        )
        prompt = template.render_prompt(execution_input)

        logger.info(
            f"📦 Prepared {summary.intent.value} for project {state.project_id}: "
            f"{execution_input.item_count} highlights - {template.progress_message}"
        )
        return {
            "execution_input": execution_input,
            "execution_prompt": prompt,
            "function_results": function_results,
        }
