"""Output validation node implementation.

The validator is the single gate between a parsed execution answer and
the change applier. Validation failures are reported with diagnostic
counts and never retried.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any

from langgraph.graph import END

from ...domain.intents import IntentKind, OrderItem, StructuredExecutionOutput, count_item_references
from ...domain.state import TurnStage, TurnState
from ...exceptions import OutputMismatchError
from ..base import ConditionalFunction, NodeFunction
from ..templates import IntentTemplateCatalog

logger = logging.getLogger(__name__)


class OutputValidator:
    """Checks the structural invariants of an execution result."""

    def validate(
        self,
        output: StructuredExecutionOutput,
        original_item_count: int,
        *,
        intent_kind: IntentKind = IntentKind.ORDERING,
        current_order: Sequence[OrderItem] | None = None,
        known_ids: Iterable[str] | None = None,
    ) -> None:
        """Validate an execution result.

        Args:
            output: Parsed execution answer
            original_item_count: Number of highlights handed to execution
            intent_kind: Ordering intents must keep every highlight,
                analysis intents must leave the order untouched
            current_order: Order given to execution, compared for analysis
            known_ids: Highlight ids given to execution, used to report
                duplicates and unknown ids

        Raises:
            OutputMismatchError: If the result must not be used
        """
        if not output.success:
            raise OutputMismatchError(output.error or "execution failed with no error message")

        if intent_kind == IntentKind.ANALYSIS and current_order is not None:
            if list(output.new_order) != list(current_order):
                raise OutputMismatchError(
                    "analysis must not change the order",
                    expected_count=count_item_references(list(current_order)),
                    actual_count=count_item_references(output.new_order),
                )
            return

        if not output.new_order and original_item_count > 0:
            raise OutputMismatchError(
                "new order is empty",
                expected_count=original_item_count,
                actual_count=0,
            )

        if intent_kind != IntentKind.ORDERING:
            return

        actual = count_item_references(output.new_order)
        problems = []
        if actual != original_item_count:
            problems.append(f"expected {original_item_count} highlights, got {actual}")

        if known_ids is not None:
            problems.extend(_identity_problems(output.new_order, set(known_ids)))

        if problems:
            raise OutputMismatchError(
                "; ".join(problems),
                expected_count=original_item_count,
                actual_count=actual,
            )


def _identity_problems(order: Sequence[OrderItem], known: set[str]) -> list[str]:
    counts = Counter(item for item in order if isinstance(item, str))
    problems = []

    duplicates = sorted(item for item, count in counts.items() if count > 1)
    if duplicates:
        problems.append(f"duplicate highlights: {', '.join(duplicates)}")

    unknown = sorted(item for item in counts if item not in known)
    if unknown:
        problems.append(f"unknown highlights: {', '.join(unknown)}")

    missing = sorted(known - set(counts))
    if missing:
        problems.append(f"missing highlights: {', '.join(missing)}")
    return problems


class ValidationNode(NodeFunction):
    """Node that validates the execution output against its input."""

    def __init__(self, catalog: IntentTemplateCatalog, validator: OutputValidator | None = None) -> None:
        self.catalog = catalog
        self.validator = validator or OutputValidator()

    @property
    def name(self) -> str:
        """Get the node name."""
        return TurnStage.VALIDATE.value

    async def __call__(self, state: TurnState) -> dict[str, Any]:
        output = state.execution_output
        execution_input = state.execution_input
        if output is None or execution_input is None:
            raise RuntimeError("Validation requires execution input and output")

        template = self.catalog.get(execution_input.intent)
        self.validator.validate(
            output,
            execution_input.item_count,
            intent_kind=template.kind,
            current_order=execution_input.current_order,
            known_ids=execution_input.highlight_map.keys(),
        )
        logger.info(
            f"✅ Output validated for {execution_input.intent.value}: "
            f"{count_item_references(output.new_order)} highlights, {output.section_count} sections"
        )
        return {"validated": True}


class ValidationConditional(ConditionalFunction):
    """Analysis results end the turn, ordering results are applied."""

    def __init__(self, catalog: IntentTemplateCatalog) -> None:
        self.catalog = catalog

    @property
    def name(self) -> str:
        """Get the conditional name."""
        return "validation_conditional"

    def __call__(self, state: TurnState) -> str:
        if state.execution_input is None:
            return END
        template = self.catalog.get(state.execution_input.intent)
        if template.kind == IntentKind.ANALYSIS:
            return END
        return TurnStage.APPLY.value
