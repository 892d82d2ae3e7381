"""Chat turn workflow implementation using LangGraph.

This module wires the stages of one chat turn into a state machine:

1. Build context - Load history and fit it into the model's token budget
2. Converse - Clarify the request until the user confirms it
3. Prepare - Gather project data and render the execution prompt
4. Execute - Run the structured execution with bounded retry
5. Validate - Check the result before anything is applied
6. Apply - Commit a validated ordering (skipped for analysis intents)
"""

from langgraph.graph import END, StateGraph

from ..domain.state import TurnStage, TurnState
from .base import WorkflowBase
from .nodes import (
    ApplyNode,
    BuildContextNode,
    ConversationConditional,
    ConversationNode,
    ExecutionNode,
    PreparationNode,
    ValidationConditional,
    ValidationNode,
)


class TurnWorkflow(WorkflowBase):
    """State machine that processes one chat turn."""

    def __init__(
        self,
        build_context_node: BuildContextNode,
        conversation_node: ConversationNode,
        preparation_node: PreparationNode,
        execution_node: ExecutionNode,
        validation_node: ValidationNode,
        apply_node: ApplyNode,
        validation_conditional: ValidationConditional,
    ) -> None:
        super().__init__()

        self.build_context_node = build_context_node
        self.conversation_node = conversation_node
        self.preparation_node = preparation_node
        self.execution_node = execution_node
        self.validation_node = validation_node
        self.apply_node = apply_node

        self.conversation_conditional = ConversationConditional()
        self.validation_conditional = validation_conditional

    def build_graph(self) -> StateGraph:
        """Build the turn graph.

        Returns:
            Configured StateGraph with all stages and edges
        """
        workflow = StateGraph(TurnState)

        workflow.add_node(TurnStage.BUILD_CONTEXT.value, self.build_context_node)
        workflow.add_node(TurnStage.CONVERSE.value, self.conversation_node)
        workflow.add_node(TurnStage.PREPARE.value, self.preparation_node)
        workflow.add_node(TurnStage.EXECUTE.value, self.execution_node)
        workflow.add_node(TurnStage.VALIDATE.value, self.validation_node)
        workflow.add_node(TurnStage.APPLY.value, self.apply_node)

        workflow.set_entry_point(self.get_entry_point())

        workflow.add_edge(TurnStage.BUILD_CONTEXT.value, TurnStage.CONVERSE.value)
        workflow.add_conditional_edges(
            TurnStage.CONVERSE.value,
            self.conversation_conditional,
            {
                TurnStage.PREPARE.value: TurnStage.PREPARE.value,
                END: END,
            }
        )
        workflow.add_edge(TurnStage.PREPARE.value, TurnStage.EXECUTE.value)
        workflow.add_edge(TurnStage.EXECUTE.value, TurnStage.VALIDATE.value)
        workflow.add_conditional_edges(
            TurnStage.VALIDATE.value,
            self.validation_conditional,
            {
                TurnStage.APPLY.value: TurnStage.APPLY.value,
                END: END,
            }
        )
        workflow.add_edge(TurnStage.APPLY.value, END)

        return workflow

    def get_entry_point(self) -> str:
        """Get the workflow entry point."""
        return TurnStage.BUILD_CONTEXT.value
