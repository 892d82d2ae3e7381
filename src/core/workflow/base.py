"""Base workflow implementation using LangGraph.

This module provides the foundational workflow infrastructure the turn
workflow extends from.
"""

from abc import ABC, abstractmethod
from typing import Any

from langgraph.graph import StateGraph

from ..domain.state import TurnState
from ..exceptions import OrchestrationError


class WorkflowBase(ABC):
    """Abstract base class for LangGraph workflows.

    This class provides the common infrastructure for building
    stateful workflows using LangGraph's state machine capabilities.
    """

    def __init__(self) -> None:
        """Initialize the workflow base."""
        self._graph: StateGraph | None = None
        self._compiled_graph: Any | None = None

    @abstractmethod
    def build_graph(self) -> StateGraph:
        """Build and return the LangGraph state machine.

        Returns:
            Configured StateGraph ready for compilation
        """
        pass

    @abstractmethod
    def get_entry_point(self) -> str:
        """Get the entry point node name for this workflow."""
        pass

    def compile(self) -> Any:
        """Compile the workflow graph for execution.

        Returns:
            Compiled graph ready for execution

        Raises:
            RuntimeError: If graph compilation fails
        """
        if self._compiled_graph is not None:
            return self._compiled_graph

        try:
            self._graph = self.build_graph()
            self._compiled_graph = self._graph.compile()
            return self._compiled_graph
        except Exception as e:
            raise RuntimeError(f"Failed to compile workflow graph: {e}") from e

    async def aexecute(
        self,
        initial_state: TurnState,
        config: dict[str, Any] | None = None
    ) -> TurnState:
        """Execute the workflow asynchronously with the given initial state.

        Args:
            initial_state: Starting state for the workflow
            config: Optional configuration for execution

        Returns:
            Final state after workflow completion

        Raises:
            OrchestrationError: Stage failures, unchanged
            RuntimeError: If the workflow fails for any other reason
        """
        if self._compiled_graph is None:
            self.compile()

        try:
            result = await self._compiled_graph.ainvoke(
                initial_state,
                config=config or {}
            )
        except OrchestrationError:
            raise
        except Exception as e:
            raise RuntimeError(f"Workflow execution failed: {e}") from e

        if isinstance(result, TurnState):
            return result
        return TurnState.model_validate(result)

    def get_state_transitions(self) -> dict[str, list[str]]:
        """Get mapping of possible state transitions.

        Returns:
            Dictionary mapping node names to their possible next nodes

        Raises:
            RuntimeError: If graph is not compiled
        """
        if self._compiled_graph is None:
            raise RuntimeError("Graph must be compiled before getting transitions")

        graph_data = self._compiled_graph.get_graph()
        transitions: dict[str, list[str]] = {node: [] for node in graph_data.nodes}

        for edge in graph_data.edges:
            transitions.setdefault(edge.source, []).append(edge.target)

        return transitions


class NodeFunction(ABC):
    """Abstract base class for workflow node functions.

    Node functions implement one stage of the turn and return the state
    fields they changed.
    """

    @abstractmethod
    async def __call__(self, state: TurnState) -> dict[str, Any]:
        """Execute the node function.

        Args:
            state: Current turn state

        Returns:
            Mapping of updated state fields
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the node name for registration with LangGraph."""
        pass


class ConditionalFunction(ABC):
    """Abstract base class for conditional routing functions.

    Conditional functions determine the next node in the workflow
    based on current state conditions.
    """

    @abstractmethod
    def __call__(self, state: TurnState) -> str:
        """Determine the next node based on state.

        Args:
            state: Current turn state

        Returns:
            Name of the next node to execute
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the conditional function name."""
        pass
