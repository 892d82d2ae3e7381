"""Apply node implementation."""

import logging
from typing import Any, Callable

from ....action_plane.functions.change_applier import ChangeApplier
from ...domain.functions import ProjectDataSource, ProjectScope
from ...domain.state import TurnStage, TurnState
from ...exceptions import ChangeApplyError
from ..base import NodeFunction

logger = logging.getLogger(__name__)

CommitHook = Callable[[TurnState], None]


class ApplyNode(NodeFunction):
    """Node that commits a validated ordering through the change applier."""

    def __init__(
        self,
        change_applier: ChangeApplier,
        data_source: ProjectDataSource,
        on_commit: CommitHook | None = None,
    ) -> None:
        """Initialize the node.

        Args:
            change_applier: Commits the new ordering
            data_source: Project data the scope points at
            on_commit: Called right before the applier runs; from then on
                the turn must finish rather than be cancelled
        """
        self.change_applier = change_applier
        self.data_source = data_source
        self.on_commit = on_commit

    @property
    def name(self) -> str:
        """Get the node name."""
        return TurnStage.APPLY.value

    async def __call__(self, state: TurnState) -> dict[str, Any]:
        """Apply the validated output.

        Raises:
            ChangeApplyError: If the output is unvalidated or the applier fails
        """
        output = state.execution_output
        if output is None or not state.validated:
            raise ChangeApplyError("Refusing to apply an unvalidated result")

        scope = ProjectScope(
            project_id=state.project_id,
            topic_id=state.topic_id,
            data_source=self.data_source,
        )
        if self.on_commit is not None:
            self.on_commit(state)
        try:
            await self.change_applier.apply(scope, output)
        except Exception as e:
            logger.error(f"Failed to apply changes to project {state.project_id}: {e}", exc_info=True)
            raise ChangeApplyError(f"Failed to apply changes: {e}") from e

        logger.info(f"💾 Applied new order to project {state.project_id}")
        return {"applied": True}
