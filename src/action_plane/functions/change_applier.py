"""Committing validated ordering changes back to a project."""

import asyncio
import logging
from abc import ABC, abstractmethod

from ...core.domain.functions import Highlight, ProjectDataSource, ProjectScope
from ...core.domain.intents import OrderItem, StructuredExecutionOutput

logger = logging.getLogger(__name__)


class ChangeApplier(ABC):
    """Durably commits a validated structured change."""

    @abstractmethod
    async def apply(self, scope: ProjectScope, output: StructuredExecutionOutput) -> None:
        """Commit the new ordering of a validated execution output.

        Raises:
            Exception: Any failure; the orchestrator reports it to the user
        """


class InMemoryProjectRepository(ProjectDataSource, ChangeApplier):
    """Project highlights and orderings kept in process memory.

    Serves as data source and change applier for development setups and
    tests.
    """

    def __init__(self) -> None:
        self._highlights: dict[int, list[Highlight]] = {}
        self._orders: dict[int, list[OrderItem]] = {}
        self._lock = asyncio.Lock()

    def add_project(
        self,
        project_id: int,
        highlights: list[Highlight],
        order: list[OrderItem] | None = None,
    ) -> None:
        """Seed a project; its order defaults to the highlight order."""
        self._highlights[project_id] = list(highlights)
        self._orders[project_id] = list(order) if order is not None else [h.id for h in highlights]

    async def load_snapshot(
        self,
        project_id: int,
        highlights: list[Highlight],
        order: list[OrderItem] | None = None,
    ) -> None:
        """Replace a project with the caller's copy of it."""
        async with self._lock:
            self.add_project(project_id, highlights, order)

    async def get_highlights(self, project_id: int) -> list[Highlight]:
        return list(self._highlights.get(project_id, []))

    async def get_order(self, project_id: int) -> list[OrderItem]:
        return list(self._orders.get(project_id, []))

    async def apply(self, scope: ProjectScope, output: StructuredExecutionOutput) -> None:
        if scope.project_id not in self._highlights:
            raise KeyError(f"Project {scope.project_id} not found")
        async with self._lock:
            self._orders[scope.project_id] = list(output.new_order)
        logger.info(f"Applied new order with {len(output.new_order)} items to project {scope.project_id}")
