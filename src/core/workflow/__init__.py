"""LangGraph workflow components for chat turns.

This package contains the turn state machine, its intent templates and the
flow orchestrator that runs it for each incoming message.
"""

from .base import WorkflowBase
from .orchestrator import FlowOrchestrator
from .templates import IntentTemplate, IntentTemplateCatalog
from .turn_workflow import TurnWorkflow

__all__ = [
    "WorkflowBase",
    "TurnWorkflow",
    "FlowOrchestrator",
    "IntentTemplate",
    "IntentTemplateCatalog",
]
