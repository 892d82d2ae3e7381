"""Workflow nodes for the chat turn state machine.

This package contains the individual stage implementations that make up
a turn: build_context, converse, prepare, execute, validate and apply.
"""

from .apply import ApplyNode
from .context import BuildContextNode
from .conversation import ConversationConditional, ConversationNode, ConversationPromptBuilder
from .execution import ExecutionNode
from .preparation import PreparationNode
from .validation import OutputValidator, ValidationConditional, ValidationNode

__all__ = [
    "BuildContextNode",
    "ConversationNode",
    "ConversationPromptBuilder",
    "PreparationNode",
    "ExecutionNode",
    "ValidationNode",
    "OutputValidator",
    "ApplyNode",
    "ConversationConditional",
    "ValidationConditional",
]
