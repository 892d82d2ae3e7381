"""Context window construction for conversation turns."""

from .window_builder import ContextWindowBuilder

__all__ = ["ContextWindowBuilder"]
