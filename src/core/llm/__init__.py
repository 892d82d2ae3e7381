"""Completion service access."""

from .client import CompletionResult, CompletionService, OpenRouterCompletionClient

__all__ = ["CompletionResult", "CompletionService", "OpenRouterCompletionClient"]
