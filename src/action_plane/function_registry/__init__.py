"""Function Registry - read-only data gathering for intent preparation.

This module provides the @registry_function decorator and the immutable
FunctionRegistry built from decorated functions.
"""

from .decorator import registry_function
from .registry import FunctionRegistry, RegisteredFunction

__all__ = ["registry_function", "FunctionRegistry", "RegisteredFunction"]
