"""Action Plane - Function Registry and Change Application.

The action plane gathers project data for confirmed intents through
read-only registry functions and commits validated orderings.
"""

from .function_registry import FunctionRegistry, registry_function
from .functions import ChangeApplier, InMemoryProjectRepository, build_default_registry

__all__ = [
    "FunctionRegistry",
    "registry_function",
    "ChangeApplier",
    "InMemoryProjectRepository",
    "build_default_registry",
]
