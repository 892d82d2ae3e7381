"""Project data functions and change application."""

from .change_applier import ChangeApplier, InMemoryProjectRepository
from .project_functions import build_default_registry

__all__ = ["ChangeApplier", "InMemoryProjectRepository", "build_default_registry"]
