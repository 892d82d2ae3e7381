"""Decorator marking coroutines as function registry entries.

Decorating a function only attaches its metadata; nothing is registered
globally. A :class:`~.registry.FunctionRegistry` is then built once from the
decorated functions and passed to whoever needs it.
"""

import inspect
from typing import Any, Callable, Type, TypeVar

from pydantic import BaseModel

from ...core.domain.functions import FunctionDefinition

F = TypeVar('F', bound=Callable[..., Any])

_DEFINITION_ATTR = "_registry_function_definition"
_ARGS_MODEL_ATTR = "_registry_function_args_model"


def registry_function(
    name: str,
    description: str,
    args_schema: Type[BaseModel] | None = None,
) -> Callable[[F], F]:
    """Mark an async function as a read-only data-gathering function.

    The function must accept ``(arguments, scope)`` where ``arguments`` is a
    dict and ``scope`` a :class:`ProjectScope`, and return a typed result.

    Args:
        name: Unique function name
        description: Human-readable description used in prompts
        args_schema: Optional Pydantic model validating ``arguments``

    Returns:
        The same function with registry metadata attached

    Example:
        @registry_function(
            name="get_current_order",
            description="Get the current highlight order for the project",
        )
        async def get_current_order(arguments, scope) -> CurrentOrderResult:
            ...
    """
    def decorator(func: F) -> F:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Registry function '{name}' must be a coroutine function")

        params = [
            p for p in inspect.signature(func).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
        if len(params) != 2:
            raise TypeError(f"Registry function '{name}' must take (arguments, scope)")

        if args_schema is None:
            schema: dict[str, Any] = {"type": "object", "properties": {}, "required": []}
        else:
            schema = args_schema.model_json_schema()

        setattr(func, _DEFINITION_ATTR, FunctionDefinition(
            name=name,
            description=description,
            args_schema=schema,
        ))
        setattr(func, _ARGS_MODEL_ATTR, args_schema)
        return func

    return decorator


def get_function_definition(func: Callable[..., Any]) -> FunctionDefinition | None:
    """Get the registry metadata of a decorated function, if any."""
    return getattr(func, _DEFINITION_ATTR, None)


def get_args_model(func: Callable[..., Any]) -> Type[BaseModel] | None:
    """Get the argument model a decorated function validates against."""
    return getattr(func, _ARGS_MODEL_ATTR, None)


def is_registry_function(func: Callable[..., Any]) -> bool:
    """Check if a function carries registry metadata."""
    return hasattr(func, _DEFINITION_ATTR)
