"""Function registry for read-only data-gathering operations.

The registry is constructed once from decorated functions and never
changes afterwards. Only the preparation stage calls into it.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType, ModuleType
from typing import Any, Awaitable, Callable, Type

from pydantic import BaseModel, TypeAdapter, ValidationError

from ...core.domain.chat import FunctionExecutionResult
from ...core.domain.functions import FunctionDefinition, FunctionResult, ProjectScope
from ...core.exceptions import FunctionCallError
from .decorator import get_args_model, get_function_definition, is_registry_function

logger = logging.getLogger(__name__)

FunctionHandler = Callable[[dict[str, Any], ProjectScope], Awaitable[BaseModel]]

_RESULT_ADAPTER = TypeAdapter(FunctionResult)


@dataclass(frozen=True)
class RegisteredFunction:
    """A function definition together with its handler."""

    definition: FunctionDefinition
    handler: FunctionHandler
    args_model: Type[BaseModel] | None = None


class FunctionRegistry:
    """Immutable lookup of registry functions by name."""

    def __init__(self, functions: Iterable[FunctionHandler] = ()) -> None:
        """Build the registry.

        Args:
            functions: Functions decorated with ``@registry_function``

        Raises:
            ValueError: If a function is not decorated or a name repeats
        """
        table: dict[str, RegisteredFunction] = {}
        for func in functions:
            definition = get_function_definition(func)
            if definition is None:
                raise ValueError(f"{getattr(func, '__name__', func)!r} is not a registry function")
            if definition.name in table:
                raise ValueError(f"Function '{definition.name}' is registered twice")
            table[definition.name] = RegisteredFunction(
                definition=definition,
                handler=func,
                args_model=get_args_model(func),
            )
            logger.info(f"Registered function '{definition.name}'")
        self._functions = MappingProxyType(table)

    @classmethod
    def from_module(cls, module: ModuleType) -> "FunctionRegistry":
        """Build a registry from every decorated function in a module."""
        discovered = [
            attr for attr in vars(module).values()
            if callable(attr) and is_registry_function(attr)
        ]
        logger.info(f"Discovered {len(discovered)} functions from module {module.__name__}")
        return cls(discovered)

    def get(self, name: str) -> RegisteredFunction | None:
        return self._functions.get(name)

    def names(self) -> list[str]:
        return sorted(self._functions)

    def definitions(self) -> list[FunctionDefinition]:
        return [self._functions[name].definition for name in self.names()]

    def describe(self) -> str:
        """One line per function, for prompts."""
        return "\n".join(
            f"- {definition.name}: {definition.description}"
            for definition in self.definitions()
        )

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    async def call(
        self,
        name: str,
        scope: ProjectScope,
        arguments: dict[str, Any] | None = None,
    ) -> FunctionResult:
        """Run a function and return its typed result.

        Raises:
            FunctionCallError: If the function is unknown, the arguments are
                invalid, the function fails or it returns an unknown result type
        """
        registered = self._functions.get(name)
        if registered is None:
            raise FunctionCallError(name, "function not found")

        arguments = arguments or {}
        if registered.args_model is not None:
            try:
                arguments = registered.args_model.model_validate(arguments).model_dump()
            except ValidationError as e:
                raise FunctionCallError(name, f"invalid arguments: {e}") from e

        try:
            result = await registered.handler(arguments, scope)
        except FunctionCallError:
            raise
        except Exception as e:
            logger.error(f"Function execution failed for '{name}': {str(e)}")
            raise FunctionCallError(name, str(e)) from e

        try:
            return _RESULT_ADAPTER.validate_python(result)
        except ValidationError as e:
            logger.error(f"Function '{name}' returned {type(result).__name__}, not a function result")
            raise FunctionCallError(name, f"unexpected result type {type(result).__name__}") from e

    async def execute(
        self,
        name: str,
        scope: ProjectScope,
        arguments: dict[str, Any] | None = None,
    ) -> tuple[FunctionExecutionResult, FunctionResult | None]:
        """Run a function and report the outcome instead of raising.

        Returns:
            Tuple of (execution result for callers, typed result or None)
        """
        try:
            result = await self.call(name, scope, arguments)
        except FunctionCallError as e:
            return FunctionExecutionResult(
                function_name=name,
                success=False,
                error=e.reason,
            ), None

        return FunctionExecutionResult(
            function_name=name,
            success=True,
            result=result.model_dump(mode="json"),
            message=f"{name} completed",
        ), result
