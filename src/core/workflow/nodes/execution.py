"""Execution node implementation.

The execution node sends the self-contained execution prompt to the
completion service and parses the answer into a structured output. Failed
calls and unparseable answers are retried a bounded number of times with
the previous error fed back to the model.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ...config import Settings, settings as default_settings
from ...domain.intents import StructuredExecutionOutput
from ...domain.state import TurnStage, TurnState
from ...exceptions import LLMCallError, OrchestrationError, ParseError
from ...llm.client import CompletionService
from ...utils.parsing import extract_outermost_object
from ..base import NodeFunction

logger = logging.getLogger(__name__)

EXECUTION_SYSTEM_PROMPT = (
    "You are a precise execution engine. Follow the instructions exactly and "
    "respond with a single valid JSON object and nothing else."
)


def parse_execution_output(text: str) -> StructuredExecutionOutput:
    """Decode a structured execution answer.

    Raises:
        ParseError: If the text holds no valid JSON object of the expected shape
    """
    candidate = extract_outermost_object(text)
    if candidate is None:
        raise ParseError("No JSON object found in execution response", raw_text=text)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in execution response: {e}", raw_text=text) from e

    if not isinstance(data, dict):
        raise ParseError("Execution response is not a JSON object", raw_text=text)

    try:
        return StructuredExecutionOutput.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(f"Execution response has the wrong structure: {e}", raw_text=text) from e


def with_correction(prompt: str, previous_error: OrchestrationError | None) -> str:
    """Append the previous attempt's failure as corrective context."""
    if previous_error is None:
        return prompt
    return (
        f"{prompt}\n\n"
        f"PREVIOUS ATTEMPT FAILED: {previous_error}\n"
        "Return ONLY the complete JSON object in the exact format required above."
    )


class ExecutionNode(NodeFunction):
    """Node that runs the execution prompt and parses its answer."""

    def __init__(self, completion: CompletionService, settings: Settings | None = None) -> None:
        self.completion = completion
        self.settings = settings or default_settings

    @property
    def name(self) -> str:
        """Get the node name."""
        return TurnStage.EXECUTE.value

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self.settings.execution_max_attempts)),
            wait=wait_fixed(self.settings.execution_retry_wait_seconds),
            retry=retry_if_exception_type((LLMCallError, ParseError)),
        )

    async def __call__(self, state: TurnState) -> dict[str, Any]:
        """Execute the prepared prompt.

        Args:
            state: Turn state with a rendered execution prompt

        Returns:
            The parsed output and the number of attempts used

        Raises:
            LLMCallError: If the last attempt failed to reach the model
            ParseError: If the last attempt returned unparseable text
        """
        if not state.execution_prompt:
            raise RuntimeError("Execution prompt must be prepared before execution")

        model = self.settings.execution_model or state.model
        attempts = 0
        previous_error: OrchestrationError | None = None
        output: StructuredExecutionOutput | None = None

        async for attempt in self._retrying():
            with attempt:
                attempts += 1
                prompt = with_correction(state.execution_prompt, previous_error)
                try:
                    result = await self.completion.complete(
                        system_prompt=EXECUTION_SYSTEM_PROMPT,
                        user_prompt=prompt,
                        model=model,
                        max_tokens=self.settings.execution_max_tokens,
                        temperature=self.settings.execution_temperature,
                    )
                    output = parse_execution_output(result.text)
                except (LLMCallError, ParseError) as e:
                    logger.warning(f"Execution attempt {attempts} failed: {e}")
                    previous_error = e
                    raise

        logger.info(f"⚡ Execution finished after {attempts} attempt(s) with model {model}")
        return {"execution_output": output, "execution_attempts": attempts}
