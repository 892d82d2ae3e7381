"""Error taxonomy for the chat orchestration core.

Every stage raises a subclass of :class:`OrchestrationError`. The flow
orchestrator catches them at its boundary, persists an error-role message
and answers the caller with ``success: false``.
"""


class OrchestrationError(Exception):
    """Base class for all errors raised while processing a chat turn."""

    retryable: bool = False


class ValidationError(OrchestrationError):
    """Malformed caller request, rejected before any stage runs."""


class ContextBudgetError(OrchestrationError):
    """The system prompt and new message alone do not fit the model limit."""


class UnknownIntentError(OrchestrationError):
    """No intent template exists for the requested intent."""

    def __init__(self, intent: str) -> None:
        self.intent = intent
        super().__init__(f"Unknown intent: {intent}")


class LLMCallError(OrchestrationError):
    """Network failure, timeout or non-success reply from the completion service."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ParseError(OrchestrationError):
    """The completion response could not be decoded into the expected structure."""

    retryable = True

    def __init__(self, message: str, raw_text: str = "") -> None:
        self.raw_text = raw_text
        super().__init__(message)


class OutputMismatchError(OrchestrationError):
    """Structured execution output failed validation."""

    def __init__(
        self,
        message: str,
        expected_count: int | None = None,
        actual_count: int | None = None,
    ) -> None:
        self.expected_count = expected_count
        self.actual_count = actual_count
        super().__init__(message)


class FunctionCallError(OrchestrationError):
    """A function registry entry failed or does not exist."""

    def __init__(self, function_name: str, message: str) -> None:
        self.function_name = function_name
        self.reason = message
        super().__init__(f"Function '{function_name}' failed: {message}")


class ChangeApplyError(OrchestrationError):
    """The change applier could not commit a validated result."""


class PersistenceError(OrchestrationError):
    """Session store failure. Logged, never fatal for a turn."""


class SessionBusyError(OrchestrationError):
    """The per-session lock could not be acquired in time."""
