"""Budget-respecting context windows over a session's message history."""

import logging
from collections.abc import Sequence

from ...core.domain.chat import Message, MessageRole
from ...core.domain.context import ContextMessage, ContextWindow
from ...core.exceptions import ContextBudgetError
from ...core.utils.tokens import TokenBudgeter

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "Previous conversation summary: "
SUMMARY_ENTRY_CHARS = 200
# Smallest summary budget worth spending tokens on
MIN_SUMMARY_TOKENS = 16


class ContextWindowBuilder:
    """Builds the bounded prompt context for a conversation turn.

    The newest messages are kept verbatim; older ones that do not fit are
    replaced by one extractive summary. Output depends only on the inputs,
    so identical history always yields the same split.
    """

    def __init__(
        self,
        budgeter: TokenBudgeter,
        reserved_tokens: int = 2500,
        summary_max_tokens: int = 500,
    ) -> None:
        """Initialize the builder.

        Args:
            budgeter: Token estimation and model limits
            reserved_tokens: Tokens kept free for the model's response
            summary_max_tokens: Upper bound for the synthetic summary
        """
        self.budgeter = budgeter
        self.reserved_tokens = reserved_tokens
        self.summary_max_tokens = summary_max_tokens

    def build(
        self,
        history: Sequence[Message],
        new_message: str,
        model: str,
        system_prompt: str,
    ) -> ContextWindow:
        """Build a context window.

        Args:
            history: Session messages, oldest first, new message excluded
            new_message: The user message being answered
            model: Model the window is built for
            system_prompt: System prompt of the conversation

        Returns:
            Window whose total tokens plus the reserve fit the model limit

        Raises:
            ContextBudgetError: If system prompt and new message alone do not fit
        """
        limit = self.budgeter.limit_for(model)
        budget = limit - self.reserved_tokens

        system_tokens = self.budgeter.estimate_message_tokens(system_prompt)
        new_tokens = self.budgeter.estimate_message_tokens(new_message)
        if system_tokens + new_tokens > budget:
            raise ContextBudgetError(
                f"System prompt ({system_tokens} tokens) and new message ({new_tokens} tokens) "
                f"exceed the {budget} token budget of model {model}"
            )

        available = budget - system_tokens - new_tokens
        pairs = [(msg, converted) for msg in history if (converted := self._to_context_message(msg)) is not None]
        candidates = [converted for _, converted in pairs]
        costs = [self.budgeter.estimate_message_tokens(m.content) for m in candidates]

        included: list[ContextMessage] = []
        summary: str | None = None
        used = 0

        if sum(costs) <= available:
            included = candidates
            used = sum(costs)
        else:
            summary_budget = min(self.summary_max_tokens, available // 4)
            history_budget = available - summary_budget

            start = len(candidates)
            for index in range(len(candidates) - 1, -1, -1):
                if used + costs[index] > history_budget:
                    break
                used += costs[index]
                start = index
            included = candidates[start:]

            summary_text = self._fit_summary(
                self.summarize([msg for msg, _ in pairs[:start]]),
                available - used,
            )
            if summary_text is not None:
                summary = summary_text
                used += self.budgeter.estimate_message_tokens(SUMMARY_PREFIX + summary)

        messages: list[ContextMessage] = []
        if summary is not None:
            messages.append(ContextMessage(role="system", content=SUMMARY_PREFIX + summary, synthetic=True))
        messages.extend(included)
        messages.append(ContextMessage(role="user", content=new_message))

        return ContextWindow(
            model=model,
            system_prompt=system_prompt,
            messages=messages,
            trimmed_count=len(candidates) - len(included),
            summary=summary,
            total_tokens=system_tokens + new_tokens + used,
            token_limit=limit,
            reserved_tokens=self.reserved_tokens,
        )

    def summarize(self, messages: Sequence[Message]) -> str:
        """Extractive summary of messages that fell out of the window."""
        user_requests: list[str] = []
        assistant_responses: list[str] = []

        for message in messages:
            content = message.content.strip()
            if not content:
                continue
            if message.role == MessageRole.USER:
                user_requests.append(_truncate(content))
            elif message.role == MessageRole.ASSISTANT and "conversation_summary" not in content:
                assistant_responses.append(_truncate(content))

        parts = []
        if user_requests:
            parts.append(f"User requests: {'; '.join(user_requests)}")
        if assistant_responses:
            parts.append(f"Assistant responses: {'; '.join(assistant_responses)}")
        if not parts:
            return f"Previous conversation with {len(messages)} messages"
        return ". ".join(parts)

    def log_usage(self, window: ContextWindow) -> None:
        """Log how much of the model's context the window uses."""
        logger.info(
            f"Context usage for {window.model}: {window.total_tokens}/{window.token_limit} tokens "
            f"({window.usage_percent:.1f}%), {len(window.messages)} messages, "
            f"{window.trimmed_count} trimmed"
        )

    def _fit_summary(self, summary: str, budget: int) -> str | None:
        """Cut a summary so that it fits the budget, or None if nothing useful fits."""
        budget = min(budget, self.summary_max_tokens)
        if budget < MIN_SUMMARY_TOKENS:
            return None
        if self.budgeter.estimate_message_tokens(SUMMARY_PREFIX + summary) <= budget:
            return summary

        # Longest prefix (plus ellipsis) that fits; estimates are monotonic in length
        low, high = 0, len(summary)
        while low < high:
            middle = (low + high + 1) // 2
            candidate = summary[:middle].rstrip() + "..."
            if self.budgeter.estimate_message_tokens(SUMMARY_PREFIX + candidate) <= budget:
                low = middle
            else:
                high = middle - 1
        if low == 0:
            return None
        return summary[:low].rstrip() + "..."

    @staticmethod
    def _to_context_message(message: Message) -> ContextMessage | None:
        content = message.content
        if not content.strip():
            return None

        if message.role == MessageRole.ERROR:
            return ContextMessage(role="system", content=f"Previous error: {content}", message_id=message.message_id)

        note = message.hidden_data().get("note")
        if note:
            content = f"{content}\n\n[{note}]"
        role = "assistant" if message.role == MessageRole.ASSISTANT else message.role.value
        return ContextMessage(role=role, content=content, message_id=message.message_id)


def _truncate(text: str) -> str:
    if len(text) <= SUMMARY_ENTRY_CHARS:
        return text
    return text[:SUMMARY_ENTRY_CHARS] + "..."
