"""Token estimation and per-model context limits."""

import logging
import math
from collections.abc import Callable, Mapping
from types import MappingProxyType

import tiktoken

logger = logging.getLogger(__name__)

# Context limits (tokens) for the models offered through the gateway
MODEL_TOKEN_LIMITS: Mapping[str, int] = MappingProxyType({
    "anthropic/claude-sonnet-4": 200_000,
    "anthropic/claude-3.5-sonnet": 200_000,
    "anthropic/claude-3-haiku": 200_000,
    "openai/gpt-4o": 128_000,
    "openai/gpt-4o-mini": 128_000,
    "openai/gpt-4-turbo": 128_000,
})

DEFAULT_TOKEN_LIMIT = 32_000

# Formatting overhead of one chat message (role, separators)
MESSAGE_OVERHEAD_TOKENS = 5

# History sizing heuristics
HISTORY_SHARE_OF_LIMIT = 0.65
AVERAGE_TOKENS_PER_MESSAGE = 50
MIN_HISTORY_MESSAGES = 10
MAX_HISTORY_MESSAGES = 200

Estimator = Callable[[str], int]


def estimate_by_characters(text: str) -> int:
    """Approximate tokens as one per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class TiktokenEstimator:
    """Exact token counting with a tiktoken encoding.

    The encoding is loaded once here; counting afterwards does no I/O.
    """

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name
        self.encoding = tiktoken.get_encoding(encoding_name)

    def __call__(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text))


class TokenBudgeter:
    """Estimates token cost of text and knows each model's context limit.

    Estimation is deterministic and pure so that trimming decisions can be
    reproduced in tests.
    """

    def __init__(
        self,
        estimator: Estimator | None = None,
        model_limits: Mapping[str, int] | None = None,
        default_limit: int = DEFAULT_TOKEN_LIMIT,
    ) -> None:
        """Initialize the budgeter.

        Args:
            estimator: Callable mapping text to a token count. Defaults to
                the character based approximation.
            model_limits: Context limit per model name.
            default_limit: Limit used for models missing from ``model_limits``.
        """
        self.estimator = estimator or estimate_by_characters
        self.model_limits = MappingProxyType(
            dict(MODEL_TOKEN_LIMITS if model_limits is None else model_limits)
        )
        self.default_limit = default_limit

    def estimate_tokens(self, text: str) -> int:
        """Estimate the tokens of a piece of text."""
        return self.estimator(text)

    def estimate_message_tokens(self, content: str) -> int:
        """Estimate the tokens of a chat message including role overhead."""
        return self.estimate_tokens(content) + MESSAGE_OVERHEAD_TOKENS

    def limit_for(self, model: str) -> int:
        """Context limit for a model, falling back to a conservative default."""
        limit = self.model_limits.get(model)
        if limit is None:
            logger.debug(f"No token limit known for model '{model}', using {self.default_limit}")
            return self.default_limit
        return limit

    def optimal_history_limit(self, model: str) -> int:
        """Number of history messages worth loading for a model."""
        history_tokens = int(self.limit_for(model) * HISTORY_SHARE_OF_LIMIT)
        messages = history_tokens // AVERAGE_TOKENS_PER_MESSAGE
        return max(MIN_HISTORY_MESSAGES, min(messages, MAX_HISTORY_MESSAGES))


def build_token_budgeter(estimator_name: str = "chars", encoding_name: str = "cl100k_base") -> TokenBudgeter:
    """Create a budgeter for a configured estimator name ("chars" or "tiktoken")."""
    if estimator_name == "tiktoken":
        logger.info(f"Using tiktoken estimator with encoding {encoding_name}")
        return TokenBudgeter(estimator=TiktokenEstimator(encoding_name))
    if estimator_name != "chars":
        raise ValueError(f"Unknown token estimator: {estimator_name}")
    return TokenBudgeter()
