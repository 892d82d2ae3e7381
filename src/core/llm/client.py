"""Completion service interface and the OpenAI-compatible HTTP client."""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
from pydantic import BaseModel

from ..config import Settings, settings as default_settings
from ..domain.context import ContextMessage
from ..exceptions import LLMCallError

logger = logging.getLogger(__name__)


class CompletionResult(BaseModel):
    """Text produced by one completion call."""

    text: str
    tokens_used: int = 0
    model: str | None = None


class CompletionService(ABC):
    """Anything that can turn a prompt into model text."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        history: Sequence[ContextMessage] | None = None,
    ) -> CompletionResult:
        """Run one completion.

        Args:
            system_prompt: Instructions placed in the system message
            user_prompt: The final user message
            model: Model identifier understood by the provider
            max_tokens: Maximum tokens the answer may use
            temperature: Sampling temperature
            history: Earlier messages placed between system and user prompt

        Returns:
            The completion text and token usage

        Raises:
            LLMCallError: On network failure, timeout or non-success status
        """


class OpenRouterCompletionClient(CompletionService):
    """Chat completions over an OpenAI-compatible HTTP API (OpenRouter by default)."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "OpenRouterCompletionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.llm_base_url,
                timeout=self.settings.llm_timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.openrouter_api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.llm_http_referer,
            "X-Title": self.settings.llm_app_title,
        }

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        history: Sequence[ContextMessage] | None = None,
    ) -> CompletionResult:
        if not self.settings.openrouter_api_key:
            raise LLMCallError("Completion service API key not configured")

        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(message.to_api() for message in history or [])
        messages.append({"role": "user", "content": user_prompt})

        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            response = await self._get_client().post(
                "/chat/completions",
                headers=self._headers(),
                json=payload,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Completion request to {model} timed out")
            raise LLMCallError(f"Completion request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Completion API error {status}: {e.response.text}")
            raise LLMCallError(f"Completion API error: {status}", status_code=status) from e
        except (httpx.RequestError, json.JSONDecodeError) as e:
            logger.error(f"Completion request failed: {str(e)}")
            raise LLMCallError(f"Completion request failed: {str(e)}") from e

        if not isinstance(body, dict):
            logger.error(f"Completion API returned a {type(body).__name__} body")
            raise LLMCallError("Completion API returned an unexpected response body")

        if body.get("error"):
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise LLMCallError(f"Completion API error: {message}")

        choices = body.get("choices") or []
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise LLMCallError("Completion API returned no choices")

        text = (choices[0].get("message") or {}).get("content") or ""
        usage = body.get("usage") or {}
        tokens_used = int(usage.get("total_tokens", 0))
        logger.debug(f"Completion from {model}: {len(text)} chars, {tokens_used} tokens")

        return CompletionResult(text=text.strip(), tokens_used=tokens_used, model=body.get("model", model))
