"""
Claude API client.

Thin async wrapper around the Anthropic SDK used for intent recognition,
free-form replies and the daily summary. Transient failures (rate limits,
connection errors, 5xx) are retried with backoff; a failing model is
retried once on the configured fallback model.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncAnthropic,
    RateLimitError,
)

from medimate.config import settings

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when no usable reply could be obtained from Claude."""
    pass


@dataclass
class ClaudeResponse:
    """Text reply plus usage details."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: Optional[str]
    latency_ms: float


def _is_transient(error: Exception) -> bool:
    if isinstance(error, (RateLimitError, APIConnectionError)):
        return True
    return isinstance(error, APIStatusError) and error.status_code >= 500


class ClaudeClient:
    """Async Claude client with retries and model fallback."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        client: Optional[Any] = None,
    ):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            default_model: Model used when a call names none
            fallback_model: Model tried once after the requested model fails
            max_attempts: Attempts per model for transient errors
            base_delay: First backoff delay in seconds
            client: Preconfigured AsyncAnthropic (for testing)
        """
        if client is None:
            api_key = api_key or settings.anthropic_api_key
            if not api_key:
                raise ClaudeClientError("ANTHROPIC_API_KEY is not configured")
            client = AsyncAnthropic(api_key=api_key)

        self._client = client
        self.default_model = default_model or settings.claude_intent_model
        self.fallback_model = fallback_model or settings.claude_fallback_model
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.0,
    ) -> ClaudeResponse:
        """
        Send a single-turn prompt.

        Args:
            prompt: User message
            model: Model to use (defaults to the intent model)
            max_tokens: Maximum tokens in the reply
            temperature: Sampling temperature

        Returns:
            ClaudeResponse with the reply text

        Raises:
            ClaudeClientError: Every attempt on both models failed
        """
        model = model or self.default_model
        models = [model]
        if self.fallback_model and self.fallback_model != model:
            models.append(self.fallback_model)

        last_error: Optional[Exception] = None
        for candidate in models:
            try:
                return await self._generate_with(candidate, prompt, max_tokens, temperature)
            except (APIError, ClaudeClientError) as e:
                last_error = e
                logger.warning(f"Claude model {candidate} failed: {e}")

        raise ClaudeClientError(f"Claude API call failed: {last_error}") from last_error

    async def _generate_with(
        self,
        model: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> ClaudeResponse:
        start_time = time.time()
        response = await self._create_with_retry(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise ClaudeClientError(f"{model} returned no text")

        return ClaudeResponse(
            content=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            latency_ms=(time.time() - start_time) * 1000,
        )

    async def _create_with_retry(self, **kwargs: Any) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._client.messages.create(**kwargs)
            except APIError as e:
                if not _is_transient(e) or attempt == self.max_attempts:
                    raise
                wait_time = self.base_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"Claude {type(e).__name__}, retrying in {wait_time}s (attempt {attempt})"
                )
                await asyncio.sleep(wait_time)

        raise ClaudeClientError("Max retries exceeded")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()


# Singleton
_client: Optional[ClaudeClient] = None


async def get_claude_client() -> ClaudeClient:
    """Get singleton ClaudeClient."""
    global _client
    if _client is None:
        _client = ClaudeClient()
        logger.info(f"ClaudeClient initialized with model={_client.default_model}")
    return _client


async def close_claude_client() -> None:
    """Close the singleton, if one was created."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
