"""
Claude Provider
===============

Anthropic Claude API implementation of the extraction provider.

Version: 0.1.0
"""

import time
from typing import Any

import anthropic
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import settings
from shared.llm.provider import (
    LLMMessage,
    LLMProvider,
    LLMResponse,
    LLMUsage,
    TransientLLMError,
)
from shared.logging import get_logger

logger = get_logger(__name__)


_TRANSIENT_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
    anthropic.InternalServerError,
)


class ClaudeProvider(LLMProvider):
    """Anthropic Claude provider implementation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        """
        Initialize Claude provider.

        Args:
            api_key: Anthropic API key (default from settings)
            model: Model to use (default from settings)
        """
        self._api_key = api_key or settings.llm.claude.api_key.get_secret_value()
        self._model = model or settings.llm.claude.model
        self._max_tokens = settings.llm.claude.max_tokens

        if not self._api_key:
            raise ValueError("Anthropic API key not configured")

        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=float(settings.llm.timeout_seconds),
            max_retries=0,
        )

        logger.debug("claude_provider_initialized", model=self._model)

    @property
    def name(self) -> str:
        return "claude"

    @property
    def model(self) -> str:
        return self._model

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.llm.max_retries),
        wait=wait_exponential(multiplier=1, min=2, max=60),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "claude_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,  # type: ignore[union-attr]
        ),
    )
    async def _create(self, **kwargs: Any) -> Any:
        return await self._client.messages.create(**kwargs)

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion using Claude.

        Transient API failures that survive the local retries are surfaced
        as `TransientLLMError` so the drainer can dead-letter the item.
        """
        start_time = time.perf_counter()

        system_message = None
        api_messages = []
        for msg in messages:
            msg_dict = msg.to_dict()
            if msg_dict["role"] == "system":
                system_message = msg_dict["content"]
            else:
                api_messages.append(msg_dict)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": api_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature if temperature is not None else settings.llm.temperature,
        }
        if system_message:
            kwargs["system"] = system_message

        try:
            response = await self._create(**kwargs)
        except _TRANSIENT_ERRORS as e:
            logger.error("claude_transient_failure", error=str(e), error_type=type(e).__name__)
            raise TransientLLMError(str(e)) from e
        except anthropic.APIStatusError as e:
            logger.error("claude_api_error", status_code=e.status_code, error=str(e))
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        content = "".join(block.text for block in response.content if hasattr(block, "text"))

        usage = LLMUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        logger.debug(
            "claude_completion",
            model=self._model,
            tokens=usage.total_tokens,
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.name,
            usage=usage,
            finish_reason=response.stop_reason,
            latency_ms=latency_ms,
        )
