"""
LLM Provider Base
=================

Abstract base class and common models for the extraction LLM boundary.

Provider output is untrusted: `generate_json` only guarantees that the
response parses as JSON. Every value is re-verified downstream.

Version: 0.1.0
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.config import settings, LLMProvider as LLMProviderEnum
from shared.logging import get_logger

logger = get_logger(__name__)


class LLMError(Exception):
    """Base error raised by LLM providers."""


class TransientLLMError(LLMError):
    """Retryable provider failure (rate limit, connection, timeout)."""


class LLMOutputError(LLMError):
    """Provider returned output that is not valid JSON."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class MessageRole(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMMessage(BaseModel):
    """A message in the conversation."""

    role: MessageRole | Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dict for API calls."""
        role_str = self.role.value if isinstance(self.role, MessageRole) else self.role
        return {"role": role_str, "content": self.content}


class LLMUsage(BaseModel):
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    """Response from LLM provider."""

    content: str = Field(..., description="Generated text content")
    model: str = Field(..., description="Model used for generation")
    provider: str = Field(..., description="Provider name")
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: str | None = None
    latency_ms: float = 0.0


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json fence if the model added one."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implements the Strategy pattern so the extraction stage can be run
    against a fake provider in tests.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion for the given messages.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with generated content

        Raises:
            TransientLLMError: On retryable failures
        """
        ...

    async def health_check(self) -> dict[str, Any]:
        """Report provider identity; subclasses may call the API."""
        return {"status": "healthy", "provider": self.name, "model": self.model}

    async def generate_json(
        self,
        prompt: str,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Generate JSON output.

        Args:
            prompt: User prompt requesting JSON
            system_prompt: Optional system prompt
            **kwargs: Additional arguments for complete()

        Returns:
            Parsed JSON value (object or array)

        Raises:
            LLMOutputError: If the response is not valid JSON
        """
        json_system = (system_prompt or "") + (
            "\n\nRespond ONLY with valid JSON. No markdown, no explanation."
        )
        messages = [
            LLMMessage(role="system", content=json_system.strip()),
            LLMMessage(role="user", content=prompt),
        ]
        response = await self.complete(messages, **kwargs)
        text = strip_code_fence(response.content)

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(
                "llm_invalid_json",
                provider=self.name,
                error=str(e),
                preview=text[:200],
            )
            raise LLMOutputError(f"Provider returned invalid JSON: {e}", raw=text) from e


# Global provider instance
_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Get the configured LLM provider instance.

    Creates and caches the instance on first call.

    Returns:
        LLMProvider instance
    """
    global _provider

    if _provider is None:
        provider_type = settings.llm.provider

        if provider_type == LLMProviderEnum.CLAUDE:
            from shared.llm.claude import ClaudeProvider

            _provider = ClaudeProvider()
        else:
            raise ValueError(f"Unknown LLM provider: {provider_type}")

        logger.info(
            "llm_provider_initialized",
            provider=_provider.name,
            model=_provider.model,
        )

    return _provider


def set_llm_provider(provider: LLMProvider | None) -> None:
    """
    Set a custom LLM provider (or clear it with None).

    Args:
        provider: LLMProvider instance to use
    """
    global _provider
    _provider = provider
    if provider is not None:
        logger.info("llm_provider_set", provider=provider.name, model=provider.model)
