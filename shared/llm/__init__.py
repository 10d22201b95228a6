"""
LLM Provider Module
===================

Abstraction over the LLM used by the extraction stage.

Usage:
    from shared.llm import get_llm_provider

    provider = get_llm_provider()
    candidates = await provider.generate_json(prompt, system_prompt=EXTRACTION_PROMPT)
"""

from shared.llm.provider import (
    LLMError,
    LLMMessage,
    LLMOutputError,
    LLMProvider,
    LLMResponse,
    LLMUsage,
    TransientLLMError,
    get_llm_provider,
    set_llm_provider,
)

__all__ = [
    "LLMError",
    "LLMMessage",
    "LLMOutputError",
    "LLMProvider",
    "LLMResponse",
    "LLMUsage",
    "TransientLLMError",
    "get_llm_provider",
    "set_llm_provider",
]
