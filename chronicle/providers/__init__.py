"""LLM provider abstraction module."""

from chronicle.providers.base import LLMProvider, LLMResponse
from chronicle.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider"]
