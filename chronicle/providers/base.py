"""Base LLM provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM provider."""
    content: str | None
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    error_kind: str | None = None
    retryable: bool = False

    @property
    def is_error(self) -> bool:
        return self.finish_reason == "error"

    @property
    def input_tokens(self) -> int:
        return int(self.usage.get("prompt_tokens", 0) or 0)

    @property
    def output_tokens(self) -> int:
        return int(self.usage.get("completion_tokens", 0) or 0)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    The completion call is opaque to the rest of chronicle: a list of chat
    messages goes in, an ``LLMResponse`` comes out. Failures are reported as a
    response with ``finish_reason="error"`` rather than raised.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Send a chat completion request."""
